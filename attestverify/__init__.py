"""Verification of signed entities: signatures, certificate identities, log entries, timestamps and SCTs."""

__version__ = "0.1.0"