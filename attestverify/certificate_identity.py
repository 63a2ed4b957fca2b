"""Matching a signing certificate's identity against trusted identities."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass
class CertificateSummary:
    """The identity facts taken from a signing certificate."""

    subject_alternative_name: str = ""
    certificate_issuer: str = ""
    extensions: Mapping[str, str] = field(default_factory=dict)

    @property
    def issuer(self) -> str:
        """The OIDC issuer recorded in the certificate's extensions."""
        return self.extensions.get("issuer", "")


class ValueMismatchError(Exception):
    """A certificate value differs from the expected one."""

    def __init__(self, object_name: str, expected: str, actual: str) -> None:
        super().__init__(f'expected {object_name} value "{expected}", got "{actual}"')
        self.object_name = object_name
        self.expected = expected
        self.actual = actual


class ValueRegexMismatchError(Exception):
    """A certificate value does not match the expected pattern."""

    def __init__(self, object_name: str, regex: str, value: str) -> None:
        super().__init__(f'expected {object_name} value to match regex "{regex}", got "{value}"')
        self.object_name = object_name
        self.regex = regex
        self.value = value


class NoMatchingCertificateIdentityError(Exception):
    """None of the trusted identities matched; holds each identity's failure."""

    def __init__(self, errors: list[Exception] | None = None) -> None:
        self.errors = list(errors or [])
        if self.errors:
            message = f"no matching CertificateIdentity found, last error: {self.errors[-1]}"
            self.__cause__ = self.errors[-1]
        else:
            message = "no matching CertificateIdentity found"
        super().__init__(message)


def compare_extensions(expected: Mapping[str, str], actual: Mapping[str, str]) -> None:
    """Raise ValueMismatchError for the first non-empty expected value that differs."""
    for name, value in expected.items():
        if not value:
            continue
        found = actual.get(name, "")
        if found != value:
            raise ValueMismatchError(name, value, found)


def _check(object_name: str, expected: str, pattern: re.Pattern[str] | None, actual: str) -> None:
    if expected and actual != expected:
        raise ValueMismatchError(object_name, expected, actual)
    if pattern is not None and not pattern.search(actual):
        raise ValueRegexMismatchError(object_name, pattern.pattern, actual)


def _compile(regexp: str) -> re.Pattern[str] | None:
    return re.compile(regexp) if regexp else None


@dataclass(frozen=True)
class SubjectAlternativeNameMatcher:
    """Exact value and/or pattern the certificate's SAN must satisfy."""

    subject_alternative_name: str = ""
    regexp: str = ""
    _pattern: re.Pattern[str] | None = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_pattern", _compile(self.regexp))

    def verify(self, summary: CertificateSummary) -> None:
        _check("SAN", self.subject_alternative_name, self._pattern, summary.subject_alternative_name)

    def to_dict(self) -> dict[str, str]:
        result = {"subjectAlternativeName": self.subject_alternative_name}
        if self.regexp:
            result["regexp"] = self.regexp
        return result


@dataclass(frozen=True)
class IssuerMatcher:
    """Exact value and/or pattern the certificate's OIDC issuer must satisfy."""

    issuer: str = ""
    regexp: str = ""
    _pattern: re.Pattern[str] | None = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_pattern", _compile(self.regexp))

    def verify(self, summary: CertificateSummary) -> None:
        _check("issuer", self.issuer, self._pattern, summary.issuer)

    def to_dict(self) -> dict[str, str]:
        result = {"issuer": self.issuer}
        if self.regexp:
            result["regexp"] = self.regexp
        return result


@dataclass
class CertificateIdentity:
    """A sufficient identity: SAN and issuer criteria plus expected extension values."""

    subject_alternative_name: SubjectAlternativeNameMatcher
    issuer: IssuerMatcher
    extensions: Mapping[str, str] = field(default_factory=dict)

    def verify(self, summary: CertificateSummary) -> None:
        """Raise if the certificate does not match; empty criteria are ignored."""
        self.subject_alternative_name.verify(summary)
        self.issuer.verify(summary)
        compare_extensions(self.extensions, summary.extensions)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {name: value for name, value in self.extensions.items() if value}
        result["subjectAlternativeName"] = self.subject_alternative_name.to_dict()
        result["issuer"] = self.issuer.to_dict()
        return result


class CertificateIdentities(list):
    """A list of identities of which any one is enough."""

    def verify(self, summary: CertificateSummary) -> CertificateIdentity:
        """Return the first identity that matches, or raise with every failure."""
        failures: list[Exception] = []
        for identity in self:
            try:
                identity.verify(summary)
            except (ValueMismatchError, ValueRegexMismatchError) as exc:
                failures.append(exc)
            else:
                return identity
        raise NoMatchingCertificateIdentityError(failures)


def new_certificate_identity(
    san_matcher: SubjectAlternativeNameMatcher,
    issuer_matcher: IssuerMatcher,
    extensions: Mapping[str, str] | None,
) -> CertificateIdentity:
    """Build an identity, insisting on both SAN and issuer criteria."""
    extensions = dict(extensions or {})
    if not san_matcher.subject_alternative_name and not san_matcher.regexp:
        raise ValueError(
            "when verifying a certificate identity, there must be subject alternative name criteria"
        )
    if not issuer_matcher.issuer and not issuer_matcher.regexp:
        raise ValueError("when verifying a certificate identity, must specify Issuer criteria")
    if extensions.get("issuer"):
        raise ValueError("please specify issuer in IssuerMatcher, not Extensions")
    return CertificateIdentity(san_matcher, issuer_matcher, extensions)


def new_short_certificate_identity(
    issuer: str, issuer_regex: str, san_value: str, san_regex: str
) -> CertificateIdentity:
    """Build an identity from just a SAN and an issuer, each a value or a pattern."""
    return new_certificate_identity(
        SubjectAlternativeNameMatcher(san_value, san_regex),
        IssuerMatcher(issuer, issuer_regex),
        {},
    )