"""Error type that wraps a failure found while verifying a signed entity."""

from __future__ import annotations


class VerificationError(Exception):
    """A verification step failed; the underlying failure is kept as the cause."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"verification error: {cause}")
        self.cause = cause
        self.__cause__ = cause