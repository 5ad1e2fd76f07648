"""Error taxonomy for the session action pipeline.

Each error carries the HTTP status the API layer should answer with, a short
public message that is safe to echo to the client, and a machine readable
``reason`` used by clients to decide how to recover (refresh a CSRF token,
re-sign, wait). Anything more detailed belongs in ``detail`` and is only
logged.
"""

from __future__ import annotations


class GateError(RuntimeError):
    """Base exception for every rejection produced by the pipeline."""

    status_code: int = 500
    reason: str = "error"

    def __init__(
        self,
        message: str,
        *,
        detail: str | None = None,
        status_code: int | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or message
        if status_code is not None:
            self.status_code = status_code
        if reason is not None:
            self.reason = reason


class BadRequestError(GateError):
    """Raised when a request is missing fields or names an unknown action."""

    status_code = 400
    reason = "bad_request"


class AuthorizationError(GateError):
    """Raised for a missing/mismatched CSRF token or a foreign origin."""

    status_code = 403
    reason = "csrf"


class ThrottledError(GateError):
    """Raised when an action is attempted before its cooldown elapsed."""

    status_code = 429
    reason = "rate_limited"

    def __init__(self, message: str, *, retry_after: float, detail: str | None = None) -> None:
        super().__init__(message, detail=detail)
        self.retry_after = retry_after


class IdentityError(GateError):
    """Raised when the wallet signature does not bind the claimed address."""

    status_code = 403
    reason = "signature"


class MissingSignatureError(IdentityError):
    """No signature payload accompanied the request."""


class MalformedPayloadError(IdentityError):
    """The signature payload could not be parsed or recovered."""


class AddressMismatchError(IdentityError):
    """The recovered signer is not the address the client claims to be."""


class VerificationError(GateError):
    """Raised when the human verification service rejects or fails."""

    status_code = 403
    reason = "captcha"


class PlausibilityError(GateError):
    """Raised when a claimed score fails an anti-cheat filter.

    The public message is identical for every filter; ``filter_name`` and
    ``detail`` only reach the logs.
    """

    status_code = 400
    reason = "suspicious"
    public_message = "Suspicious score"

    def __init__(self, filter_name: str, detail: str) -> None:
        super().__init__(self.public_message, detail=detail)
        self.filter_name = filter_name


class LedgerError(GateError):
    """Raised for submission, inclusion or receipt parsing failures."""

    status_code = 500
    reason = "ledger"
