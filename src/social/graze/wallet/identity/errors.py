"""Error taxonomy for the wallet session layer.

Every error raised across the facade boundary is a ``WalletError``. Each kind carries
a stable code (used as the message prefix, e.g. ``error-wallet-1000``) and the HTTP
status the handlers respond with.
"""

from typing import Optional


class WalletError(Exception):
    """Base class for all wallet errors."""

    code: str = "error-wallet-1999"
    status: int = 500
    default_message: str = "Unexpected wallet error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.detail = message or self.default_message
        super().__init__(f"{self.code} {self.detail}")


class Unauthenticated(WalletError):
    code = "error-wallet-1000"
    status = 401
    default_message = "Missing, invalid or expired access token"


class VerificationFailed(WalletError):
    """Generic OTP failure. Deliberately carries no detail about why."""

    code = "error-wallet-1001"
    status = 401
    default_message = "Verification failed"


class AlreadyRegistered(WalletError):
    code = "error-wallet-1002"
    status = 409
    default_message = "An account is already registered for this principal"


class UnknownPrincipal(WalletError):
    code = "error-wallet-1003"
    status = 404
    default_message = "No confirmed account for this principal"


class DuplicateCredentialId(WalletError):
    code = "error-wallet-1004"
    status = 409
    default_message = "Credential id already exists"

    def __init__(self, credential_id: str) -> None:
        self.credential_id = credential_id
        super().__init__(f"Credential id already exists: {credential_id}")


class InvalidShareToken(WalletError):
    code = "error-wallet-1005"
    status = 400
    default_message = "Invalid share request token"


class DirectoryError(WalletError):
    code = "error-wallet-1006"
    status = 502
    default_message = "Account directory failure"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Account directory failure: {reason}")


class DeliveryError(WalletError):
    code = "error-wallet-1007"
    status = 502
    default_message = "OTP delivery failed"


class NotFound(WalletError):
    code = "error-wallet-1008"
    status = 404
    default_message = "Not found"


class SeedNotFound(NotFound):
    """No encrypted seed is stored. Valid when enrollment skipped the backup."""

    default_message = "No encrypted seed stored for this account"


class InvalidTemplate(WalletError):
    code = "error-wallet-1009"
    status = 400
    default_message = "Message template must contain the {{CODE}} placeholder"


class InvalidPrincipal(WalletError):
    code = "error-wallet-1010"
    status = 400
    default_message = "Principal identifier is not a valid email address or phone number"


class UnsupportedDidMethod(WalletError):
    code = "error-wallet-1011"
    status = 400
    default_message = "DID method is not supported"


class InvalidCredential(WalletError):
    code = "error-wallet-1012"
    status = 400
    default_message = "Credential document is malformed"
