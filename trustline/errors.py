"""
Closed set of error kinds raised across the trust boundary.

Every class is a ValueError so callers catching ValueError keep working.
Messages are meant for users; cryptographic failures carry fixed text only.
"""
from typing import List, Optional, Sequence


class TrustlineError(ValueError):
    code = "TRUSTLINE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# --- encryption ----------------------------------------------------------

class EncryptionError(TrustlineError):
    code = "ENCRYPTION_ERROR"


class EmptyPasswordError(EncryptionError):
    code = "EMPTY_PASSWORD"

    def __init__(self, message: str = "Password must not be empty."):
        super().__init__(message)


class AuthenticationError(EncryptionError):
    code = "AUTHENTICATION_FAILED"

    def __init__(self, message: str = "Decryption failed: wrong password or the data was modified."):
        super().__init__(message)


class MalformedPayloadError(EncryptionError):
    code = "MALFORMED_PAYLOAD"


# --- configuration codes -------------------------------------------------

class ConfigurationError(TrustlineError):
    code = "CONFIGURATION_ERROR"


class InvalidFormatError(ConfigurationError):
    code = "INVALID_FORMAT"


class UnsupportedVersionError(ConfigurationError):
    code = "UNSUPPORTED_VERSION"

    def __init__(self, message: str, version=None):
        super().__init__(message)
        self.version = version


class ChecksumFailedError(ConfigurationError):
    code = "CHECKSUM_FAILED"


class ConfigValidationError(ConfigurationError):
    """Structurally invalid configuration; `issues` holds (field, message) pairs."""
    code = "VALIDATION_ERROR"

    def __init__(self, issues: Sequence[tuple], message: Optional[str] = None):
        self.issues: List[tuple] = list(issues)
        text = message or "\n".join(f"{field}: {msg}" for field, msg in self.issues) or "Configuration is invalid"
        super().__init__(text)


class SecurityViolationError(ConfigurationError):
    """A selector or field was rejected by a security rule; `results` holds the rejecting rule results."""
    code = "SECURITY_VIOLATION"

    def __init__(self, results: Sequence, message: Optional[str] = None):
        self.results = list(results)
        text = message or "\n".join(r.message for r in self.results) or "Configuration failed security validation"
        super().__init__(text)

    @property
    def rule_ids(self) -> List[str]:
        return [r.rule_id for r in self.results]
