"""
Configuration codes: shareable text for one custom site configuration.

A code is three dot-separated, URL-safe segments:

    <version>.<payload>.<checksum>

`payload` is the compact JSON form of the configuration, zlib-compressed and
base64url-encoded without padding. `checksum` is a truncated SHA-256 over
`<version>.<payload>` (see checksum.py). Decoding checks the version, then
the checksum, and only then decompresses and parses the payload, so nothing
from an altered code ever reaches the schema.
"""
import base64, binascii, json, re, zlib
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, ValidationError

from .checksum import canonical_json, compute_checksum, verify_checksum, CHECKSUM_LENGTH
from .errors import (
    ChecksumFailedError,
    ConfigValidationError,
    ConfigurationError,
    InvalidFormatError,
    SecurityViolationError,
    UnsupportedVersionError,
)
from .logging import get_logger
from .models import (
    CustomSiteConfiguration,
    ElementFingerprint,
    Number,
    Offset,
    Placement,
    Positioning,
    SecurityWarning,
    Severity,
    ValidationResult,
)
from .sanitize import clean_text, normalize_hostname, MAX_DESCRIPTION, MAX_DISPLAY_NAME
from .selector_safety import check_selector
from .settings import TrustlineSettings

LOG = get_logger(False)

CURRENT_VERSION = 1
SUPPORTED_VERSIONS = frozenset({1})
MAX_CODE_LENGTH = 32 * 1024
MAX_PAYLOAD_BYTES = 64 * 1024
MAX_FINGERPRINT_SIZE = 10_000
MAX_OFFSET = 500
MAX_Z_INDEX = 2147483647
MAX_HOSTNAME_LENGTH = 253

HOSTNAME_PATTERN = re.compile(r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}$")
_VERSION_SEGMENT = re.compile(r"^(?:0|[1-9][0-9]{0,5})$")
_B64URL_SEGMENT = re.compile(r"^[A-Za-z0-9_-]+$")
_HEX_SEGMENT = re.compile(r"^[0-9a-f]+$")


# --- wire schema (version 1) ----------------------------------------------

class _WirePositioning(BaseModel):
    model_config = ConfigDict(extra="forbid")

    s: StrictStr
    pl: Placement
    o: Optional[Tuple[Number, Number]] = None
    z: Optional[StrictInt] = None
    d: Optional[StrictStr] = None
    fp: Optional[ElementFingerprint] = None


class _WirePayloadV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    h: StrictStr
    n: StrictStr
    p: Optional[_WirePositioning] = None


def config_to_payload(config: CustomSiteConfiguration) -> dict:
    payload = {"h": config.hostname, "n": config.display_name}
    pos = config.positioning
    if pos is not None:
        p = {"s": pos.selector, "pl": pos.placement}
        if pos.offset is not None:
            p["o"] = [pos.offset.x, pos.offset.y]
        if pos.z_index is not None:
            p["z"] = pos.z_index
        if pos.description is not None:
            p["d"] = pos.description
        if pos.fingerprint is not None:
            p["fp"] = pos.fingerprint.model_dump(by_alias=True, exclude_none=True)
        payload["p"] = p
    return payload


def payload_to_config(wire: _WirePayloadV1) -> CustomSiteConfiguration:
    positioning = None
    if wire.p is not None:
        p = wire.p
        positioning = Positioning(
            selector=p.s,
            placement=p.pl,
            offset=Offset(x=p.o[0], y=p.o[1]) if p.o is not None else None,
            z_index=p.z,
            description=p.d,
            fingerprint=p.fp,
        )
    return CustomSiteConfiguration(hostname=wire.h, display_name=wire.n, positioning=positioning)


def _reject_constant(name):
    raise ValueError(f"{name} is not allowed")


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _failed(error: ConfigurationError) -> ConfigurationError:
    LOG.warning("config_decode_failed", code=error.code)
    return error


def _issues_from(exc: ValidationError) -> List[tuple]:
    issues = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())) or "configuration"
        issues.append((field, err.get("msg", "invalid value")))
    return issues


class ConfigurationEncoder:
    """encode / decode / validate for configuration codes. Holds only immutable settings."""

    def __init__(self, settings: Optional[TrustlineSettings] = None):
        self.settings = settings or TrustlineSettings()

    # ------------------------------------------------------------------ #
    # encode
    # ------------------------------------------------------------------ #

    def encode(self, config: Union[CustomSiteConfiguration, dict]) -> str:
        """Serialize a configuration into a code. Does not run security validation."""
        config = self._coerce(config)
        payload = config_to_payload(config)
        raw = canonical_json(payload).encode("utf-8")
        segment = _b64url_encode(zlib.compress(raw, 9))
        checksum = compute_checksum(CURRENT_VERSION, segment)
        LOG.debug("config_encoded", hostname=config.hostname, length=len(segment))
        return f"{CURRENT_VERSION}.{segment}.{checksum}"

    # ------------------------------------------------------------------ #
    # decode
    # ------------------------------------------------------------------ #

    def decode(self, code: str) -> CustomSiteConfiguration:
        """Parse, version-gate and checksum-verify a code, then build the configuration."""
        version, segment, checksum = self._split(code)

        if version not in SUPPORTED_VERSIONS:
            raise _failed(UnsupportedVersionError(
                f"Unsupported configuration version (v{version}). This code was created by a newer "
                "or incompatible version; update the extension or ask for a new code.",
                version=version,
            ))

        if not verify_checksum(version, segment, checksum):
            raise _failed(ChecksumFailedError(
                "Configuration integrity check failed. The code may have been modified or "
                "corrupted while copying; copy the entire code again."
            ))

        data = self._inflate(segment)
        try:
            wire = _WirePayloadV1.model_validate(data)
            config = payload_to_config(wire)
        except ValidationError as exc:
            LOG.warning("config_schema_mismatch", errors=len(exc.errors()))
            raise _failed(InvalidFormatError("Configuration code does not contain a valid site configuration.")) from None
        LOG.info("config_decoded", hostname=config.hostname)
        return config

    def _split(self, code: str):
        if not isinstance(code, str) or not code.strip():
            raise _failed(InvalidFormatError("Configuration code is empty. Paste the full code from the sharing dialog."))
        text = "".join(code.split())
        if len(text) > MAX_CODE_LENGTH:
            raise _failed(InvalidFormatError("Configuration code is too long."))
        parts = text.split(".")
        if len(parts) != 3:
            raise _failed(InvalidFormatError("Invalid configuration code. It may be incomplete; copy the entire code."))
        version_text, segment, checksum = parts
        if (
            not _VERSION_SEGMENT.match(version_text)
            or not _B64URL_SEGMENT.match(segment)
            or not _HEX_SEGMENT.match(checksum)
        ):
            raise _failed(InvalidFormatError("Invalid configuration code. It contains unexpected characters."))
        if len(checksum) != CHECKSUM_LENGTH and int(version_text) in SUPPORTED_VERSIONS:
            raise _failed(InvalidFormatError("Invalid configuration code. The integrity field is incomplete."))
        return int(version_text), segment, checksum

    def _inflate(self, segment: str) -> dict:
        try:
            compressed = _b64url_decode(segment)
            inflater = zlib.decompressobj()
            raw = inflater.decompress(compressed, MAX_PAYLOAD_BYTES)
            if inflater.unconsumed_tail or not inflater.eof:
                raise ValueError("payload truncated or too large")
            data = json.loads(raw.decode("utf-8"), parse_constant=_reject_constant)
        except (binascii.Error, zlib.error, UnicodeDecodeError, ValueError):
            raise _failed(InvalidFormatError("Configuration data is corrupted. Ask for a new sharing code.")) from None
        if not isinstance(data, dict):
            raise _failed(InvalidFormatError("Configuration data is corrupted. Ask for a new sharing code."))
        return data

    # ------------------------------------------------------------------ #
    # validate
    # ------------------------------------------------------------------ #

    def validate(self, config: Union[CustomSiteConfiguration, dict]) -> ValidationResult:
        """
        Sanitize a configuration and run the shape and security checks.

        Raises ConfigValidationError listing every shape problem, or
        SecurityViolationError with the rejecting selector rules. Borderline
        selectors come back as non-blocking warnings on the result.
        """
        config = self._coerce(config)
        issues: List[tuple] = []
        warnings: List[SecurityWarning] = []

        hostname = normalize_hostname(config.hostname)
        if not hostname:
            issues.append(("hostname", 'Hostname is required. Enter the domain name (e.g. "example.com") without protocol or path.'))
        elif len(hostname) > MAX_HOSTNAME_LENGTH or not HOSTNAME_PATTERN.match(hostname):
            issues.append(("hostname", 'Hostname must be a valid public domain (e.g. "example.com"). Do not include a protocol or path.'))

        display_name, truncated = clean_text(config.display_name, MAX_DISPLAY_NAME)
        if not display_name:
            issues.append(("displayName", "Display name is required."))
        elif truncated:
            warnings.append(SecurityWarning(
                field="displayName",
                message=f"Display name was shortened to {MAX_DISPLAY_NAME} characters.",
                severity=Severity.INFO,
            ))

        positioning = None
        if config.positioning is not None:
            positioning = self._check_positioning(config.positioning, issues, warnings)

        if issues:
            LOG.info("config_validation_failed", fields=",".join(f for f, _ in issues))
            raise ConfigValidationError(issues)

        if positioning is not None:
            limits = self.settings.selector_limits
            report = check_selector(positioning.selector, limits, self.settings.warning_policy)
            if not report.accepted:
                LOG.warning("selector_rejected", hostname=hostname, rules=",".join(r.rule_id for r in report.rejections))
                raise SecurityViolationError(report.rejections)
            for result in report.warnings:
                warnings.append(SecurityWarning(
                    field="positioning.selector",
                    message=result.message,
                    severity=Severity.WARNING,
                    rule_id=result.rule_id,
                ))

        sanitized = CustomSiteConfiguration(hostname=hostname, display_name=display_name, positioning=positioning)
        return ValidationResult(sanitized_config=sanitized, warnings=warnings)

    def _check_positioning(self, pos: Positioning, issues, warnings) -> Positioning:
        selector = pos.selector.strip()
        if not selector:
            issues.append(("positioning.selector", 'A CSS selector is required (e.g. "#submit-button" or ".chat-input").'))

        if pos.offset is not None:
            for axis in ("x", "y"):
                value = getattr(pos.offset, axis)
                if abs(value) > MAX_OFFSET:
                    issues.append((f"positioning.offset.{axis}", f"Offset {axis.upper()} must be between -{MAX_OFFSET} and {MAX_OFFSET} pixels."))

        if pos.z_index is not None and not 0 <= pos.z_index <= MAX_Z_INDEX:
            issues.append(("positioning.zIndex", f"Z-index must be an integer between 0 and {MAX_Z_INDEX}."))

        description, truncated = clean_text(pos.description, MAX_DESCRIPTION)
        if truncated:
            warnings.append(SecurityWarning(
                field="positioning.description",
                message=f"Description is too long and was truncated to {MAX_DESCRIPTION} characters.",
                severity=Severity.WARNING,
            ))

        if pos.fingerprint is not None:
            size = len(canonical_json(pos.fingerprint.model_dump(by_alias=True, exclude_none=True)).encode("utf-8"))
            if size > MAX_FINGERPRINT_SIZE:
                issues.append(("positioning.fingerprint", f"Fingerprint exceeds the maximum size of {MAX_FINGERPRINT_SIZE} bytes (current: {size} bytes)."))

        return pos.model_copy(update={"selector": selector, "description": description})

    # ------------------------------------------------------------------ #
    # helpers
    # ------------------------------------------------------------------ #

    def import_code(self, code: str) -> ValidationResult:
        """decode followed by validate: what an import preview needs."""
        return self.validate(self.decode(code))

    @staticmethod
    def _coerce(config) -> CustomSiteConfiguration:
        if isinstance(config, CustomSiteConfiguration):
            return config
        try:
            return CustomSiteConfiguration.model_validate(config)
        except ValidationError as exc:
            raise ConfigValidationError(_issues_from(exc)) from None
