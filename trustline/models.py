from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr, field_validator
from pydantic.alias_generators import to_camel
from typing import Dict, Iterable, List, Literal, Optional, Union
from enum import Enum
import math

from .sanitize import normalize_hostname

Number = Union[StrictInt, StrictFloat]
Placement = Literal["before", "after", "inside-start", "inside-end"]
PLACEMENTS = ("before", "after", "inside-start", "inside-end")


def _encodable(value):
    """True when every string in `value` (nested dicts and lists too) can be written as UTF-8."""
    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError:
            return False
        return True
    if isinstance(value, dict):
        return all(_encodable(k) and _encodable(v) for k, v in value.items())
    if isinstance(value, (list, tuple)):
        return all(_encodable(v) for v in value)
    return True


class _Model(BaseModel):
    """camelCase on the wire (the extension's JSON shape), snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    @field_validator("*")
    @classmethod
    def utf8_text(cls, v):
        if not _encodable(v):
            raise ValueError("text contains unpaired surrogate characters")
        return v


class EncryptedPayload(_Model):
    """Output of `PayloadEncryptionService.encrypt`; three independent base64 fields."""
    model_config = ConfigDict(frozen=True)

    cipher_text: StrictStr
    salt: StrictStr
    iv: StrictStr


# --- element fingerprint ---------------------------------------------------

class FingerprintPrimary(_Model):
    id: Optional[StrictStr] = None
    data_test_id: Optional[StrictStr] = None
    data_id: Optional[StrictStr] = None
    name: Optional[StrictStr] = None
    aria_label: Optional[StrictStr] = None


class FingerprintSecondary(_Model):
    tag_name: StrictStr
    type: Optional[StrictStr] = None
    role: Optional[StrictStr] = None
    placeholder: Optional[StrictStr] = None


class FingerprintContent(_Model):
    text_content: Optional[StrictStr] = None
    text_hash: Optional[StrictStr] = None


class FingerprintContext(_Model):
    parent_id: Optional[StrictStr] = None
    parent_data_test_id: Optional[StrictStr] = None
    parent_tag_name: Optional[StrictStr] = None
    sibling_index: Optional[StrictInt] = None
    sibling_count: Optional[StrictInt] = None
    depth: Optional[StrictInt] = None


class FingerprintMeta(_Model):
    generated_at: Number
    url: StrictStr
    confidence: Literal["high", "medium", "low"]


class ElementFingerprint(_Model):
    """Structural description of a picked element, used when its selector stops matching uniquely."""
    primary: FingerprintPrimary = FingerprintPrimary()
    secondary: FingerprintSecondary
    content: FingerprintContent = FingerprintContent()
    context: FingerprintContext = FingerprintContext()
    attributes: Dict[StrictStr, StrictStr] = {}
    class_patterns: Optional[List[StrictStr]] = None
    meta: FingerprintMeta


# --- site configuration ----------------------------------------------------

class Offset(_Model):
    x: Number = 0
    y: Number = 0

    @field_validator("x", "y")
    @classmethod
    def finite(cls, v):
        """NaN and infinities cannot be serialized or placed on a page."""
        if isinstance(v, float) and not math.isfinite(v):
            raise ValueError("offset must be a finite number")
        return v


class Positioning(_Model):
    mode: Literal["custom"] = "custom"
    selector: StrictStr = ""
    placement: Placement
    offset: Optional[Offset] = None
    z_index: Optional[StrictInt] = None
    description: Optional[StrictStr] = None
    fingerprint: Optional[ElementFingerprint] = None


class CustomSiteConfiguration(_Model):
    hostname: StrictStr
    display_name: StrictStr
    positioning: Optional[Positioning] = None


# --- validation output -----------------------------------------------------

class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class SecurityWarning(_Model):
    field: str
    message: str
    severity: Severity = Severity.WARNING
    rule_id: Optional[str] = None

    @property
    def blocking(self) -> bool:
        return self.severity == Severity.ERROR


class ValidationResult(_Model):
    sanitized_config: CustomSiteConfiguration
    warnings: List[SecurityWarning] = Field(default_factory=list)

    def overwrites(self, existing_hostnames: Iterable[str]) -> bool:
        """True when importing this configuration would replace an existing entry."""
        hostname = self.sanitized_config.hostname
        return any(normalize_hostname(h) == hostname for h in existing_hostnames)
