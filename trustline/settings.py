from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
import os


class KdfParams(BaseModel):
    """Argon2id work factor. memory_cost is in KiB."""
    model_config = ConfigDict(frozen=True)

    time_cost: int = Field(3, ge=1)
    memory_cost: int = Field(256 * 1024, ge=8)
    parallelism: int = Field(2, ge=1)


class SelectorLimits(BaseModel):
    """Hard caps enforced on selector strings before they are persisted."""
    model_config = ConfigDict(frozen=True)

    max_length: int = 500
    descendant: int = 10
    child: int = 5
    adjacent_sibling: int = 3
    general_sibling: int = 3
    attribute: int = 5
    pseudo: int = 5


class WarningPolicy(BaseModel):
    """
    When a selector counts as borderline, and whether several borderline counts
    together are escalated to a rejection. escalate_at=None never escalates.
    """
    model_config = ConfigDict(frozen=True)

    near_limit_ratio: float = Field(0.8, gt=0.0, le=1.0)
    escalate_at: Optional[int] = Field(None, ge=1)


class TrustlineSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    kdf: KdfParams = KdfParams()
    selector_limits: SelectorLimits = SelectorLimits()
    warning_policy: WarningPolicy = WarningPolicy()

    @classmethod
    def from_env(cls, environ=None) -> "TrustlineSettings":
        """Build settings from TRUSTLINE_* variables, keeping defaults for unset ones."""
        env = os.environ if environ is None else environ
        kdf = {}
        for var, field in (
            ("TRUSTLINE_KDF_TIME_COST", "time_cost"),
            ("TRUSTLINE_KDF_MEMORY_KIB", "memory_cost"),
            ("TRUSTLINE_KDF_PARALLELISM", "parallelism"),
        ):
            if env.get(var):
                kdf[field] = _int_var(env, var)
        policy = {}
        if env.get("TRUSTLINE_WARN_RATIO"):
            try:
                policy["near_limit_ratio"] = float(env["TRUSTLINE_WARN_RATIO"])
            except ValueError as exc:
                raise ValueError("TRUSTLINE_WARN_RATIO must be a number") from exc
        if env.get("TRUSTLINE_ESCALATE_AT"):
            policy["escalate_at"] = _int_var(env, "TRUSTLINE_ESCALATE_AT")
        # pydantic.ValidationError is a ValueError, so bad ranges surface the same way
        return cls(kdf=KdfParams(**kdf), warning_policy=WarningPolicy(**policy))


def _int_var(env, name: str) -> int:
    try:
        return int(env[name])
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
