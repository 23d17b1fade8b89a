"""Decision contract consumed from the reasoning component.

The reasoning layer returns loosely-shaped JSON. Only the fields below are
read by the engine; anything else in the payload is ignored. Validation
happens here, at the boundary, so the memory store never sees a partial
decision.
"""
from __future__ import annotations

import logging
import math
from enum import Enum
from typing import Any, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import InvalidDecisionError
from .models import PatternType, ThreatLevel

logger = logging.getLogger(__name__)

DECISION_SCHEMA_VERSION = 1


class Recommendation(str, Enum):
    APPROVE = "approve"
    MODIFY = "modify"
    REJECT = "reject"


class ImmuneDecision(BaseModel):
    """Versioned input struct for ``record_transaction_outcome``."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    schema_version: Literal[1] = DECISION_SCHEMA_VERSION
    recommendation: Recommendation
    threat_level: ThreatLevel
    patterns_detected: List[PatternType] = Field(default_factory=list)
    resilience_impact: float
    explanation: Optional[str] = None

    @field_validator("recommendation", mode="before")
    @classmethod
    def normalize_recommendation(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("threat_level", mode="before")
    @classmethod
    def normalize_threat_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("patterns_detected", mode="before")
    @classmethod
    def normalize_patterns(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            raise ValueError("patterns_detected must be a list of pattern labels")
        return [p.strip().lower() if isinstance(p, str) else p for p in v]

    @field_validator("resilience_impact")
    @classmethod
    def check_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("resilience_impact must be a finite number")
        return v


def parse_decision(payload: Union[ImmuneDecision, Mapping[str, Any]]) -> ImmuneDecision:
    """Validate a raw decision payload.

    Raises:
        InvalidDecisionError: if a required field is missing or malformed
    """
    if isinstance(payload, ImmuneDecision):
        return payload
    if not isinstance(payload, Mapping):
        raise InvalidDecisionError(
            f"Decision must be a mapping, got {type(payload).__name__}"
        )
    try:
        return ImmuneDecision.model_validate(dict(payload))
    except ValidationError as e:
        errors = e.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        logger.warning("Rejected decision payload: %s", first.get("msg", str(e)))
        raise InvalidDecisionError(
            f"Invalid decision: {first.get('msg', str(e))}",
            field=field,
            details={"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in errors]},
        ) from e
