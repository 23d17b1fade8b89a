"""Configuration surface for the Sardis immune engine.

Every threshold used by the detectors, the profile builder, the resilience
controller and the sensitivity adapter lives here. The defaults are the
contract values; deployments may override them through
``SARDIS_IMMUNE_*`` environment variables.
"""
from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ImmuneSettings(BaseSettings):
    """Thresholds and policy knobs for pattern detection and scoring."""

    model_config = SettingsConfigDict(
        env_prefix="SARDIS_IMMUNE_",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    # Recurring micro-costs
    micro_cost_threshold: Decimal = Field(default=Decimal("50"), gt=0)
    micro_cost_min_occurrences: int = Field(default=3, ge=1)
    micro_cost_medium_total: Decimal = Field(default=Decimal("100"), ge=0)
    micro_cost_high_total: Decimal = Field(default=Decimal("200"), ge=0)

    # Vendor concentration (share of total spend)
    concentration_threshold: float = Field(default=0.3, ge=0, le=1)
    concentration_medium: float = Field(default=0.4, ge=0, le=1)
    concentration_high: float = Field(default=0.6, ge=0, le=1)

    # Convenience bias
    round_amount_unit: Decimal = Field(default=Decimal("10"), gt=0)
    round_amount_minimum: Decimal = Field(default=Decimal("50"), ge=0)
    convenience_ratio_threshold: float = Field(default=0.6, ge=0, le=1)
    convenience_ratio_medium: float = Field(default=0.8, ge=0, le=1)
    convenience_premium_rate: Decimal = Field(default=Decimal("0.1"), ge=0, le=1)
    convenience_occurrence_window: int = Field(default=5, ge=1)

    # Declining value
    declining_min_transactions: int = Field(default=4, ge=2)
    declining_window: int = Field(default=2, ge=1)
    declining_increase_threshold: float = Field(default=0.2, ge=0)
    declining_high_increase: float = Field(default=0.5, ge=0)
    declining_occurrence_window: int = Field(default=3, ge=1)

    # Recipient profiles
    cadence_min_transactions: int = Field(default=3, ge=2)
    cadence_variance_ratio: float = Field(default=0.3, ge=0)
    value_decline_window: int = Field(default=3, ge=1)
    value_decline_score: float = Field(default=0.6, ge=0, le=1)

    # Resilience score
    initial_resilience_score: int = Field(default=75, ge=0, le=100)
    resilience_history_limit: int = Field(default=100, ge=1)

    # Sensitivity adaptation
    new_pattern_confidence: float = Field(default=0.5, ge=0, le=1)
    confidence_step: float = Field(default=0.1, gt=0, le=1)
    confidence_floor: float = Field(default=0.1, ge=0, le=1)
    confidence_ceiling: float = Field(default=1.0, ge=0, le=1)

    @model_validator(mode="after")
    def check_ordering(self) -> "ImmuneSettings":
        """Reject threshold sets whose bands would overlap."""
        if self.micro_cost_medium_total > self.micro_cost_high_total:
            raise ValueError("micro_cost_medium_total must not exceed micro_cost_high_total")
        if not self.concentration_threshold <= self.concentration_medium <= self.concentration_high:
            raise ValueError("concentration thresholds must be ordered threshold <= medium <= high")
        if self.convenience_ratio_threshold > self.convenience_ratio_medium:
            raise ValueError("convenience_ratio_threshold must not exceed convenience_ratio_medium")
        if self.declining_increase_threshold > self.declining_high_increase:
            raise ValueError("declining_increase_threshold must not exceed declining_high_increase")
        if self.declining_min_transactions < self.declining_window:
            raise ValueError("declining_min_transactions must be at least declining_window")
        if self.confidence_floor > self.confidence_ceiling:
            raise ValueError("confidence_floor must not exceed confidence_ceiling")
        return self


DEFAULT_SETTINGS = ImmuneSettings(_env_file=None)


@lru_cache
def load_settings(env_file: str | None = None) -> ImmuneSettings:
    """Load ImmuneSettings once per process to keep services consistent."""
    env_path = Path(env_file) if env_file else None
    return ImmuneSettings(_env_file=env_path)
