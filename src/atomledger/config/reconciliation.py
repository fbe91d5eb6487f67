"""Reconciliation defaults and their environment overrides."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int
from .errors import ConfigurationError

DEFAULT_QUALITY_APPROVE = 80
DEFAULT_QUALITY_REVISE = 60
DEFAULT_INFERENCE_BATCH_SIZE = 10
DEFAULT_INFERENCE_ATTEMPTS = 3
DEFAULT_DRIFT_OVERDUE_CEILING = 0


@dataclass(frozen=True, slots=True)
class ReconciliationSettings:
    quality_approve: int = DEFAULT_QUALITY_APPROVE
    quality_revise: int = DEFAULT_QUALITY_REVISE
    molecule_min_completeness: int = 60
    molecule_min_fit: int = 60
    molecule_min_atoms: int = 2
    molecule_max_categories: int = 3
    inference_batch_size: int = DEFAULT_INFERENCE_BATCH_SIZE
    inference_attempts: int = DEFAULT_INFERENCE_ATTEMPTS
    inference_backoff_factor: float = 0.5
    inference_max_backoff: float = 8.0
    drift_overdue_ceiling: int = DEFAULT_DRIFT_OVERDUE_CEILING

    def __post_init__(self) -> None:
        if not 0 <= self.quality_revise <= self.quality_approve <= 100:  # noqa: PLR2004
            raise ConfigurationError(
                "Quality thresholds must satisfy 0 <= revise <= approve <= 100 "
                f"(got revise={self.quality_revise}, approve={self.quality_approve})"
            )
        if self.inference_batch_size < 1 or self.inference_attempts < 1:
            raise ConfigurationError("Inference batch size and attempts must be positive")
        if self.drift_overdue_ceiling < 0:
            raise ConfigurationError("Drift overdue ceiling cannot be negative")


def get_reconciliation_settings() -> ReconciliationSettings:
    return ReconciliationSettings(
        quality_approve=env_int("ATOMLEDGER_QUALITY_APPROVE", DEFAULT_QUALITY_APPROVE),
        quality_revise=env_int("ATOMLEDGER_QUALITY_REVISE", DEFAULT_QUALITY_REVISE),
        inference_batch_size=env_int(
            "ATOMLEDGER_INFERENCE_BATCH_SIZE", DEFAULT_INFERENCE_BATCH_SIZE
        ),
        inference_attempts=env_int("ATOMLEDGER_INFERENCE_ATTEMPTS", DEFAULT_INFERENCE_ATTEMPTS),
        inference_max_backoff=env_float("ATOMLEDGER_INFERENCE_MAX_BACKOFF", 8.0),
        drift_overdue_ceiling=env_int(
            "ATOMLEDGER_DRIFT_OVERDUE_CEILING", DEFAULT_DRIFT_OVERDUE_CEILING
        ),
    )
