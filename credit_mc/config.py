"""Simulation run configuration."""

import logging
import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


def _default_threads() -> int:
    return os.cpu_count() or 1


class SimulationConfig(BaseModel):
    """Sizing, seeding and threading parameters for a simulation run.

    Attributes:
        num_scenarios: Number of systematic scenarios (rows of Z) to use.
            ``None`` means all rows of the supplied scenario matrix.
        draws_per_scenario: Idiosyncratic draws per scenario (K).
        seed: Global seed addressing every random stream.
        num_threads: Worker threads. Affects speed only, never results.
        chunk_size: Scenario-draw rows per work chunk.
        confidence: Quantile used for VaR and Expected Shortfall.

    Examples:
        Tail-focused run on eight threads::

            config = SimulationConfig(
                num_scenarios=10_000,
                draws_per_scenario=10,
                seed=2024,
                num_threads=8,
            )
    """

    num_scenarios: Optional[int] = Field(default=None, ge=1)
    draws_per_scenario: int = Field(default=1, ge=1)
    seed: int = Field(default=0, ge=0)
    num_threads: int = Field(default_factory=_default_threads, ge=1)
    chunk_size: int = Field(default=2048, ge=1)
    confidence: float = Field(default=0.99, gt=0, lt=1)

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        """Warn about chunk sizes too small to amortize per-chunk overhead."""
        if v < 64:
            logger.warning("chunk_size=%d is very small; expect poor throughput", v)
        return v

    @property
    def total_draws(self) -> Optional[int]:
        """Size of the scenario-draw index space, if known."""
        if self.num_scenarios is None:
            return None
        return self.num_scenarios * self.draws_per_scenario
