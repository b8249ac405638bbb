"""Configuration classes for FlowLoop.

This module provides the engine and retry configuration models.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, model_validator

from flowloop.errors.exceptions import InvalidConfigError
from flowloop.resilience.retry import RetryPolicy, RetryStrategy


class FailurePolicy(str, Enum):
    """What a run does after a stage fails."""

    HALT = "halt"          # Stop the run after the failing stage
    CONTINUE = "continue"  # Keep running units that do not depend on the failure


class RetryConfig(BaseModel):
    """Configuration for retrying transient agent failures.

    Example:
        >>> config = RetryConfig(max_retries=2, initial_delay=0.5)
        >>> policy = config.to_policy()
    """

    enabled: bool = Field(default=True, description="Whether agent calls are retried")
    max_retries: int = Field(
        default=3,
        ge=0,
        description="Maximum number of retry attempts",
    )
    initial_delay: float = Field(
        default=1.0,
        gt=0,
        description="Initial delay between retries in seconds",
    )
    max_delay: float = Field(
        default=30.0,
        gt=0,
        description="Maximum delay between retries in seconds",
    )
    jitter: bool = Field(default=True, description="Randomize delays slightly")

    @model_validator(mode="after")
    def _check_delays(self) -> RetryConfig:
        if self.max_delay < self.initial_delay:
            raise InvalidConfigError(
                "max_delay", self.max_delay, "Must be >= initial_delay."
            )
        return self

    def to_policy(self) -> RetryPolicy:
        """Build the exponential-backoff policy described by this config."""
        return RetryPolicy(
            max_retries=self.max_retries,
            strategy=RetryStrategy.EXPONENTIAL,
            base_delay=self.initial_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
        )


class EngineConfig(BaseModel):
    """Configuration for loop execution and run scheduling.

    Example:
        >>> config = EngineConfig(
        ...     convergence_threshold=0.9,
        ...     failure_policy=FailurePolicy.CONTINUE,
        ... )
    """

    convergence_threshold: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
        description="Similarity at or above which consecutive outputs count as converged",
    )
    oscillation_threshold: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Similarity to the output two iterations back that signals oscillation",
    )
    convergence_window: int = Field(
        default=1,
        ge=1,
        description="Number of previous outputs the latest one is compared against",
    )
    stop_on_oscillation: bool = Field(
        default=False,
        description="End loops whose output flip-flops between two states",
    )
    default_max_iterations: int = Field(
        default=10,
        ge=1,
        description="Iteration cap for loops without a loop edge config",
    )
    default_timeout_seconds: float | None = Field(
        default=300.0,
        ge=0.0,
        description="Loop deadline for loops without a loop edge config",
    )
    failure_policy: FailurePolicy = Field(default=FailurePolicy.HALT)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    max_concurrent_units: int | None = Field(
        default=None,
        gt=0,
        description="Cap on units running at once inside a stage. None means unbounded.",
    )
