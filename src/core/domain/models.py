"""Domain models (Pydantic v2).

- Snapshots reported by the daemon (`ModelDescriptor`, `DaemonInfo`).
- Option and result bundles used by the provisioning services.

These models describe *what* the daemon reports, not *how* it is fetched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

# Daemon-defined, passed through as-is.
ProgressEvent = dict[str, Any]
ProgressCallback = Callable[[ProgressEvent], None]
HealthMap = dict[str, bool]


class ModelDescriptor(BaseModel):
    """One installed model, as listed by the daemon at query time."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(
        ...,
        min_length=1,
        description="Unique model identifier (e.g. 'llama3.2:latest').",
    )
    size: str = Field(
        ...,
        description="Human-readable size (e.g. '2.0 GB').",
    )
    modified: str = Field(
        default="",
        description="Last modification timestamp as reported by the daemon.",
    )
    size_bytes: int | None = Field(
        default=None,
        ge=0,
        description="Raw size in bytes, when the daemon reports it.",
    )
    digest: str | None = Field(
        default=None,
        description="Content digest of the model manifest.",
    )


class DaemonInfo(BaseModel):
    """Self-reported daemon state."""

    model_config = ConfigDict(frozen=True)

    models: list[str] = Field(
        default_factory=list,
        description="Installed model names, in daemon order.",
    )
    version: str | None = Field(
        default=None,
        description="Daemon version, absent when not exposed.",
    )


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for pull retries.

    Delay before retry `n` (0-based) is `min(base * 2**n, max)`, so it never
    decreases and never exceeds `max_delay_seconds`.
    """

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0

    def delay_for(self, retry_index: int) -> float:
        if self.base_delay_seconds <= 0:
            return 0.0
        return min(self.base_delay_seconds * (2**retry_index), self.max_delay_seconds)


@dataclass
class ProvisionResult:
    """Outcome of reconciling the required set against installed models."""

    required: list[str]
    already_installed: list[str] = field(default_factory=list)
    pulled: list[str] = field(default_factory=list)
    failed: dict[str, Exception] = field(default_factory=dict)

    @property
    def missing(self) -> list[str]:
        return [name for name in self.required if name not in self.already_installed]

    @property
    def ok(self) -> bool:
        return not self.failed
