"""Model-serving daemon contract.

Structural contract (Protocol) so the services can run against the real
HTTP client or an in-memory fake in tests.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Protocol, runtime_checkable


@runtime_checkable
class ModelDaemon(Protocol):
    """Minimal surface the inventory and provisioning services need.

    Design rules:
    - Every call is async because it does I/O against the daemon.
    - Failures are raised as `core.errors` types, never as transport errors.
    """

    async def version(self) -> str | None:
        """Return the daemon version, or None if the daemon does not expose it."""

        ...

    async def list_models(self) -> list[dict[str, Any]]:
        """Return raw model entries (`name`, `size`, `modified_at`, ...)."""

        ...

    def stream_pull(self, model: str) -> AsyncIterator[dict[str, Any]]:
        """Start a download and yield progress events in receipt order."""

        ...

    async def delete(self, model: str) -> None:
        """Remove an installed model."""

        ...

    async def ping(self, model: str) -> None:
        """Trivial liveness check; raises if the model cannot answer."""

        ...
