"""Error taxonomy for daemon and provisioning failures.

- Adapters translate transport/HTTP failures into these types.
- Services decide which ones are transient (retried) and which propagate.
- The CLI only needs to catch `KeeperError`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.domain.models import ProvisionResult


class KeeperError(Exception):
    """Base class for every error raised by ollama-keeper."""


class DaemonConnectionError(KeeperError, ConnectionError):
    """The daemon is unreachable (refused, DNS, timeout before a response)."""


class ProtocolError(KeeperError):
    """The daemon answered with a malformed or unexpected payload."""


class ModelNotFoundError(KeeperError):
    """The referenced model does not exist (remotely or locally)."""

    def __init__(self, model: str, detail: str | None = None) -> None:
        self.model = model
        self.detail = detail
        message = f"model '{model}' not found"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DownloadError(KeeperError):
    """Transport failure during a pull, or retry exhaustion.

    `attempts` is set when the error reports an exhausted retry loop.
    """

    def __init__(self, message: str, *, model: str | None = None, attempts: int | None = None) -> None:
        self.model = model
        self.attempts = attempts
        super().__init__(message)


class FilesystemError(KeeperError, OSError):
    """Free-space query impossible (path missing or inaccessible)."""


class InsufficientDiskSpaceError(FilesystemError):
    """Estimated model size exceeds the free space of the models volume."""

    def __init__(self, model: str, required_bytes: int, available_bytes: int) -> None:
        self.model = model
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes
        super().__init__(
            f"not enough disk space for '{model}': "
            f"needs ~{required_bytes} bytes, {available_bytes} available"
        )


class ProvisioningError(KeeperError):
    """One or more required models could not be provisioned."""

    def __init__(self, failures: dict[str, Exception], result: ProvisionResult | None = None) -> None:
        self.failures = dict(failures)
        self.result = result
        names = ", ".join(sorted(self.failures))
        super().__init__(f"failed to provision {len(self.failures)} model(s): {names}")


# Errors worth another attempt. Anything else is permanent.
TRANSIENT_ERRORS: tuple[type[KeeperError], ...] = (DaemonConnectionError, DownloadError)
