"""Exception hierarchy for the render worker.

All custom exceptions subclass ``RenderWorkerError``, enabling consistent
error handling and structured logging across the worker.

Hierarchy::

    RenderWorkerError
    ├── QueueConnectionError     (operation: str)
    ├── JobError
    │   ├── JobParseError
    │   └── JobSchemaError       (missing: tuple[str, ...])
    ├── ScrapeError              (url: str, language: str)
    ├── ResultPersistError       (job_id)
    └── CleanupError
"""

from __future__ import annotations

from typing import Any


class RenderWorkerError(Exception):
    """Base class for all render worker exceptions."""


# ---------------------------------------------------------------------------
# Queue exceptions
# ---------------------------------------------------------------------------


class QueueConnectionError(RenderWorkerError):
    """Raised when a Redis queue operation fails at the transport level.

    Args:
        message: Human-readable description of the failure.
        operation: The queue primitive that failed (``"pop"``, ``"push"``
            or ``"ping"``).
    """

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation


# ---------------------------------------------------------------------------
# Job payload exceptions
# ---------------------------------------------------------------------------


class JobError(RenderWorkerError):
    """Base class for wait-queue payloads that cannot become a job.

    Args:
        message: Human-readable description of the problem.
        raw: The raw payload as it was popped from the queue.
    """

    def __init__(self, message: str, raw: str | bytes | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class JobParseError(JobError):
    """Raised when a payload is not valid JSON or not a JSON object."""


class JobSchemaError(JobError):
    """Raised when a payload is missing ``id`` or ``url`` (or they are ill-typed).

    Args:
        message: Human-readable description of the problem.
        raw: The raw payload.
        missing: Names of the required fields that failed validation.
    """

    def __init__(
        self,
        message: str,
        raw: str | bytes | None = None,
        missing: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message, raw=raw)
        self.missing = missing


# ---------------------------------------------------------------------------
# Rendering exceptions
# ---------------------------------------------------------------------------


class ScrapeError(RenderWorkerError):
    """Raised when a page cannot be rendered.

    Covers browser launch, navigation and content capture failures.  A
    scrape error is a reportable job outcome, not a worker fault.

    Args:
        message: Human-readable description of the failure.
        url: The URL that was being rendered.
        language: The language key of the engine used.
    """

    def __init__(self, message: str, url: str, language: str) -> None:
        super().__init__(message)
        self.url = url
        self.language = language


class CleanupError(RenderWorkerError):
    """Raised inside a detached page cleanup.  Logged, never propagated."""


# ---------------------------------------------------------------------------
# Persistence exceptions
# ---------------------------------------------------------------------------


class ResultPersistError(RenderWorkerError):
    """Raised when a job outcome cannot be pushed to the done queue.

    Args:
        job_id: Identifier of the job whose outcome was not stored.
    """

    def __init__(self, job_id: Any) -> None:
        super().__init__(f"Unable to store job result for ID {job_id}")
        self.job_id = job_id
