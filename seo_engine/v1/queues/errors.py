"""
Error taxonomy for stage handlers.

The worker pool decides a job's fate from the exception its handler raised.
A ``JobError`` with ``retryable = False`` is never retried.

- ``TransientIOError``: retried with exponential backoff.
- ``EntityGoneError``: the referenced project/page no longer exists; the job
  completes as skipped and is never retried.
- ``ValidationError``: the job was malformed when it was enqueued; fails
  terminally without retry.
- ``TerminalAgentError``: the agent kept failing; retried until the queue's
  attempts are exhausted, then surfaced to the health reporter.

Any other exception is treated like ``TransientIOError``.
"""

from typing import Any


class JobError(Exception):
    """Base class for errors raised from stage handlers."""

    retryable = True

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class TransientIOError(JobError):
    """An I/O boundary failed in a way that may succeed on a later attempt."""


class EntityGoneError(JobError):
    """The entity a job refers to was deleted after the job was enqueued."""

    retryable = False


class ValidationError(JobError):
    """The job payload cannot be processed no matter how often it is retried."""

    retryable = False


class TerminalAgentError(JobError):
    """An agent failed schema validation or its upstream model call."""


class AgentError(Exception):
    """Raised by Agent collaborators when generation or validation fails."""

    def __init__(self, agent_type: str, message: str):
        self.agent_type = agent_type
        super().__init__(f"{agent_type}: {message}")
