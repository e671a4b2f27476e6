"""Exception hierarchy for hireflow."""

from __future__ import annotations


class HireflowError(Exception):
    """Base class for all hireflow errors."""


class ValidationError(HireflowError):
    """Invalid transition, definition or job payload. Never retried."""


class NotFoundError(HireflowError):
    """A referenced instance, record or definition does not exist."""


class ExternalServiceError(HireflowError):
    """A remote collaborator (email, calendar, AI) failed.

    Raised from processors so the dispatcher retries the job.
    """

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service


class ConfigurationError(HireflowError):
    """Fatal misconfiguration detected while wiring services."""


class ConcurrentModificationError(HireflowError):
    """An instance was written by someone else since it was read."""


class InvalidOrderError(ValidationError):
    def __init__(self, current_order: int, target_order: int) -> None:
        super().__init__(
            f"Target stage order {target_order} is not after current order {current_order}"
        )
        self.current_order = current_order
        self.target_order = target_order


class RequirementsNotMetError(ValidationError):
    """The current required stage still has unmet requirements."""


class NoStagesError(ValidationError):
    """The workflow definition has no stages."""


class AlreadyActiveError(ValidationError):
    """An active instance already exists for the candidate/job pair."""


class NoPausedInstanceError(ValidationError):
    """``resume`` was called on an instance that is not paused."""


class JobValidationError(ValidationError):
    """A queue job payload failed validation."""


class UnknownQueueError(ValidationError):
    """A queue or lane name is not configured."""


class NoActiveInstanceError(NotFoundError):
    """No active instance exists for the candidate/job pair."""


class StageNotFoundError(NotFoundError):
    """The stage id is not part of the instance's workflow definition."""


class DefinitionNotFoundError(NotFoundError):
    """The workflow definition is missing or inactive."""


class RecordNotFoundError(NotFoundError):
    """A candidate, job posting, company or employee record is missing."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id
