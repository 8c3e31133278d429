"""Typed errors raised by the compliance engine.

No-match and no-trigger outcomes are never errors; they are returned as
explicit ``False`` / empty results. These exceptions cover caller mistakes,
workflow violations, storage races, and configuration defects.
"""


class ComplianceError(Exception):
    """Base class for all compliance engine errors."""


class ValidationError(ComplianceError):
    """Malformed or missing required input. Never retried."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class NotFoundError(ComplianceError):
    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(ComplianceError):
    """The operation collides with an existing entity.

    ``existing_id`` identifies the entity the caller should read and merge
    with instead of retrying blindly.
    """

    def __init__(self, message: str, existing_id: str | None = None) -> None:
        super().__init__(message)
        self.existing_id = existing_id


class DuplicateCreationError(ConflictError):
    """A concurrent writer already created the entity under the same idempotency key."""


class StaleStateError(ConflictError):
    """A compare-and-swap write lost against a concurrent writer."""

    def __init__(self, entity_id: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"{entity_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            existing_id=entity_id,
        )
        self.expected_version = expected_version
        self.actual_version = actual_version


class InvalidStateError(ComplianceError):
    """A workflow operation is not allowed from the entity's current state."""

    def __init__(self, operation: str, current_state: str) -> None:
        super().__init__(f"invalid state for operation {operation!r}: {current_state}")
        self.operation = operation
        self.current_state = current_state


class ConfigurationError(ComplianceError):
    """Malformed regional calendar or thresholds. Fatal at startup."""


class SourceUnavailableError(ComplianceError):
    """A screening reference source could not be reached."""

    def __init__(self, source: str, reason: str = "unavailable") -> None:
        super().__init__(f"screening source {source} {reason}")
        self.source = source
        self.reason = reason
