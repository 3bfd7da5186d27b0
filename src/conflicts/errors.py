"""Typed errors raised by the conflict engine.

Every public engine operation either returns a value or raises one of
these. The API layer maps each kind to a distinct HTTP status.
"""

from __future__ import annotations


class ConflictEngineError(Exception):
    """Base exception for conflict engine errors."""

    code: str = "conflict_engine_error"


class ValidationError(ConflictEngineError):
    """Rejected input: unknown strategy, empty reason, malformed filters."""

    code = "validation_error"


class NotFoundError(ConflictEngineError):
    """Raised when a conflict id does not exist."""

    code = "not_found"

    def __init__(self, conflict_id: object) -> None:
        self.conflict_id = conflict_id
        super().__init__(f"Conflict {conflict_id} not found")


class ConflictStateError(ConflictEngineError):
    """Raised when a resolve/ignore targets a conflict that is not pending.

    Attributes:
        conflict_id: The conflict that was targeted.
        current_status: Status observed at the time of the attempt.
    """

    code = "invalid_state"

    def __init__(self, conflict_id: object, current_status: str) -> None:
        self.conflict_id = conflict_id
        self.current_status = current_status
        super().__init__(f"Conflict {conflict_id} is {current_status}, expected pending")


class WriteFailure(ConflictEngineError):
    """Raised when the canonical store rejects the resolved value.

    The conflict stays pending and the operation is safe to retry.
    """

    code = "write_failure"

    def __init__(self, conflict_id: object, detail: str = "") -> None:
        self.conflict_id = conflict_id
        self.detail = detail
        msg = f"Canonical write failed for conflict {conflict_id}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class DetectionSourceUnavailable(ConflictEngineError):
    """Raised by a remote source when an entity cannot be fetched."""

    code = "source_unavailable"

    def __init__(self, entity_type: str, entity_id: str, detail: str = "") -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.detail = detail
        msg = f"Remote source unavailable for {entity_type}#{entity_id}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class PolicyUnavailable(ConflictEngineError):
    """Raised when the tenant policy cannot be loaded from its store."""

    code = "policy_unavailable"

    def __init__(self, tenant_id: str, detail: str = "") -> None:
        self.tenant_id = tenant_id
        self.detail = detail
        msg = f"Resolution policy unavailable for tenant {tenant_id}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
