"""Domain error taxonomy shared by services and the HTTP layer.

Services raise these; ``app.main`` turns them into JSON responses of the
form ``{"error": <kind>, "detail": <message>}``.
"""

from typing import Optional


class PosError(Exception):
    """Base class for every failure a caller is expected to handle."""

    kind = "error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, *, entity: Optional[str] = None, entity_id: Optional[int] = None):
        self.message = message
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"error": self.kind, "detail": self.message}
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(PosError):
    """Missing or malformed input (zero quantity, missing customer...)."""

    kind = "validation_error"
    status_code = 422


class StateConflict(PosError):
    """Operation not legal from the current item/order/table state."""

    kind = "state_conflict"
    status_code = 409


class NotFound(PosError):
    """Referenced table, order, item, product or customer does not exist."""

    kind = "not_found"
    status_code = 404

    @classmethod
    def for_entity(cls, entity: str, entity_id: int) -> "NotFound":
        return cls(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)


class Forbidden(PosError):
    """Role not permitted for the operation."""

    kind = "forbidden"
    status_code = 403


class LockTimeout(PosError):
    """Row lock could not be acquired in time. Safe to retry."""

    kind = "lock_timeout"
    status_code = 503
    retryable = True
