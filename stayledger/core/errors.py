class LedgerError(Exception):
    """Base for every business-rule failure raised by the core.

    `entity` / `entity_id` identify what was being touched and `rule` names the
    violated rule (e.g. ``promotion.window``) so callers can render a precise message.
    """

    def __init__(self, message: str, *, entity: str | None = None, entity_id: str | None = None,
                 rule: str | None = None):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = entity_id
        self.rule = rule

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "entity": self.entity,
            "entityId": self.entity_id,
            "rule": self.rule,
        }


class ValidationError(LedgerError, ValueError):
    pass


class NotFoundError(LedgerError, LookupError):
    def __init__(self, entity: str, entity_id: str | None = None, message: str | None = None):
        super().__init__(message or f"{entity} not found", entity=entity, entity_id=entity_id,
                         rule=f"{entity.lower()}.exists")


class ConflictError(LedgerError):
    """The operation did not apply; safe to retry with fresh data."""


class RoomUnavailable(ConflictError):
    pass


class QuotaExhausted(ConflictError):
    pass


class AlreadyBilled(ConflictError):
    pass


class StateError(LedgerError):
    pass


class AuthorizationError(LedgerError, PermissionError):
    pass


class FatalError(LedgerError):
    """Unexpected internal failure; not part of the business taxonomy."""
