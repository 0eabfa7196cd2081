"""Error taxonomy shared by the services and the HTTP layer.

Every error is a ``ValueError`` so callers that only care about "the
request was refused" can keep catching that, the way the services always
have.
"""

from typing import Optional


class LedgerError(ValueError):
    pass


class ValidationError(LedgerError):
    """Malformed input, refused before anything is written."""


class NotFoundError(LedgerError):
    def __init__(self, entity: str, entity_id: Optional[int] = None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


class ConflictError(LedgerError):
    """The stored state no longer allows the operation. Retry with fresh state."""


class BillAlreadyPaid(ConflictError):
    def __init__(self, bill_id: int) -> None:
        self.bill_id = bill_id
        super().__init__("Bill already paid")


class IntegrityViolation(LedgerError):
    def __init__(
        self,
        kind: str,
        entity_id: int,
        references: Optional[list[tuple[str, int]]] = None,
    ) -> None:
        self.kind = kind
        self.entity_id = entity_id
        self.references = references or []
        super().__init__(f"{kind.capitalize()} is referenced by ledger records")


class StoreUnavailable(LedgerError):
    """The database failed or timed out. Never retried here."""
