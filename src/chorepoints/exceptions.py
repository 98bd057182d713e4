"""Custom exception hierarchy for the ChorePoints package."""

from __future__ import annotations


class ChorePointsError(Exception):
    """Base class for all ChorePoints specific errors."""


class ValidationError(ChorePointsError, ValueError):
    """Raised when a field value is rejected (negative points, empty title, ...)."""


class NotFoundError(ChorePointsError):
    """Raised when a referenced document does not exist."""

    def __init__(self, collection: str, document_id: str) -> None:
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"{collection}/{document_id} does not exist.")


class MissingReferenceError(ChorePointsError):
    """Raised when an entity lacks an id or a required family reference."""


class PreconditionError(ChorePointsError):
    """Raised when an operation is not allowed in the current state."""


class InvalidTransitionError(PreconditionError):
    """Raised when a task or claim cannot move to the requested status."""

    def __init__(self, entity: str, entity_id: str, current: str, attempted: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.attempted = attempted
        super().__init__(f"Cannot {attempted} {entity} '{entity_id}' while it is {current}.")


class InsufficientPointsError(PreconditionError):
    """Raised when a child cannot afford the reward being claimed."""

    def __init__(self, child_id: str, balance: int, cost: int) -> None:
        self.child_id = child_id
        self.balance = balance
        self.cost = cost
        self.shortfall = cost - balance
        super().__init__(
            f"Child '{child_id}' has {balance} points but the reward costs {cost} "
            f"({self.shortfall} short)."
        )


class TransactionConflictError(ChorePointsError):
    """Raised when a document read inside a transaction changed before commit."""


class RetriesExhaustedError(TransactionConflictError):
    """Raised when a transaction kept conflicting for every allowed attempt."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Transaction still conflicting after {attempts} attempts.")
