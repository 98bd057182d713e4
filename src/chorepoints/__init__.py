"""ChorePoints package for running a family chore points and rewards ledger."""

from .admin import AuditLog
from .claims import ClaimEngine
from .dashboards import ChildDashboard, ParentDashboard
from .exceptions import (
    ChorePointsError,
    InsufficientPointsError,
    InvalidTransitionError,
    MissingReferenceError,
    NotFoundError,
    PreconditionError,
    RetriesExhaustedError,
    TransactionConflictError,
    ValidationError,
)
from .family import FamilyCoordinator
from .ledger import can_afford, credit, debit, progress
from .models import (
    ClaimStatus,
    Family,
    FanOutResult,
    FanOutStatus,
    Reward,
    RewardClaim,
    Task,
    TaskStatus,
    User,
    UserRole,
)
from .ops import StructuredLogger
from .service import ChorePoints
from .store import (
    DocumentStore,
    InMemoryDocumentStore,
    InMemoryObjectStore,
    LocalObjectStore,
    ObjectStore,
    Subscription,
    Transaction,
    run_transaction,
    where,
)
from .tasks import TaskEngine

__all__ = [
    "AuditLog",
    "ChildDashboard",
    "ChorePoints",
    "ChorePointsError",
    "ClaimEngine",
    "ClaimStatus",
    "DocumentStore",
    "Family",
    "FamilyCoordinator",
    "FanOutResult",
    "FanOutStatus",
    "InMemoryDocumentStore",
    "InMemoryObjectStore",
    "InsufficientPointsError",
    "InvalidTransitionError",
    "LocalObjectStore",
    "MissingReferenceError",
    "NotFoundError",
    "ObjectStore",
    "ParentDashboard",
    "PreconditionError",
    "RetriesExhaustedError",
    "Reward",
    "RewardClaim",
    "StructuredLogger",
    "Subscription",
    "Task",
    "TaskEngine",
    "TaskStatus",
    "Transaction",
    "TransactionConflictError",
    "User",
    "UserRole",
    "ValidationError",
    "can_afford",
    "credit",
    "debit",
    "progress",
    "run_transaction",
    "where",
]
