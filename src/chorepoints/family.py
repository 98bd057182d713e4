"""Family membership: parents, co-parents and children."""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from .exceptions import (
    ChorePointsError,
    MissingReferenceError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from .models import (
    FAMILIES,
    REWARDS,
    TASKS,
    USER_EMAILS,
    USERS,
    Document,
    Family,
    FanOutResult,
    User,
    UserRole,
    merge_ids,
    new_id,
    normalise_email,
    remove_id,
)
from .ops import StructuredLogger
from .store import (
    DEFAULT_TRANSACTION_ATTEMPTS,
    DocumentStore,
    Transaction,
    run_transaction,
    where,
)

_UNSET = object()


def _clean_email(email: Optional[str]) -> str:
    cleaned = (email or "").strip()
    if "@" not in cleaned:
        raise ValidationError(f"Invalid email address: {email!r}")
    return cleaned


def require_family_children(txn: Transaction, child_ids: Sequence[str], family_id: str) -> None:
    """Fail unless every id names a child of ``family_id``.

    The child documents join the transaction's read set, so removing one of
    them concurrently makes the caller's commit conflict.
    """

    for child_id in child_ids:
        document = txn.read(USERS, child_id)
        if document is None:
            raise PreconditionError(f"Child '{child_id}' does not exist.")
        if document.get("role") != UserRole.CHILD.value:
            raise PreconditionError(f"User '{child_id}' is not a child.")
        if document.get("familyId") != family_id:
            raise PreconditionError(f"Child '{child_id}' is not a member of family '{family_id}'.")


def _chunks(items: Sequence[Tuple[str, str]], size: int) -> List[Sequence[Tuple[str, str]]]:
    return [items[index : index + size] for index in range(0, len(items), size)]


class FamilyCoordinator:
    """Keep both sides of every membership in step.

    A user's ``familyId`` and the family's ``parentIds``/``childIds`` are
    always written in the same transaction.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        logger: StructuredLogger | None = None,
        attempts: int = DEFAULT_TRANSACTION_ATTEMPTS,
        allow_multi_family_parents: bool = True,
    ) -> None:
        self._store = store
        self._logger = logger or StructuredLogger()
        self._attempts = attempts
        self.allow_multi_family_parents = allow_multi_family_parents

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def get_user(self, user_id: str) -> User:
        if not user_id:
            raise MissingReferenceError("User id is missing.")
        return User.from_document(self._store.require(USERS, user_id))

    def get_family(self, family_id: str) -> Family:
        if not family_id:
            raise MissingReferenceError("Family id is missing.")
        return Family.from_document(self._store.require(FAMILIES, family_id))

    def find_user_by_email(self, email: str) -> Optional[User]:
        wanted = normalise_email(email)
        if not wanted:
            return None
        documents = self._store.query(USERS, [where("emailLower", "==", wanted)], limit=1)
        return User.from_document(documents[0]) if documents else None

    def children(self, family_id: str) -> List[User]:
        documents = self._store.query(
            USERS,
            [where("familyId", "==", family_id), where("role", "==", UserRole.CHILD.value)],
            order_by="name",
        )
        return [User.from_document(doc) for doc in documents]

    def parents(self, family_id: str) -> List[User]:
        family = self.get_family(family_id)
        parents: List[User] = []
        for parent_id in family.parent_ids:
            document = self._store.get(USERS, parent_id)
            if document is not None:
                parents.append(User.from_document(document))
        return parents

    # ------------------------------------------------------------------
    # Membership changes
    # ------------------------------------------------------------------
    def register_parent(self, email: str, name: Optional[str] = None) -> Tuple[User, Family]:
        """Create a parent account together with a family it owns.

        The address is claimed through a ``userEmails`` document written in the
        same transaction, so two sign-ups with one address cannot both commit.
        """

        address = _clean_email(email)
        key = normalise_email(address)
        if self.find_user_by_email(address) is not None:
            raise PreconditionError(f"A user with email '{address}' already exists.")
        parent = User(
            id=new_id(),
            email=address,
            role=UserRole.PARENT,
            name=(name or "").strip() or None,
        )
        family = Family(id=new_id(), parent_ids=[parent.id])
        parent.family_id = family.id

        def body(txn: Transaction) -> None:
            if txn.read(USER_EMAILS, key) is not None:
                raise PreconditionError(f"A user with email '{address}' already exists.")
            txn.set(USER_EMAILS, key, {"userId": parent.id})
            txn.set(USERS, parent.id, parent.to_document())
            txn.set(FAMILIES, family.id, family.to_document())

        self._run(body)
        self._logger.log("parent_registered", parent=parent.id, family=family.id)
        return parent, family

    def create_family(self, parent_id: str) -> str:
        if not parent_id:
            raise MissingReferenceError("A family needs the id of its parent.")
        family_id = new_id()

        def body(txn: Transaction) -> None:
            parent = User.from_document(txn.require(USERS, parent_id))
            if parent.role is not UserRole.PARENT:
                raise PreconditionError(f"User '{parent_id}' is not a parent.")
            if parent.family_id and not self.allow_multi_family_parents:
                raise PreconditionError(f"Parent '{parent_id}' already belongs to family '{parent.family_id}'.")
            txn.set(FAMILIES, family_id, Family(id=family_id, parent_ids=[parent_id]).to_document())
            txn.update(USERS, parent_id, {"familyId": family_id})

        self._run(body)
        self._logger.log("family_created", family=family_id, parent=parent_id)
        return family_id

    def add_child(self, name: str, family_id: str, email: Optional[str] = None) -> User:
        if not family_id:
            raise MissingReferenceError("A child needs a family id.")
        display = (name or "").strip()
        if not display:
            raise ValidationError("A child needs a name.")
        child = User(
            id=new_id(),
            email=(email or "").strip(),
            role=UserRole.CHILD,
            family_id=family_id,
            name=display,
            points=0,
        )

        def body(txn: Transaction) -> User:
            family = Family.from_document(txn.require(FAMILIES, family_id))
            txn.set(USERS, child.id, child.to_document())
            txn.update(FAMILIES, family_id, {"childIds": merge_ids(family.child_ids, [child.id])})
            return child

        created = self._run(body)
        self._logger.log("child_added", child=created.id, family=family_id)
        return created

    def add_co_parent(self, email: str, family_id: str) -> User:
        """Attach an existing parent account, found by email, to ``family_id``."""

        if not family_id:
            raise MissingReferenceError("Family id is missing.")
        address = _clean_email(email)
        candidate = self.find_user_by_email(address)
        if candidate is None:
            raise PreconditionError(f"No user is registered with email '{address}'.")

        def body(txn: Transaction) -> User:
            family = Family.from_document(txn.require(FAMILIES, family_id))
            parent = User.from_document(txn.require(USERS, candidate.id))
            if parent.role is not UserRole.PARENT:
                raise PreconditionError(f"User '{address}' is not a parent.")
            if (
                parent.family_id
                and parent.family_id != family_id
                and not self.allow_multi_family_parents
            ):
                raise PreconditionError(f"Parent '{address}' already belongs to another family.")
            txn.update(FAMILIES, family_id, {"parentIds": merge_ids(family.parent_ids, [parent.id])})
            txn.update(USERS, parent.id, {"familyId": family_id})
            parent.family_id = family_id
            return parent

        parent = self._run(body)
        self._logger.log("co_parent_added", parent=parent.id, family=family_id)
        return parent

    def remove_child(self, child_id: str, family_id: str) -> FanOutResult:
        """Delete a child and strip it from every task and reward of the family.

        Everything happens in one transaction when it fits the store's write
        limit. Larger families are cleaned in chunks; the child document is
        only deleted once every chunk succeeded.
        """

        if not child_id or not family_id:
            raise MissingReferenceError("Removing a child needs both a child id and a family id.")
        child = self.get_user(child_id)
        if not child.is_child:
            raise PreconditionError(f"User '{child_id}' is not a child.")
        family = self.get_family(family_id)
        if child_id not in family.child_ids and child.family_id != family_id:
            raise PreconditionError(f"Child '{child_id}' is not a member of family '{family_id}'.")

        references: List[Tuple[str, str]] = []
        for collection in (TASKS, REWARDS):
            documents = self._store.query(
                collection,
                [where("familyId", "==", family_id), where("assignedChildIds", "array_contains", child_id)],
            )
            references.extend((collection, doc["id"]) for doc in documents)

        result = FanOutResult(operation="remove_child", target_id=child_id)
        limit = self._store.max_writes_per_transaction
        if len(references) + 2 <= limit:
            self._run(lambda txn: self._remove_atomically(txn, child_id, family_id, references))
            result.succeeded.extend(f"{collection}/{doc_id}" for collection, doc_id in references)
            result.succeeded.append(f"{USERS}/{child_id}")
        else:
            for chunk in _chunks(references, limit):
                try:
                    self._run(lambda txn, part=chunk: self._strip_references(txn, child_id, part))
                except ChorePointsError as exc:
                    for collection, doc_id in chunk:
                        result.failed[f"{collection}/{doc_id}"] = str(exc)
                else:
                    result.succeeded.extend(f"{collection}/{doc_id}" for collection, doc_id in chunk)
            if result.failed:
                result.failed[f"{USERS}/{child_id}"] = "child kept until every reference is removed"
            else:
                self._run(lambda txn: self._delete_member(txn, child_id, family_id))
                result.succeeded.append(f"{USERS}/{child_id}")

        self._logger.log("child_removed", child=child_id, family=family_id, status=result.status.value)
        if not result.is_complete:
            self._logger.anomaly("fan_out_partial", **result.as_dict())
        return result

    def update_profile(
        self,
        user_id: str,
        *,
        name: object = _UNSET,
        profile_picture_url: object = _UNSET,
    ) -> User:
        """Edit display fields. The point balance is never touched here."""

        changes: Document = {}
        if name is not _UNSET:
            changes["name"] = (str(name).strip() or None) if name is not None else None
        if profile_picture_url is not _UNSET:
            changes["profilePictureUrl"] = profile_picture_url

        def body(txn: Transaction) -> User:
            if not changes:
                return User.from_document(txn.require(USERS, user_id))
            return User.from_document(txn.update(USERS, user_id, changes))

        user = self._run(body)
        if changes:
            self._logger.log("profile_updated", user=user_id, fields=sorted(changes))
        return user

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _remove_atomically(
        self,
        txn: Transaction,
        child_id: str,
        family_id: str,
        references: Sequence[Tuple[str, str]],
    ) -> None:
        self._strip_references(txn, child_id, references)
        self._delete_member(txn, child_id, family_id)

    @staticmethod
    def _strip_references(txn: Transaction, child_id: str, references: Sequence[Tuple[str, str]]) -> None:
        for collection, doc_id in references:
            document = txn.read(collection, doc_id)
            if document is None:
                continue
            assigned = list(document.get("assignedChildIds") or [])
            if child_id in assigned:
                txn.update(collection, doc_id, {"assignedChildIds": remove_id(assigned, child_id)})

    @staticmethod
    def _delete_member(txn: Transaction, child_id: str, family_id: str) -> None:
        family_doc = txn.read(FAMILIES, family_id)
        if family_doc is None:
            raise NotFoundError(FAMILIES, family_id)
        family = Family.from_document(family_doc)
        txn.delete(USERS, child_id)
        txn.update(FAMILIES, family_id, {"childIds": remove_id(family.child_ids, child_id)})

    def _run(self, body):
        return run_transaction(self._store, body, attempts=self._attempts, logger=self._logger)


__all__ = ["FamilyCoordinator", "require_family_children"]
