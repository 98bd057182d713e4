"""FastAPI JSON API for ChorePoints.

Routes are thin wrappers around :class:`~chorepoints.service.ChorePoints`;
engine errors are translated into HTTP status codes by the exception
handlers registered in :func:`create_app`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from ..exceptions import (
    ChorePointsError,
    InsufficientPointsError,
    InvalidTransitionError,
    MissingReferenceError,
    NotFoundError,
    PreconditionError,
    TransactionConflictError,
    ValidationError,
)
from ..models import ClaimStatus, FanOutResult
from ..ops import StructuredLogger
from ..service import ChorePoints
from ..store import LocalObjectStore
from .config import Settings, load_settings
from .persistence import SqlDocumentStore
from .schemas import (
    ChildCreate,
    ClaimCreate,
    ClaimPromise,
    CoParentAdd,
    FamilyCreate,
    ParentCreate,
    ProfileUpdate,
    RewardCreate,
    RewardUpdate,
    TaskCreate,
    TaskSubmit,
    TaskUpdate,
)

PARENT_QUEUE = (ClaimStatus.PENDING, ClaimStatus.REMINDED)


def as_json(entity: Any) -> Dict[str, Any]:
    """Serialise a domain record in its stored (camelCase) shape, including its id."""

    return {"id": entity.id, **entity.to_document()}


def fan_out_response(payload: Dict[str, Any], result: FanOutResult) -> JSONResponse:
    payload["result"] = result.as_dict()
    return JSONResponse(payload, status_code=200 if result.is_complete else 207)


def _error_body(exc: ChorePointsError, kind: str) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": kind, "detail": str(exc)}
    if isinstance(exc, InsufficientPointsError):
        body.update(balance=exc.balance, cost=exc.cost, shortfall=exc.shortfall)
    if isinstance(exc, InvalidTransitionError):
        body.update(current=exc.current, attempted=exc.attempted)
    return body


def build_service(settings: Settings) -> ChorePoints:
    store = SqlDocumentStore.from_url(
        settings.database_url,
        max_writes_per_transaction=settings.max_transaction_writes,
    )
    return ChorePoints(
        store,
        object_store=LocalObjectStore(settings.media_root, base_url=settings.media_url),
        logger=StructuredLogger(path=settings.log_path),
        attempts=settings.transaction_attempts,
        allow_multi_family_parents=settings.allow_multi_family_parents,
    )


def register_error_handlers(app: FastAPI, logger: StructuredLogger) -> None:
    statuses = (
        (NotFoundError, 404, "not_found"),
        (PreconditionError, 409, "precondition_failed"),
        (MissingReferenceError, 422, "missing_reference"),
        (ValidationError, 422, "invalid"),
        (TransactionConflictError, 503, "conflict"),
    )

    for error_type, status_code, kind in statuses:

        def handler(request: Request, exc: Exception, status_code=status_code, kind=kind) -> JSONResponse:
            logger.log(
                "request_rejected",
                severity="warning" if status_code >= 500 else "info",
                path=request.url.path,
                status=status_code,
                error=str(exc),
            )
            return JSONResponse(_error_body(exc, kind), status_code=status_code)  # type: ignore[arg-type]

        app.add_exception_handler(error_type, handler)


def create_app(service: Optional[ChorePoints] = None, *, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API around ``service``, or around one configured from the environment."""

    if service is None:
        service = build_service(settings or load_settings())
    app = FastAPI(title="ChorePoints")
    app.state.service = service
    register_error_handlers(app, service.logger)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Families and members
    # ------------------------------------------------------------------
    @app.post("/parents", status_code=201)
    def register_parent(payload: ParentCreate) -> Dict[str, Any]:
        parent, family = service.register_parent(payload.email, payload.name)
        return {"parent": as_json(parent), "family": as_json(family)}

    @app.post("/families", status_code=201)
    def create_family(payload: FamilyCreate) -> Dict[str, Any]:
        family_id = service.create_family(payload.parent_id)
        return as_json(service.get_family(family_id))

    @app.get("/families/{family_id}")
    def get_family(family_id: str) -> Dict[str, Any]:
        return as_json(service.get_family(family_id))

    @app.get("/families/{family_id}/parents")
    def list_parents(family_id: str) -> List[Dict[str, Any]]:
        return [as_json(parent) for parent in service.parents(family_id)]

    @app.post("/families/{family_id}/co-parents")
    def add_co_parent(family_id: str, payload: CoParentAdd) -> Dict[str, Any]:
        return as_json(service.add_co_parent(payload.email, family_id))

    @app.get("/families/{family_id}/children")
    def list_children(family_id: str) -> List[Dict[str, Any]]:
        return [as_json(child) for child in service.children(family_id)]

    @app.post("/families/{family_id}/children", status_code=201)
    def add_child(family_id: str, payload: ChildCreate) -> Dict[str, Any]:
        return as_json(service.add_child(payload.name, family_id, payload.email))

    @app.delete("/families/{family_id}/children/{child_id}")
    def remove_child(family_id: str, child_id: str) -> JSONResponse:
        result = service.remove_child(child_id, family_id)
        return fan_out_response({"child": child_id}, result)

    @app.get("/users/{user_id}")
    def get_user(user_id: str) -> Dict[str, Any]:
        return as_json(service.get_user(user_id))

    @app.patch("/users/{user_id}")
    def update_profile(user_id: str, payload: ProfileUpdate) -> Dict[str, Any]:
        changes = payload.model_dump(exclude_unset=True)
        return as_json(service.update_profile(user_id, **changes))

    @app.post("/users/{user_id}/profile-picture")
    async def upload_profile_picture(user_id: str, request: Request) -> Dict[str, Any]:
        data = await request.body()
        if not data:
            raise ValidationError("Image upload is empty.")
        return as_json(service.upload_profile_picture(user_id, data))

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    @app.post("/tasks", status_code=201)
    def create_task(payload: TaskCreate) -> Dict[str, Any]:
        return as_json(service.create_task(**payload.model_dump()))

    @app.get("/tasks/{task_id}")
    def get_task(task_id: str) -> Dict[str, Any]:
        return as_json(service.get_task(task_id))

    @app.patch("/tasks/{task_id}")
    def update_task(task_id: str, payload: TaskUpdate) -> Dict[str, Any]:
        return as_json(service.update_task(task_id, **payload.model_dump(exclude_unset=True)))

    @app.delete("/tasks/{task_id}")
    def delete_task(task_id: str) -> Dict[str, Any]:
        return as_json(service.delete_task(task_id))

    @app.post("/tasks/{task_id}/submit")
    def submit_task(task_id: str, payload: Optional[TaskSubmit] = None) -> Dict[str, Any]:
        proof = payload.proof_image_url if payload is not None else None
        return as_json(service.submit_task(task_id, proof))

    @app.post("/tasks/{task_id}/proof")
    async def upload_proof(task_id: str, request: Request) -> Dict[str, Any]:
        data = await request.body()
        if not data:
            raise ValidationError("Image upload is empty.")
        return as_json(service.upload_proof(task_id, data))

    @app.post("/tasks/{task_id}/approve")
    def approve_task(task_id: str) -> JSONResponse:
        task, result = service.approve_task(task_id)
        return fan_out_response({"task": as_json(task)}, result)

    @app.post("/tasks/{task_id}/decline")
    def decline_task(task_id: str) -> Dict[str, Any]:
        return as_json(service.decline_task(task_id))

    @app.post("/tasks/{task_id}/reset")
    def reset_task(task_id: str) -> Dict[str, Any]:
        return as_json(service.reset_task(task_id))

    @app.get("/families/{family_id}/tasks")
    def family_tasks(family_id: str) -> List[Dict[str, Any]]:
        return [as_json(task) for task in service.tasks_for_family(family_id)]

    @app.get("/families/{family_id}/tasks/submitted")
    def submitted_tasks(family_id: str) -> List[Dict[str, Any]]:
        return [as_json(task) for task in service.tasks_awaiting_approval(family_id)]

    @app.get("/children/{child_id}/tasks")
    def child_tasks(child_id: str, include_approved: bool = True) -> List[Dict[str, Any]]:
        tasks = service.tasks_for_child(child_id, include_approved=include_approved)
        return [as_json(task) for task in tasks]

    # ------------------------------------------------------------------
    # Rewards and claims
    # ------------------------------------------------------------------
    @app.post("/rewards", status_code=201)
    def create_reward(payload: RewardCreate) -> Dict[str, Any]:
        return as_json(service.create_reward(**payload.model_dump()))

    @app.get("/rewards/{reward_id}")
    def get_reward(reward_id: str) -> Dict[str, Any]:
        return as_json(service.get_reward(reward_id))

    @app.patch("/rewards/{reward_id}")
    def update_reward(reward_id: str, payload: RewardUpdate) -> Dict[str, Any]:
        return as_json(service.update_reward(reward_id, **payload.model_dump(exclude_unset=True)))

    @app.delete("/rewards/{reward_id}")
    def delete_reward(reward_id: str) -> Dict[str, Any]:
        return as_json(service.delete_reward(reward_id))

    @app.get("/families/{family_id}/rewards")
    def family_rewards(family_id: str) -> List[Dict[str, Any]]:
        return [as_json(reward) for reward in service.rewards_for_family(family_id)]

    @app.post("/rewards/{reward_id}/claim", status_code=201)
    def claim_reward(reward_id: str, payload: ClaimCreate) -> Dict[str, Any]:
        return as_json(service.claim_reward(reward_id, payload.child_id))

    @app.get("/claims/{claim_id}")
    def get_claim(claim_id: str) -> Dict[str, Any]:
        return as_json(service.get_claim(claim_id))

    @app.post("/claims/{claim_id}/remind")
    def remind_claim(claim_id: str) -> Dict[str, Any]:
        return as_json(service.remind_claim(claim_id))

    @app.post("/claims/{claim_id}/promise")
    def promise_claim(claim_id: str, payload: ClaimPromise) -> Dict[str, Any]:
        return as_json(service.promise_claim(claim_id, payload.promised_date))

    @app.post("/claims/{claim_id}/grant")
    def grant_claim(claim_id: str) -> Dict[str, Any]:
        return as_json(service.grant_claim(claim_id))

    @app.delete("/claims/{claim_id}")
    def delete_claim(claim_id: str) -> Dict[str, Any]:
        return as_json(service.delete_claim(claim_id))

    @app.get("/families/{family_id}/claims")
    def family_claims(
        family_id: str,
        status: Optional[List[ClaimStatus]] = Query(default=None),
    ) -> List[Dict[str, Any]]:
        claims = service.claims_for_family(family_id, statuses=status)
        return [as_json(claim) for claim in claims]

    # ------------------------------------------------------------------
    # Dashboards
    # ------------------------------------------------------------------
    @app.get("/children/{child_id}/dashboard")
    def child_dashboard(child_id: str) -> Dict[str, Any]:
        child = service.get_user(child_id)
        rewards = service.unclaimed_rewards(child_id)
        return {
            "child": as_json(child),
            "points": child.points,
            "tasks": [as_json(task) for task in service.tasks_for_child(child_id, include_approved=False)],
            "rewards": [
                {**as_json(reward), "progress": service.reward_progress(child_id, reward.id)}
                for reward in rewards
            ],
            "claims": [as_json(claim) for claim in service.claims_for_child(child_id)],
        }

    @app.get("/families/{family_id}/dashboard")
    def parent_dashboard(family_id: str) -> Dict[str, Any]:
        family = service.get_family(family_id)
        return {
            "family": as_json(family),
            "children": [as_json(child) for child in service.children(family_id)],
            "submitted_tasks": [as_json(task) for task in service.tasks_awaiting_approval(family_id)],
            "open_claims": [
                as_json(claim) for claim in service.claims_for_family(family_id, statuses=PARENT_QUEUE)
            ],
        }

    return app


__all__ = ["as_json", "build_service", "create_app", "register_error_handlers"]
