"""
Control Plane - FastAPI Application

HTTP surface over the decision core:
- POST /tasks                       create a task (RECEIVED)
- GET  /tasks/{task_id}             current state and history
- GET  /tasks/{task_id}/history     transition history only
- POST /tasks/{task_id}/transition  request a state change (proposal for VALIDATED)
- POST /tasks/{task_id}/execute     hand an APPROVED task to execution
- POST /tasks/prune                 drop tasks that reached a terminal state
- POST /policy/evaluate             evaluate a proposal without touching any task

Proposal bodies accept risk_level | riskLevel | risk and cost_usd | costUsd.

The ASGI app is built by create_app(). `control-plane serve` runs it through
uvicorn's factory mode, so importing this module does not load a policy.

Status codes:
- 404 unknown task
- 409 transition not in the table
- 422 proposal missing on a policy-gated transition, or invalid input
- 200 for a policy rejection (the task lands in FAILED)
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from pydantic import AliasChoices, BaseModel, Field, field_validator

from . import __version__
from .config import configure_logging, load_settings
from .lifecycle import Task, TaskState, TransitionErrorKind, TransitionRecord, allowed_targets
from .orchestrator import (
    LifecycleOrchestrator,
    TaskNotFoundError,
    TaskRegistry,
    TransitionResult,
    get_task_registry,
)
from .policy_evaluator import Decision, Proposal, RiskLevel, Verdict, evaluate
from .policy_loader import PolicyConfigError, parse_policy_document

# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
configure_logging(load_settings().log_level)
logger = logging.getLogger("control_plane_api")


# -----------------------------------------------------------------------------
# Request/Response Models
# -----------------------------------------------------------------------------
class CreateTaskRequest(BaseModel):
    """Request model for task intake."""
    description: Optional[str] = Field(default=None, max_length=2000)


class TransitionRecordModel(BaseModel):
    from_state: TaskState
    to_state: TaskState
    at: datetime
    reason: Optional[str] = None

    @classmethod
    def from_record(cls, record: TransitionRecord) -> "TransitionRecordModel":
        return cls(
            from_state=record.from_state,
            to_state=record.to_state,
            at=record.at,
            reason=record.reason,
        )


class TaskResponse(BaseModel):
    """Response model for task creation and lookup."""
    task_id: str
    state: TaskState
    created_at: datetime
    description: Optional[str] = None
    allowed_targets: List[TaskState]
    history: List[TransitionRecordModel]


class ProposalModel(BaseModel):
    risk_level: RiskLevel = Field(..., validation_alias=AliasChoices("risk_level", "riskLevel", "risk"))
    cost_usd: float = Field(..., ge=0, allow_inf_nan=False, validation_alias=AliasChoices("cost_usd", "costUsd"))

    @field_validator("risk_level", mode="before")
    @classmethod
    def lowercase_risk(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    def to_proposal(self) -> Proposal:
        return Proposal(risk_level=self.risk_level, cost_usd=self.cost_usd)


class TransitionRequest(BaseModel):
    """Request model for a state change."""
    target_state: TaskState
    proposal: Optional[ProposalModel] = None


class ViolationModel(BaseModel):
    rule: str
    detail: str


class DecisionModel(BaseModel):
    verdict: Verdict
    violations: List[ViolationModel]

    @classmethod
    def from_decision(cls, decision: Decision) -> "DecisionModel":
        return cls(
            verdict=decision.verdict,
            violations=[ViolationModel(rule=v.rule, detail=v.detail) for v in decision.violations],
        )


class TransitionResponse(BaseModel):
    """Response model for an accepted transition."""
    task_id: str
    previous_state: TaskState
    current_state: TaskState
    history: List[TransitionRecordModel]
    decision: Optional[DecisionModel] = None
    message: str


class PruneResponse(BaseModel):
    """Response model for dropping terminal tasks."""
    pruned: List[str]
    remaining: int


class ExecuteResponse(BaseModel):
    """Response model for the execution hand-off."""
    task_id: str
    execution_id: str
    state: TaskState
    message: str


class EvaluateRequest(BaseModel):
    """Request model for a standalone policy evaluation."""
    proposal: ProposalModel
    policy: Optional[Dict[str, Any]] = Field(
        default=None, description="Inline policy document. Defaults to the configured policy"
    )


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
_ERROR_STATUS = {
    TransitionErrorKind.INVALID_TRANSITION: 409,
    TransitionErrorKind.MISSING_PROPOSAL: 422,
}


def get_registry(request: Request) -> TaskRegistry:
    return request.app.state.registry


def _lookup(registry: TaskRegistry, task_id: str) -> LifecycleOrchestrator:
    try:
        return registry.get(task_id)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


def _task_response(task: Task) -> TaskResponse:
    return TaskResponse(
        task_id=task.task_id,
        state=task.state,
        created_at=task.created_at,
        description=task.description,
        allowed_targets=sorted(allowed_targets(task.state), key=lambda s: s.value),
        history=[TransitionRecordModel.from_record(r) for r in task.history],
    )


def _raise_for_error(result: TransitionResult) -> None:
    if result.error is not None:
        raise HTTPException(status_code=_ERROR_STATUS[result.error.kind], detail=result.error.to_dict())


# -----------------------------------------------------------------------------
# API Endpoints - Tasks
# -----------------------------------------------------------------------------
router = APIRouter(tags=["Task Lifecycle"])


@router.post("/tasks", response_model=TaskResponse, status_code=201)
async def create_task(body: Optional[CreateTaskRequest] = None, registry: TaskRegistry = Depends(get_registry)):
    orchestrator = registry.create_task(description=body.description if body else None)
    return _task_response(orchestrator.task)


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, registry: TaskRegistry = Depends(get_registry)):
    return _task_response(_lookup(registry, task_id).task)


@router.get("/tasks/{task_id}/history", response_model=List[TransitionRecordModel])
async def get_task_history(task_id: str, registry: TaskRegistry = Depends(get_registry)):
    return [TransitionRecordModel.from_record(r) for r in _lookup(registry, task_id).history()]


@router.post("/tasks/{task_id}/transition", response_model=TransitionResponse)
async def transition_task(task_id: str, body: TransitionRequest, registry: TaskRegistry = Depends(get_registry)):
    orchestrator = _lookup(registry, task_id)
    proposal = body.proposal.to_proposal() if body.proposal else None

    result = orchestrator.request_transition(body.target_state, proposal=proposal)
    _raise_for_error(result)

    return TransitionResponse(
        task_id=task_id,
        previous_state=result.history[-1].from_state,
        current_state=result.state,
        history=[TransitionRecordModel.from_record(r) for r in result.history],
        decision=DecisionModel.from_decision(result.decision) if result.decision else None,
        message=f"Transitioned to {result.state.value}",
    )


@router.post("/tasks/{task_id}/execute", response_model=ExecuteResponse)
async def execute_task(task_id: str, registry: TaskRegistry = Depends(get_registry)):
    orchestrator = _lookup(registry, task_id)
    result = orchestrator.request_transition(TaskState.EXECUTING)
    _raise_for_error(result)

    execution_id = str(uuid.uuid4())
    logger.info(f"Task {task_id}: execution {execution_id} started")
    return ExecuteResponse(
        task_id=task_id,
        execution_id=execution_id,
        state=result.state,
        message="Execution started",
    )


@router.post("/tasks/prune", response_model=PruneResponse)
async def prune_tasks(registry: TaskRegistry = Depends(get_registry)):
    pruned = registry.prune_terminal()
    return PruneResponse(pruned=pruned, remaining=len(registry))


# -----------------------------------------------------------------------------
# API Endpoints - Policy
# -----------------------------------------------------------------------------
@router.post("/policy/evaluate", response_model=DecisionModel)
async def evaluate_policy(body: EvaluateRequest, registry: TaskRegistry = Depends(get_registry)):
    if body.policy is None:
        policy = registry.policy
    else:
        try:
            policy = parse_policy_document(body.policy)
        except PolicyConfigError as e:
            raise HTTPException(status_code=422, detail=str(e))

    return DecisionModel.from_decision(evaluate(body.proposal.to_proposal(), policy))


# -----------------------------------------------------------------------------
# FastAPI Application
# -----------------------------------------------------------------------------
def create_app(registry: Optional[TaskRegistry] = None) -> FastAPI:
    """Build the application. Uses the registry singleton unless one is given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Control plane API starting (version {__version__})")
        yield
        audit_log = app.state.registry.audit_log
        if audit_log is not None:
            audit_log.stop()
        logger.info("Control plane API shut down")

    application = FastAPI(
        lifespan=lifespan,
        title="Control Plane - Decision Core",
        description="Task lifecycle state machine with policy-gated approval",
        version=__version__,
    )
    application.state.registry = registry if registry is not None else get_task_registry()
    application.include_router(router)

    @application.get("/health")
    async def health_check():
        reg: TaskRegistry = application.state.registry
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "tasks": len(reg),
            "audit_enabled": reg.audit_log is not None,
        }

    return application

