"""
Lifecycle Orchestrator

Owns tasks and serializes every transition request made against them.

Key features:
- One LifecycleOrchestrator per task, each with its own lock
  (unrelated tasks never wait on each other)
- VALIDATED → APPROVED|FAILED decided by the policy evaluator
- Failures are returned as TransitionResult.error, never half-applied
- Every accepted and rejected request is logged, and written to the audit
  trail when one is configured

TaskRegistry maps task ids to orchestrators for callers that only hold an id.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple, Union

from .audit import TransitionAuditLog
from .config import load_settings
from .lifecycle import (
    Task,
    TaskState,
    TransitionError,
    TransitionErrorKind,
    TransitionRecord,
    allowed_targets,
    apply_transition,
    validate_history,
)
from .policy_evaluator import Decision, PolicyDocument, Proposal
from .policy_loader import load_policy_document

logger = logging.getLogger("orchestrator")

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------
class TransitionFailed(Exception):
    """Raised by TransitionResult.raise_for_error()."""

    def __init__(self, error: TransitionError):
        super().__init__(error.message)
        self.error = error

    @property
    def from_state(self) -> TaskState:
        return self.error.from_state

    @property
    def to_state(self) -> TaskState:
        return self.error.to_state


class InvalidTransitionError(TransitionFailed):
    """The (from, to) pair is not in the transition table."""


class MissingProposalError(TransitionFailed):
    """A policy-gated edge was requested without a proposal."""


_ERROR_TYPES = {
    TransitionErrorKind.INVALID_TRANSITION: InvalidTransitionError,
    TransitionErrorKind.MISSING_PROPOSAL: MissingProposalError,
}


class TaskNotFoundError(KeyError):
    """No task is registered under the given id."""

    def __init__(self, task_id: str):
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Task {self.task_id} not found"


# -----------------------------------------------------------------------------
# Result
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class TransitionResult:
    """
    Outcome of a transition request.

    On failure state and history are the task's unchanged values.
    """
    task_id: str
    state: TaskState
    history: Tuple[TransitionRecord, ...]
    error: Optional[TransitionError] = None
    decision: Optional[Decision] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> "TransitionResult":
        if self.error is not None:
            raise _ERROR_TYPES[self.error.kind](self.error)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "success": self.success,
            "state": self.state.value,
            "history": [r.to_dict() for r in self.history],
            "error": self.error.to_dict() if self.error else None,
            "decision": self.decision.to_dict() if self.decision else None,
        }


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------
class LifecycleOrchestrator:
    """
    Single writer for one task.

    The task snapshot is replaced, never mutated, under self._lock, so
    readers always see a consistent (state, history) pair.

    A task passed in must satisfy lifecycle.validate_history(), otherwise
    ValueError is raised.
    """

    def __init__(
        self,
        policy: PolicyDocument,
        task: Optional[Task] = None,
        audit_log: Optional[TransitionAuditLog] = None,
        clock: Clock = _utcnow,
    ):
        task = task or Task.create()
        validate_history(task)
        self._policy = policy
        self._task = task
        self._audit_log = audit_log
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def task_id(self) -> str:
        return self._task.task_id

    @property
    def task(self) -> Task:
        """Current immutable snapshot."""
        return self._task

    @property
    def state(self) -> TaskState:
        return self._task.state

    @property
    def policy(self) -> PolicyDocument:
        return self._policy

    def history(self) -> Tuple[TransitionRecord, ...]:
        return self._task.history

    def allowed_targets(self) -> FrozenSet[TaskState]:
        return allowed_targets(self._task.state)

    def is_terminal(self) -> bool:
        return self._task.is_terminal

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def request_transition(
        self,
        target_state: Union[TaskState, str],
        proposal: Optional[Proposal] = None,
    ) -> TransitionResult:
        """
        Request a move to target_state.

        From VALIDATED the proposal is required and the policy verdict picks
        APPROVED or FAILED, whatever target was requested.
        """
        target_state = TaskState(target_state)

        with self._lock:
            at = self._clock()
            outcome = apply_transition(
                self._task,
                target_state,
                policy=self._policy,
                proposal=proposal,
                at=at,
            )

            if not outcome.success:
                logger.warning(f"Task {self.task_id}: {outcome.error.kind.value}: {outcome.error.message}")
                if self._audit_log:
                    self._audit_log.record_rejection(self.task_id, outcome.error, at)
                return TransitionResult(
                    task_id=self.task_id,
                    state=self._task.state,
                    history=self._task.history,
                    error=outcome.error,
                )

            self._task = outcome.task
            record = self._task.history[-1]

            logger.info(f"Task {self.task_id}: {record.from_state.value} -> {record.to_state.value}")
            if outcome.decision and not outcome.decision.approved:
                logger.info(f"Task {self.task_id}: policy rejected proposal ({outcome.decision.summary()})")
            if self._audit_log:
                self._audit_log.record_transition(self.task_id, record, outcome.decision)

            return TransitionResult(
                task_id=self.task_id,
                state=self._task.state,
                history=self._task.history,
                decision=outcome.decision,
            )


# -----------------------------------------------------------------------------
# Task Registry
# -----------------------------------------------------------------------------
class TaskRegistry:
    """
    Task id -> orchestrator lookup.

    The registry lock only guards the mapping. Transitions lock per task.
    Tasks stay registered after reaching a terminal state until
    prune_terminal() drops them.
    """

    def __init__(
        self,
        policy: PolicyDocument,
        audit_log: Optional[TransitionAuditLog] = None,
        clock: Clock = _utcnow,
    ):
        self.policy = policy
        self.audit_log = audit_log
        self._clock = clock
        self._orchestrators: Dict[str, LifecycleOrchestrator] = {}
        self._lock = threading.Lock()

    def create_task(self, description: Optional[str] = None) -> LifecycleOrchestrator:
        """Register a new task in RECEIVED."""
        task = Task.create(description=description)
        orchestrator = LifecycleOrchestrator(
            policy=self.policy,
            task=task,
            audit_log=self.audit_log,
            clock=self._clock,
        )
        with self._lock:
            self._orchestrators[task.task_id] = orchestrator

        logger.info(f"Created task {task.task_id} in state {task.state.value}")
        return orchestrator

    def get(self, task_id: str) -> LifecycleOrchestrator:
        with self._lock:
            orchestrator = self._orchestrators.get(task_id)
        if orchestrator is None:
            raise TaskNotFoundError(task_id)
        return orchestrator

    def request_transition(
        self,
        task_id: str,
        target_state: Union[TaskState, str],
        proposal: Optional[Proposal] = None,
    ) -> TransitionResult:
        return self.get(task_id).request_transition(target_state, proposal=proposal)

    def history(self, task_id: str) -> Tuple[TransitionRecord, ...]:
        return self.get(task_id).history()

    def prune_terminal(self) -> List[str]:
        """Unregister every task in a terminal state. Returns the dropped ids."""
        with self._lock:
            pruned = [task_id for task_id, orch in self._orchestrators.items() if orch.is_terminal()]
            for task_id in pruned:
                del self._orchestrators[task_id]

        if pruned:
            logger.info(f"Pruned {len(pruned)} terminal task(s)")
        return pruned

    def list_task_ids(self) -> List[str]:
        with self._lock:
            return list(self._orchestrators)

    def __len__(self) -> int:
        with self._lock:
            return len(self._orchestrators)


# -----------------------------------------------------------------------------
# Singleton Instance
# -----------------------------------------------------------------------------
_registry_instance: Optional[TaskRegistry] = None
_registry_lock = threading.Lock()


def get_task_registry() -> TaskRegistry:
    """Get or create the registry singleton from environment settings."""
    global _registry_instance
    with _registry_lock:
        if _registry_instance is None:
            settings = load_settings()
            audit_log = TransitionAuditLog.in_directory(settings.audit_dir) if settings.audit_dir else None
            _registry_instance = TaskRegistry(
                policy=load_policy_document(settings.policy_file),
                audit_log=audit_log,
            )
        return _registry_instance


def reset_task_registry() -> None:
    """Drop the singleton so the next get_task_registry() rebuilds it."""
    global _registry_instance
    with _registry_lock:
        _registry_instance = None
