"""
Task Lifecycle State Machine

Deterministic lifecycle for control-plane tasks with explicit states,
validated transitions, and a gapless transition history.

States:
    RECEIVED → CLASSIFIED → PROPOSED → VALIDATED → APPROVED → EXECUTING →
    COMPLETED | ROLLED_BACK | FAILED
    (VALIDATED → FAILED when the policy rejects the proposal)

Key rules:
- VALID_TRANSITIONS is the single source of truth for legality
- Self-loops are illegal, terminal states have no way out
- VALIDATED → APPROVED|FAILED is policy-gated: the verdict picks the target,
  not the caller
- apply_transition() is pure: it returns a new Task and never mutates its input

Locking and task lookup live in orchestrator.py.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .policy_evaluator import Decision, PolicyDocument, Proposal, Verdict, evaluate

logger = logging.getLogger("lifecycle")


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------
class TaskState(str, Enum):
    """
    Task lifecycle states.

    RECEIVED is the only initial state.
    """
    RECEIVED = "received"
    CLASSIFIED = "classified"
    PROPOSED = "proposed"
    VALIDATED = "validated"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"

    @classmethod
    def terminal_states(cls) -> FrozenSet["TaskState"]:
        """States with no legal outgoing transitions."""
        return frozenset({cls.COMPLETED, cls.ROLLED_BACK, cls.FAILED})


class TransitionErrorKind(str, Enum):
    """Why a transition request was refused."""
    INVALID_TRANSITION = "invalid_transition"
    MISSING_PROPOSAL = "missing_proposal"


# -----------------------------------------------------------------------------
# Valid Transitions
# -----------------------------------------------------------------------------

# Map of current_state -> set of legal target states
VALID_TRANSITIONS: Dict[TaskState, FrozenSet[TaskState]] = {
    TaskState.RECEIVED: frozenset({TaskState.CLASSIFIED}),
    TaskState.CLASSIFIED: frozenset({TaskState.PROPOSED}),
    TaskState.PROPOSED: frozenset({TaskState.VALIDATED}),
    TaskState.VALIDATED: frozenset({TaskState.APPROVED, TaskState.FAILED}),
    TaskState.APPROVED: frozenset({TaskState.EXECUTING}),
    TaskState.EXECUTING: frozenset({TaskState.COMPLETED, TaskState.ROLLED_BACK, TaskState.FAILED}),
    # Terminal states
    TaskState.COMPLETED: frozenset(),
    TaskState.ROLLED_BACK: frozenset(),
    TaskState.FAILED: frozenset(),
}

# Source states whose outgoing edges are decided by policy evaluation
POLICY_GATED_STATES: FrozenSet[TaskState] = frozenset({TaskState.VALIDATED})

VERDICT_TARGETS: Dict[Verdict, TaskState] = {
    Verdict.APPROVE: TaskState.APPROVED,
    Verdict.REJECT: TaskState.FAILED,
}


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class TransitionRecord:
    """
    Immutable record of an accepted transition.

    reason carries the joined policy violations, None otherwise.
    """
    from_state: TaskState
    to_state: TaskState
    at: datetime
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "at": self.at.isoformat(),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class Task:
    """
    Snapshot of a task: identity, current state and full history.

    Instances are never mutated. A transition produces a new Task.
    """
    task_id: str
    state: TaskState = TaskState.RECEIVED
    history: Tuple[TransitionRecord, ...] = ()
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    description: Optional[str] = None

    @classmethod
    def create(cls, task_id: Optional[str] = None, description: Optional[str] = None) -> "Task":
        return cls(task_id=task_id or str(uuid.uuid4()), description=description)

    @property
    def is_terminal(self) -> bool:
        return self.state in TaskState.terminal_states()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "description": self.description,
            "history": [r.to_dict() for r in self.history],
        }


@dataclass(frozen=True)
class TransitionError:
    """A refused transition request. The task it names is unchanged."""
    kind: TransitionErrorKind
    from_state: TaskState
    to_state: TaskState
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "message": self.message,
        }


@dataclass(frozen=True)
class TransitionOutcome:
    """Return value of apply_transition()."""
    task: Task
    error: Optional[TransitionError] = None
    decision: Optional[Decision] = None

    @property
    def success(self) -> bool:
        return self.error is None


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------
def allowed_targets(current_state: TaskState) -> FrozenSet[TaskState]:
    """Get all legal successors of a state."""
    return VALID_TRANSITIONS.get(current_state, frozenset())


def can_transition(current_state: TaskState, target_state: TaskState) -> Tuple[bool, str]:
    """Check if a transition is in the table."""
    valid_targets = allowed_targets(current_state)
    if target_state in valid_targets:
        return True, f"Transition {current_state.value} -> {target_state.value} allowed"
    if not valid_targets:
        return False, f"Invalid transition: {current_state.value} is terminal, cannot move to {target_state.value}"
    return False, (
        f"Invalid transition: {current_state.value} -> {target_state.value}. "
        f"Valid targets: {sorted(t.value for t in valid_targets)}"
    )


def is_policy_gated(current_state: TaskState) -> bool:
    return current_state in POLICY_GATED_STATES


def validate_history(task: Task) -> None:
    """
    Check that a task snapshot could have been produced by this lifecycle.

    The history must start at RECEIVED, chain each record's from_state to the
    previous to_state through legal edges, and end at task.state. An empty
    history means the task is still RECEIVED.

    Raises:
        ValueError: the snapshot breaks one of those rules
    """
    if not task.history:
        if task.state != TaskState.RECEIVED:
            raise ValueError(
                f"Task {task.task_id}: state {task.state.value} with empty history, "
                f"expected {TaskState.RECEIVED.value}"
            )
        return

    expected_from = TaskState.RECEIVED
    for i, record in enumerate(task.history):
        if record.from_state != expected_from:
            raise ValueError(
                f"Task {task.task_id}: history[{i}] starts at {record.from_state.value}, "
                f"expected {expected_from.value}"
            )
        allowed, message = can_transition(record.from_state, record.to_state)
        if not allowed:
            raise ValueError(f"Task {task.task_id}: history[{i}]: {message}")
        expected_from = record.to_state

    if expected_from != task.state:
        raise ValueError(
            f"Task {task.task_id}: history ends at {expected_from.value} but state is {task.state.value}"
        )


# -----------------------------------------------------------------------------
# State Transitions
# -----------------------------------------------------------------------------
def apply_transition(
    task: Task,
    target_state: TaskState,
    policy: PolicyDocument,
    proposal: Optional[Proposal] = None,
    at: Optional[datetime] = None,
) -> TransitionOutcome:
    """
    Compute the result of requesting target_state for task.

    Returns a TransitionOutcome whose task is the new snapshot on success,
    or the untouched input task together with a TransitionError.
    """
    target_state = TaskState(target_state)
    current_state = task.state

    allowed, message = can_transition(current_state, target_state)
    if not allowed:
        return TransitionOutcome(
            task=task,
            error=TransitionError(
                kind=TransitionErrorKind.INVALID_TRANSITION,
                from_state=current_state,
                to_state=target_state,
                message=message,
            ),
        )

    decision: Optional[Decision] = None
    reason: Optional[str] = None
    new_state = target_state

    if is_policy_gated(current_state):
        if proposal is None:
            return TransitionOutcome(
                task=task,
                error=TransitionError(
                    kind=TransitionErrorKind.MISSING_PROPOSAL,
                    from_state=current_state,
                    to_state=target_state,
                    message=f"Transition {current_state.value} -> {target_state.value} requires a proposal",
                ),
            )
        decision = evaluate(proposal, policy)
        new_state = VERDICT_TARGETS[decision.verdict]
        reason = decision.summary() or None
        if new_state != target_state:
            logger.info(
                f"Task {task.task_id}: policy verdict {decision.verdict.value} overrides "
                f"requested {target_state.value} -> {new_state.value}"
            )

    record = TransitionRecord(
        from_state=current_state,
        to_state=new_state,
        at=at or datetime.now(timezone.utc),
        reason=reason,
    )
    updated = replace(task, state=new_state, history=task.history + (record,))
    return TransitionOutcome(task=updated, decision=decision)
