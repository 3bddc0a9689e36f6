"""
Pytest configuration for control plane tests.

Provides:
1. Policy and proposal fixtures matching the production policy
2. A deterministic clock
3. Orchestrator/registry fixtures and a helper to walk a task to VALIDATED
"""

from datetime import datetime, timedelta, timezone
from typing import Iterator

import pytest

from control_plane.lifecycle import TaskState
from control_plane.orchestrator import LifecycleOrchestrator, TaskRegistry
from control_plane.policy_evaluator import (
    CostPolicy,
    PolicyDocument,
    Proposal,
    RiskLevel,
    RiskPolicy,
)


# -----------------------------------------------------------------------------
# Policy Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def policy() -> PolicyDocument:
    """risk.max_level=medium, cost.max_usd=25."""
    return PolicyDocument(
        risk=RiskPolicy(max_level=RiskLevel.MEDIUM),
        cost=CostPolicy(max_usd=25),
    )


@pytest.fixture
def approvable_proposal() -> Proposal:
    return Proposal(risk_level=RiskLevel.LOW, cost_usd=10)


@pytest.fixture
def over_budget_proposal() -> Proposal:
    return Proposal(risk_level=RiskLevel.LOW, cost_usd=99.5)


# -----------------------------------------------------------------------------
# Clock
# -----------------------------------------------------------------------------
class StepClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)):
        self._next = start

    def __call__(self) -> datetime:
        now = self._next
        self._next = now + timedelta(seconds=1)
        return now


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


# -----------------------------------------------------------------------------
# Orchestrator Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def orchestrator(policy, clock) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(policy=policy, clock=clock)


@pytest.fixture
def registry(policy, clock) -> TaskRegistry:
    return TaskRegistry(policy=policy, clock=clock)


PATH_TO_VALIDATED = (TaskState.CLASSIFIED, TaskState.PROPOSED, TaskState.VALIDATED)


def advance_to_validated(orchestrator: LifecycleOrchestrator) -> None:
    for state in PATH_TO_VALIDATED:
        orchestrator.request_transition(state).raise_for_error()


@pytest.fixture
def validated_orchestrator(orchestrator) -> Iterator[LifecycleOrchestrator]:
    advance_to_validated(orchestrator)
    yield orchestrator
