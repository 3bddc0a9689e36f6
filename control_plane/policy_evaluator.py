"""
Policy Evaluator

DECISION-ONLY evaluator that answers: "Does this proposal fit the policy?"

Checks (in order, both always run):
- Risk: proposal risk must be AT OR BELOW policy.risk.max_level on the
  ordinal scale low < medium < high
- Cost: proposal cost_usd must be AT OR BELOW policy.cost.max_usd

Verdict:
- APPROVE if and only if no violation was recorded
- REJECT otherwise (a normal result value, never an exception)

CONSTRAINTS:
- PURE: no I/O, no shared state, safe to call from any thread
- DETERMINISTIC: same (proposal, policy) always yields an equal Decision
- Only risk and cost participate in the verdict. deployment.* and rollback.*
  are descriptive metadata for downstream execution.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple, Union

logger = logging.getLogger("policy_evaluator")

Number = Union[int, float]


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------
class RiskLevel(str, Enum):
    """
    Ordered risk scale.

    Declaration order IS the ordering: LOW < MEDIUM < HIGH.
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    def __le__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __ge__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank


_RISK_ORDER: Tuple[RiskLevel, ...] = (RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH)


class Verdict(str, Enum):
    """Outcome of a policy evaluation. EXACTLY 2 values."""
    APPROVE = "approve"
    REJECT = "reject"


class PolicyRule(str, Enum):
    """Rules that can produce a violation."""
    RISK = "risk"
    COST = "cost"


# -----------------------------------------------------------------------------
# Input Data Classes (Frozen - Immutable)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Proposal:
    """
    Risk/cost summary submitted for review at the validated state.

    Ephemeral: not stored beyond the decision it produces.
    """
    risk_level: RiskLevel
    cost_usd: Number

    def __post_init__(self):
        if not isinstance(self.risk_level, RiskLevel):
            object.__setattr__(self, "risk_level", RiskLevel(self.risk_level))
        if isinstance(self.cost_usd, bool) or not isinstance(self.cost_usd, (int, float)):
            raise ValueError(f"cost_usd must be a number, got {self.cost_usd!r}")
        if not math.isfinite(self.cost_usd):
            raise ValueError(f"cost_usd must be finite, got {self.cost_usd}")
        if self.cost_usd < 0:
            raise ValueError(f"cost_usd cannot be negative: {self.cost_usd}")

    def to_dict(self) -> Dict[str, Any]:
        return {"risk_level": self.risk_level.value, "cost_usd": self.cost_usd}


@dataclass(frozen=True)
class RiskPolicy:
    max_level: RiskLevel = RiskLevel.MEDIUM


@dataclass(frozen=True)
class CostPolicy:
    max_usd: Number = 25
    # Parsed and carried, but every violation rejects regardless of this flag.
    hard_fail: bool = True


@dataclass(frozen=True)
class DeploymentPolicy:
    strategy: str = "canary"
    canary_percent: Number = 10


@dataclass(frozen=True)
class RollbackPolicy:
    error_rate_pct: Number = 2.0
    latency_ms: Number = 250


@dataclass(frozen=True)
class PolicyDocument:
    """
    Read-only policy configuration.

    Defaults mirror the production policy. Use policy_loader to build one
    from a file or a plain mapping.
    """
    risk: RiskPolicy = field(default_factory=RiskPolicy)
    cost: CostPolicy = field(default_factory=CostPolicy)
    deployment: DeploymentPolicy = field(default_factory=DeploymentPolicy)
    rollback: RollbackPolicy = field(default_factory=RollbackPolicy)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "risk": {"max_level": self.risk.max_level.value},
            "cost": {"max_usd": self.cost.max_usd, "hard_fail": self.cost.hard_fail},
            "deployment": {
                "strategy": self.deployment.strategy,
                "canary_percent": self.deployment.canary_percent,
            },
            "rollback": {
                "error_rate_pct": self.rollback.error_rate_pct,
                "latency_ms": self.rollback.latency_ms,
            },
        }


# -----------------------------------------------------------------------------
# Output Data Classes (Frozen - Immutable)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Violation:
    rule: str
    detail: str

    def __str__(self) -> str:
        return f"{self.rule}: {self.detail}"

    def to_dict(self) -> Dict[str, str]:
        return {"rule": self.rule, "detail": self.detail}


@dataclass(frozen=True)
class Decision:
    """
    Result of evaluate().

    violations keeps check order: risk before cost.
    """
    verdict: Verdict
    violations: Tuple[Violation, ...] = ()

    @property
    def approved(self) -> bool:
        return self.verdict == Verdict.APPROVE

    def summary(self) -> str:
        """Violations joined into a single line, empty when approved."""
        return "; ".join(str(v) for v in self.violations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "violations": [v.to_dict() for v in self.violations],
        }


# -----------------------------------------------------------------------------
# Evaluation
# -----------------------------------------------------------------------------
def format_amount(value: Number) -> str:
    """Render a number the way it was written: 25 -> '25', 25.01 -> '25.01'."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def check_risk(proposal: Proposal, policy: PolicyDocument) -> Tuple[Violation, ...]:
    max_level = policy.risk.max_level
    if proposal.risk_level <= max_level:
        return ()
    return (Violation(
        rule=PolicyRule.RISK.value,
        detail=f"{proposal.risk_level.value} exceeds max {max_level.value}",
    ),)


def check_cost(proposal: Proposal, policy: PolicyDocument) -> Tuple[Violation, ...]:
    max_usd = policy.cost.max_usd
    if proposal.cost_usd <= max_usd:
        return ()
    return (Violation(
        rule=PolicyRule.COST.value,
        detail=f"{format_amount(proposal.cost_usd)} exceeds max {format_amount(max_usd)}",
    ),)


def evaluate(proposal: Proposal, policy: PolicyDocument) -> Decision:
    """
    Evaluate a proposal against a policy document.

    Both bounds are inclusive. Any violation rejects.
    """
    violations = check_risk(proposal, policy) + check_cost(proposal, policy)
    verdict = Verdict.REJECT if violations else Verdict.APPROVE

    logger.debug(
        f"Policy evaluation: risk={proposal.risk_level.value} cost={format_amount(proposal.cost_usd)} "
        f"-> {verdict.value} ({len(violations)} violation(s))"
    )
    return Decision(verdict=verdict, violations=violations)
