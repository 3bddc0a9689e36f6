"""
Policy and Proposal Loading

Turns plain data (parsed YAML/JSON, request bodies) into the frozen
PolicyDocument and Proposal values the evaluator consumes.

- Keys are snake_case. camelCase keys from older policy files are accepted
  as aliases (maxLevel, maxUsd, hardFail, canaryPercent, errorRate,
  errorRatePct, latencyMs, costUsd, riskLevel).
- Missing sections and keys take the PolicyDocument defaults.
- Invalid values raise PolicyConfigError / ProposalError. Nothing is guessed.
"""

import logging
import math
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import yaml

from .config import DEFAULT_POLICY_FILE
from .policy_evaluator import (
    CostPolicy,
    DeploymentPolicy,
    Number,
    PolicyDocument,
    Proposal,
    RiskLevel,
    RiskPolicy,
    RollbackPolicy,
)

logger = logging.getLogger("policy_loader")


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------
class PolicyConfigError(ValueError):
    """Policy document is missing, unreadable or has invalid values."""


class ProposalError(ValueError):
    """Proposal data is unreadable or has invalid values."""


# -----------------------------------------------------------------------------
# Field Helpers
# -----------------------------------------------------------------------------
_MISSING = object()


def _pick(section: Mapping[str, Any], names: Sequence[str]) -> Any:
    """Return the first present key among names, or _MISSING."""
    for name in names:
        if name in section:
            return section[name]
    return _MISSING


def _is_number(value: Any) -> bool:
    """Finite int or float. NaN and infinities do not count, nor do booleans."""
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise PolicyConfigError(f"policy section '{name}' must be a mapping, got {type(section).__name__}")
    return section


def _risk_level(value: Any, error_cls: type, field_name: str) -> RiskLevel:
    try:
        return RiskLevel(str(value).lower())
    except ValueError:
        valid = [r.value for r in RiskLevel]
        raise error_cls(f"{field_name} must be one of {valid}, got {value!r}") from None


def _non_negative(value: Any, error_cls: type, field_name: str) -> Number:
    if not _is_number(value):
        raise error_cls(f"{field_name} must be a finite number, got {value!r}")
    if value < 0:
        raise error_cls(f"{field_name} cannot be negative: {value}")
    return value


# -----------------------------------------------------------------------------
# Policy Document
# -----------------------------------------------------------------------------
def parse_policy_document(data: Optional[Mapping[str, Any]]) -> PolicyDocument:
    """Build a PolicyDocument from a parsed mapping."""
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise PolicyConfigError(f"policy document must be a mapping, got {type(data).__name__}")

    defaults = PolicyDocument()

    risk = _section(data, "risk")
    max_level = _pick(risk, ("max_level", "maxLevel"))
    risk_policy = RiskPolicy(
        max_level=defaults.risk.max_level if max_level is _MISSING
        else _risk_level(max_level, PolicyConfigError, "risk.max_level"),
    )

    cost = _section(data, "cost")
    max_usd = _pick(cost, ("max_usd", "maxUsd"))
    hard_fail = _pick(cost, ("hard_fail", "hardFail"))
    if hard_fail is not _MISSING and not isinstance(hard_fail, bool):
        raise PolicyConfigError(f"cost.hard_fail must be a boolean, got {hard_fail!r}")
    cost_policy = CostPolicy(
        max_usd=defaults.cost.max_usd if max_usd is _MISSING
        else _non_negative(max_usd, PolicyConfigError, "cost.max_usd"),
        hard_fail=defaults.cost.hard_fail if hard_fail is _MISSING else hard_fail,
    )

    deployment = _section(data, "deployment")
    strategy = _pick(deployment, ("strategy",))
    canary = _pick(deployment, ("canary_percent", "canaryPercent"))
    if canary is not _MISSING:
        canary = _non_negative(canary, PolicyConfigError, "deployment.canary_percent")
        if canary > 100:
            raise PolicyConfigError(f"deployment.canary_percent must be within 0-100, got {canary}")
    deployment_policy = DeploymentPolicy(
        strategy=defaults.deployment.strategy if strategy is _MISSING else str(strategy),
        canary_percent=defaults.deployment.canary_percent if canary is _MISSING else canary,
    )

    rollback = _section(data, "rollback")
    error_rate = _pick(rollback, ("error_rate_pct", "errorRatePct", "error_rate", "errorRate"))
    latency = _pick(rollback, ("latency_ms", "latencyMs"))
    if error_rate is not _MISSING and not _is_number(error_rate):
        raise PolicyConfigError(f"rollback.error_rate_pct must be a finite number, got {error_rate!r}")
    rollback_policy = RollbackPolicy(
        error_rate_pct=defaults.rollback.error_rate_pct if error_rate is _MISSING else error_rate,
        latency_ms=defaults.rollback.latency_ms if latency is _MISSING
        else _non_negative(latency, PolicyConfigError, "rollback.latency_ms"),
    )

    return PolicyDocument(
        risk=risk_policy,
        cost=cost_policy,
        deployment=deployment_policy,
        rollback=rollback_policy,
    )


def read_yaml_file(file_path: Path) -> Any:
    """Read and parse a YAML (or JSON) file."""
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    with open(file_path, "r") as f:
        return yaml.safe_load(f)


def load_policy_document(path: Optional[Path] = None) -> PolicyDocument:
    """Load a policy document from disk. Defaults to the bundled prod policy."""
    policy_path = Path(path) if path else DEFAULT_POLICY_FILE
    try:
        data = read_yaml_file(policy_path)
    except (OSError, yaml.YAMLError) as e:
        raise PolicyConfigError(f"Cannot load policy document {policy_path}: {e}") from e

    policy = parse_policy_document(data)
    logger.info(
        f"Loaded policy {policy_path}: risk.max_level={policy.risk.max_level.value}, "
        f"cost.max_usd={policy.cost.max_usd}"
    )
    return policy


# -----------------------------------------------------------------------------
# Proposal
# -----------------------------------------------------------------------------
def parse_proposal(data: Any) -> Proposal:
    """
    Build a Proposal from a parsed mapping.

    Accepts {"risk" | "risk_level" | "riskLevel", "cost_usd" | "costUsd"}.
    """
    if not isinstance(data, Mapping):
        raise ProposalError(f"proposal must be a mapping, got {type(data).__name__}")

    risk = _pick(data, ("risk_level", "riskLevel", "risk"))
    if risk is _MISSING:
        raise ProposalError("proposal is missing 'risk'")
    cost = _pick(data, ("cost_usd", "costUsd"))
    if cost is _MISSING:
        raise ProposalError("proposal is missing 'cost_usd'")

    return Proposal(
        risk_level=_risk_level(risk, ProposalError, "risk"),
        cost_usd=_non_negative(cost, ProposalError, "cost_usd"),
    )


def load_proposal(path: Path) -> Proposal:
    """Load a proposal file (JSON or YAML)."""
    try:
        data = read_yaml_file(Path(path))
    except (OSError, yaml.YAMLError) as e:
        raise ProposalError(f"Cannot load proposal {path}: {e}") from e
    return parse_proposal(data)
