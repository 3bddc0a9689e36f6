"""
Policy Loader Tests

Test Categories:
1. Policy document defaults and aliases
2. Bundled policy file
3. Invalid policy documents
4. Proposal parsing
"""

import json

import pytest

from control_plane.config import DEFAULT_POLICY_FILE
from control_plane.policy_evaluator import PolicyDocument, RiskLevel
from control_plane.policy_loader import (
    PolicyConfigError,
    ProposalError,
    load_policy_document,
    load_proposal,
    parse_policy_document,
    parse_proposal,
)


# =============================================================================
# Section 1: Defaults and Aliases
# =============================================================================
class TestParsePolicyDocument:
    def test_empty_document_uses_defaults(self):
        assert parse_policy_document({}) == PolicyDocument()
        assert parse_policy_document(None) == PolicyDocument()

    def test_defaults(self):
        policy = PolicyDocument()
        assert policy.risk.max_level == RiskLevel.MEDIUM
        assert policy.cost.max_usd == 25
        assert policy.cost.hard_fail is True
        assert policy.deployment.strategy == "canary"
        assert policy.deployment.canary_percent == 10
        assert policy.rollback.error_rate_pct == 2.0
        assert policy.rollback.latency_ms == 250

    def test_snake_case_keys(self):
        policy = parse_policy_document({
            "risk": {"max_level": "high"},
            "cost": {"max_usd": 100, "hard_fail": False},
            "deployment": {"strategy": "blue_green", "canary_percent": 50},
            "rollback": {"error_rate_pct": 5, "latency_ms": 400},
        })
        assert policy.risk.max_level == RiskLevel.HIGH
        assert policy.cost.max_usd == 100
        assert policy.cost.hard_fail is False
        assert policy.deployment.strategy == "blue_green"
        assert policy.deployment.canary_percent == 50
        assert policy.rollback.error_rate_pct == 5
        assert policy.rollback.latency_ms == 400

    def test_camel_case_aliases(self):
        policy = parse_policy_document({
            "risk": {"maxLevel": "low"},
            "cost": {"maxUsd": 12.5, "hardFail": True},
            "deployment": {"canaryPercent": 20},
            "rollback": {"errorRate": 1.5, "latencyMs": 100},
        })
        assert policy.risk.max_level == RiskLevel.LOW
        assert policy.cost.max_usd == 12.5
        assert policy.deployment.canary_percent == 20
        assert policy.rollback.error_rate_pct == 1.5
        assert policy.rollback.latency_ms == 100

    def test_risk_level_case_insensitive(self):
        assert parse_policy_document({"risk": {"max_level": "HIGH"}}).risk.max_level == RiskLevel.HIGH

    def test_partial_section_keeps_other_defaults(self):
        policy = parse_policy_document({"cost": {"max_usd": 5}})
        assert policy.cost.max_usd == 5
        assert policy.cost.hard_fail is True
        assert policy.risk.max_level == RiskLevel.MEDIUM


# =============================================================================
# Section 2: Bundled Policy File
# =============================================================================
class TestLoadPolicyDocument:
    def test_bundled_prod_policy(self):
        assert DEFAULT_POLICY_FILE.exists()
        policy = load_policy_document()
        assert policy.risk.max_level == RiskLevel.MEDIUM
        assert policy.cost.max_usd == 25
        assert policy.deployment.strategy == "canary"
        assert policy.rollback.latency_ms == 250

    def test_load_from_path(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("risk:\n  max_level: low\ncost:\n  max_usd: 3\n")
        policy = load_policy_document(path)
        assert policy.risk.max_level == RiskLevel.LOW
        assert policy.cost.max_usd == 3

    def test_json_policy_file(self, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"cost": {"maxUsd": 40}}))
        assert load_policy_document(path).cost.max_usd == 40

    def test_missing_file(self, tmp_path):
        with pytest.raises(PolicyConfigError):
            load_policy_document(tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("risk: [unclosed\n")
        with pytest.raises(PolicyConfigError):
            load_policy_document(path)


# =============================================================================
# Section 3: Invalid Policy Documents
# =============================================================================
class TestInvalidPolicy:
    @pytest.mark.parametrize("data", [
        {"risk": {"max_level": "extreme"}},
        {"risk": "medium"},
        {"cost": {"max_usd": -1}},
        {"cost": {"max_usd": "25"}},
        {"cost": {"hard_fail": "yes"}},
        {"deployment": {"canary_percent": 150}},
        {"rollback": {"error_rate_pct": "high"}},
        {"rollback": {"latency_ms": -5}},
        {"cost": {"max_usd": float("nan")}},
        {"cost": {"max_usd": float("inf")}},
        {"rollback": {"error_rate_pct": float("nan")}},
    ])
    def test_rejected(self, data):
        with pytest.raises(PolicyConfigError):
            parse_policy_document(data)

    def test_yaml_nan_budget_rejected(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("cost:\n  max_usd: .nan\n")
        with pytest.raises(PolicyConfigError):
            load_policy_document(path)

    def test_non_mapping_document(self):
        with pytest.raises(PolicyConfigError):
            parse_policy_document(["risk", "cost"])

    def test_error_is_value_error(self):
        assert issubclass(PolicyConfigError, ValueError)


# =============================================================================
# Section 4: Proposals
# =============================================================================
class TestParseProposal:
    @pytest.mark.parametrize("data", [
        {"risk": "low", "cost_usd": 10},
        {"risk_level": "low", "cost_usd": 10},
        {"riskLevel": "low", "costUsd": 10},
        {"risk": "low", "costUsd": 10},
    ])
    def test_key_variants(self, data):
        proposal = parse_proposal(data)
        assert proposal.risk_level == RiskLevel.LOW
        assert proposal.cost_usd == 10

    @pytest.mark.parametrize("data", [
        {"cost_usd": 10},
        {"risk": "low"},
        {"risk": "catastrophic", "cost_usd": 10},
        {"risk": "low", "cost_usd": -1},
        {"risk": "low", "cost_usd": "ten"},
        {"risk": "low", "cost_usd": float("nan")},
        {"risk": "low", "cost_usd": float("inf")},
        "risk=low",
        None,
    ])
    def test_invalid(self, data):
        with pytest.raises(ProposalError):
            parse_proposal(data)

    def test_load_proposal_file(self, tmp_path):
        path = tmp_path / "proposal.json"
        path.write_text(json.dumps({"risk": "high", "cost_usd": 3.5}))
        proposal = load_proposal(path)
        assert proposal.risk_level == RiskLevel.HIGH
        assert proposal.cost_usd == 3.5

    def test_load_missing_proposal(self, tmp_path):
        with pytest.raises(ProposalError):
            load_proposal(tmp_path / "nope.json")
