"""
CLI Tests

control-plane evaluate exit codes and output.
"""

import json
from unittest.mock import patch

import pytest

from control_plane.cli import EXIT_APPROVED, EXIT_BAD_INPUT, EXIT_REJECTED, main


@pytest.fixture
def policy_file(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("risk:\n  max_level: medium\ncost:\n  max_usd: 25\n  hard_fail: true\n")
    return path


def write_proposal(tmp_path, data):
    path = tmp_path / "proposal.json"
    path.write_text(json.dumps(data))
    return str(path)


class TestEvaluateCommand:
    def test_approved(self, tmp_path, policy_file, capsys):
        proposal = write_proposal(tmp_path, {"risk": "low", "cost_usd": 10})
        assert main(["evaluate", proposal, "--policy", str(policy_file)]) == EXIT_APPROVED
        assert "Policy approved" in capsys.readouterr().out

    def test_rejected_prints_each_violation(self, tmp_path, policy_file, capsys):
        proposal = write_proposal(tmp_path, {"risk": "high", "cost_usd": 100})
        assert main(["evaluate", proposal, "--policy", str(policy_file)]) == EXIT_REJECTED
        err = capsys.readouterr().err.splitlines()
        assert err == [
            "❌ Policy fail: risk: high exceeds max medium",
            "❌ Policy fail: cost: 100 exceeds max 25",
        ]

    def test_cost_at_limit_approved(self, tmp_path, policy_file):
        proposal = write_proposal(tmp_path, {"risk": "medium", "cost_usd": 25})
        assert main(["evaluate", proposal, "--policy", str(policy_file)]) == EXIT_APPROVED

    def test_default_policy_from_environment(self, tmp_path, policy_file, monkeypatch):
        monkeypatch.setenv("CONTROL_PLANE_POLICY_FILE", str(policy_file))
        proposal = write_proposal(tmp_path, {"risk": "medium", "cost_usd": 25.01})
        assert main(["evaluate", proposal]) == EXIT_REJECTED

    def test_invalid_proposal(self, tmp_path, policy_file, capsys):
        proposal = write_proposal(tmp_path, {"risk": "low"})
        assert main(["evaluate", proposal, "--policy", str(policy_file)]) == EXIT_BAD_INPUT
        assert "❌" in capsys.readouterr().err

    def test_missing_policy_file(self, tmp_path):
        proposal = write_proposal(tmp_path, {"risk": "low", "cost_usd": 1})
        assert main(["evaluate", proposal, "--policy", str(tmp_path / "missing.yaml")]) == EXIT_BAD_INPUT

    def test_command_required(self):
        with pytest.raises(SystemExit):
            main([])


class TestServeCommand:
    def test_runs_app_factory(self, monkeypatch):
        monkeypatch.setenv("CONTROL_PLANE_PORT", "9100")
        with patch("uvicorn.run") as run:
            assert main(["serve", "--host", "127.0.0.1"]) == 0

        args, kwargs = run.call_args
        assert args == ("control_plane.api:create_app",)
        assert kwargs["factory"] is True
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 9100
