"""
Control Plane Decision Core

Tracks automation tasks through a fixed lifecycle and gates approval behind
a policy evaluation.

- lifecycle: states, transition table, transition records, pure transition function
- policy_evaluator: risk/cost policy checks producing APPROVE/REJECT decisions
- orchestrator: per-task serialized transitions and the task registry
- policy_loader: policy documents and proposals from files or plain data
- audit: append-only JSONL transition trail
- api: FastAPI surface (task intake, transitions, execution hand-off, policy evaluation)
- cli: `control-plane evaluate` and `control-plane serve`
"""

__version__ = "0.1.0"
