"""
Test Suite for the Control Plane Decision Core

- policy evaluation
- lifecycle transition table and pure transitions
- orchestrator serialization, registry and audit trail
- policy/proposal loading
- HTTP API and CLI
"""
