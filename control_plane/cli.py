"""
Control Plane CLI

Commands:
    control-plane evaluate PROPOSAL_FILE [--policy POLICY_FILE]
        Check a proposal against the policy.
        Exit 0 when approved, 1 on any violation, 2 on unreadable input.

    control-plane serve [--host HOST] [--port PORT]
        Run the HTTP API with uvicorn.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import configure_logging, load_settings
from .policy_evaluator import evaluate
from .policy_loader import PolicyConfigError, ProposalError, load_policy_document, load_proposal

logger = logging.getLogger("control_plane_cli")

EXIT_APPROVED = 0
EXIT_REJECTED = 1
EXIT_BAD_INPUT = 2


def cmd_evaluate(args: argparse.Namespace) -> int:
    settings = load_settings()
    policy_path = Path(args.policy) if args.policy else settings.policy_file

    try:
        policy = load_policy_document(policy_path)
        proposal = load_proposal(Path(args.proposal))
    except (PolicyConfigError, ProposalError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return EXIT_BAD_INPUT

    decision = evaluate(proposal, policy)
    if not decision.approved:
        for violation in decision.violations:
            print(f"❌ Policy fail: {violation}", file=sys.stderr)
        return EXIT_REJECTED

    print("✅ Policy approved")
    return EXIT_APPROVED


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "control_plane.api:create_app",
        factory=True,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="control-plane", description="Control plane decision core")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_eval = subparsers.add_parser("evaluate", help="Evaluate a proposal file against the policy")
    p_eval.add_argument("proposal", help="Proposal file (JSON or YAML)")
    p_eval.add_argument("--policy", default=None, help="Policy document (default: CONTROL_PLANE_POLICY_FILE or bundled)")
    p_eval.set_defaults(func=cmd_evaluate)

    p_serve = subparsers.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default=None)
    p_serve.add_argument("--port", type=int, default=None)
    p_serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(load_settings().log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
