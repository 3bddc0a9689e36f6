"""
Control Plane Configuration

All settings come from the environment, read at call time:

- CONTROL_PLANE_POLICY_FILE: policy document (YAML/JSON). Default: bundled prod policy
- CONTROL_PLANE_AUDIT_DIR: directory for transitions.jsonl. Unset disables auditing
- CONTROL_PLANE_LOG_LEVEL: logging level name. Default: INFO
- CONTROL_PLANE_HOST / CONTROL_PLANE_PORT: bind address for `control-plane serve`
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------
PACKAGE_DIR = Path(__file__).parent
DEFAULT_POLICY_FILE = PACKAGE_DIR / "policies" / "prod.yaml"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class Settings:
    policy_file: Path = DEFAULT_POLICY_FILE
    audit_dir: Optional[Path] = None
    log_level: str = DEFAULT_LOG_LEVEL
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    audit_dir = os.getenv("CONTROL_PLANE_AUDIT_DIR")
    port = os.getenv("CONTROL_PLANE_PORT")
    return Settings(
        policy_file=Path(os.getenv("CONTROL_PLANE_POLICY_FILE", str(DEFAULT_POLICY_FILE))),
        audit_dir=Path(audit_dir) if audit_dir else None,
        log_level=os.getenv("CONTROL_PLANE_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        host=os.getenv("CONTROL_PLANE_HOST", DEFAULT_HOST),
        port=int(port) if port else DEFAULT_PORT,
    )


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
