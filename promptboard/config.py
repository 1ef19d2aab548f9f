# PromptBoard: configuration
# Defaults, overridden by promptboard.yaml, overridden by environment variables.

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

CONFIG_PATH = Path(__file__).parent.parent / "promptboard.yaml"

ENV_OVERRIDES = {
    "PROMPTBOARD_DB": "db_path",
    "PROMPTBOARD_BACKUP_DIR": "backup_dir",
    "BACKUP_SECRET": "backup_secret",
    "ANTHROPIC_API_KEY": "anthropic_api_key",
}

logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [promptboard] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def default_cli_paths() -> List[str]:
    return [
        str(Path.home() / ".claude" / "local" / "claude"),
        "/usr/local/bin/claude",
        "claude",
    ]


@dataclass
class Config:
    """Runtime configuration for the board server and its tools."""

    # Storage
    db_path: str = "~/.local/share/promptboard/board.db"
    backup_dir: str = "~/.local/share/promptboard/backups"
    max_backups: int = 30

    # Shared secret for GET /api/backup (empty = endpoint always 401)
    backup_secret: str = ""

    # Prompt generator
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 2048
    cli_timeout: int = 30          # seconds per CLI attempt
    api_timeout: int = 120         # seconds for the HTTP fallback
    cli_paths: List[str] = field(default_factory=default_cli_paths)
    anthropic_api_key: Optional[str] = None

    # Server
    host: str = "127.0.0.1"
    port: int = 3000

    def resolve_paths(self):
        """Expand ~ in storage and CLI paths."""
        self.db_path = str(Path(self.db_path).expanduser())
        self.backup_dir = str(Path(self.backup_dir).expanduser())
        self.cli_paths = [str(Path(p).expanduser()) for p in self.cli_paths]

    def apply_env(self, environ=None):
        environ = os.environ if environ is None else environ
        for env_name, attr in ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value:
                setattr(self, attr, value)

    @classmethod
    def load(cls, path: Optional[str] = None, environ=None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        if path is None:
            path = (os.environ if environ is None else environ).get("PROMPTBOARD_CONFIG")
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
            except (OSError, yaml.YAMLError, TypeError, AttributeError) as e:
                logger.warning(f"Ignoring unreadable config {cfg_path}: {e}")
                cfg = cls()
        else:
            cfg = cls()
        cfg.apply_env(environ)
        cfg.resolve_paths()
        return cfg
