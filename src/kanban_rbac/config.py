"""Configuration management."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from kanban_rbac.auth.permissions import ROLE_PERMISSIONS, build_role_table
from kanban_rbac.auth.roles import Role, parse_role

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """kanban-rbac configuration."""

    data_path: Path = field(default_factory=lambda: Path.home() / ".kanban-rbac")
    log_level: str = "INFO"
    wal_mode: bool = True
    activity_history: int = 100

    # YAML file mapping role -> list of capabilities; None uses the built-in table
    permissions_file: Path | None = None

    @classmethod
    def load(cls, data_path: Path | None = None) -> Config:
        """Load config from defaults, then env vars, then the YAML file."""
        config = cls()

        if data_path:
            config.data_path = data_path

        env_path = os.environ.get("KANBAN_RBAC_HOME")
        if env_path and not data_path:
            config.data_path = Path(env_path)

        env_log = os.environ.get("KANBAN_RBAC_LOG_LEVEL")
        if env_log:
            config.log_level = env_log

        env_perms = os.environ.get("KANBAN_RBAC_PERMISSIONS")
        if env_perms:
            config.permissions_file = Path(env_perms)

        config_file = config.data_path / "config.yaml"
        if config_file.exists():
            with open(config_file) as f:
                data = yaml.safe_load(f) or {}
            for key, value in data.items():
                if key == "permissions_file":
                    config.permissions_file = Path(value) if value else None
                elif key in {"log_level", "wal_mode", "activity_history"}:
                    expected_type = type(getattr(config, key))
                    setattr(config, key, expected_type(value))
                else:
                    logger.warning("Ignoring unknown config key %r in %s", key, config_file)

        return config

    @property
    def members_db_path(self) -> Path:
        return self.data_path / "members.db"

    def load_role_table(self) -> Mapping[Role, frozenset[str]]:
        """Role -> capability table, from permissions_file when one is set.

        Roles the file leaves out get no capabilities.
        """
        if self.permissions_file is None:
            return ROLE_PERMISSIONS

        path = self.permissions_file
        if not path.is_absolute():
            path = self.data_path / path
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Permissions file {path} must map role names to capability lists")

        grants: dict[str, list[str]] = {}
        for key, capabilities in data.items():
            if parse_role(key) is None:
                logger.warning("Ignoring unknown role %r in %s", key, path)
                continue
            if not isinstance(capabilities, list):
                raise ValueError(f"Capabilities for role {key!r} in {path} must be a list")
            grants[key] = [str(c) for c in capabilities]

        missing = [r.value for r in Role if r.value not in grants]
        if missing:
            logger.warning("Roles without capabilities in %s: %s", path, ", ".join(missing))
        return build_role_table(grants)

    def save(self) -> None:
        """Save current config to YAML."""
        self.data_path.mkdir(parents=True, exist_ok=True)
        config_file = self.data_path / "config.yaml"
        data = {
            "log_level": self.log_level,
            "wal_mode": self.wal_mode,
            "activity_history": self.activity_history,
            "permissions_file": str(self.permissions_file) if self.permissions_file else None,
        }
        with open(config_file, "w") as f:
            yaml.dump(data, f, default_flow_style=False)
