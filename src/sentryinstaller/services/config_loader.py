"""Configuration loader for installer options."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from sentryinstaller.errors import InstallerError


class ConfigLoader:
    """Loads the optional YAML file that tunes installer behaviour."""

    SUPPORTED_KEYS = {
        "verbose",
        "log_file",
        "state_file",
        "stop_timeout",
        "health_url",
        "health_poll_interval",
        "health_timeout",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise InstallerError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise InstallerError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise InstallerError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise InstallerError(f"Unknown configuration keys: {unknown_list}")

        return parsed
