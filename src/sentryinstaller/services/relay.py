"""Relay credential generation."""

import os
from pathlib import Path
from typing import Callable, List


class RelayService:
    """Generates ``relay/credentials.json`` once."""

    def __init__(self, logger, filesystem_service):
        self.logger = logger
        self.filesystem_service = filesystem_service

    def ensure_credentials(
        self,
        compose_cmd: List[str],
        run_cmd: Callable,
        config_path: Path,
        credentials_path: Path,
    ) -> bool:
        if credentials_path.exists():
            self.logger.info("%s already exists, skipped generation.", credentials_path)
            return False

        # relay reads the credentials next to its config, so mount the config alone.
        result = run_cmd(
            compose_cmd
            + [
                "run",
                "--rm",
                "--no-deps",
                "-v",
                f"{os.path.abspath(config_path)}:/tmp/config.yml",
                "relay",
                "--config",
                "/tmp",
                "credentials",
                "generate",
                "--stdout",
            ],
            capture_output=True,
        )
        self.filesystem_service.atomic_write_text(str(credentials_path), result.stdout)
        self.logger.info("Relay credentials written to %s", credentials_path)
        return True
