"""Idempotency ledger: which one-shot migrations ran and how the last run went."""

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sentryinstaller.errors import InstallerError


class StateService:
    """Persists the installation ledger next to the compose project."""

    SCHEMA_VERSION = 1

    def __init__(self, state_file: str, logger, filesystem_service):
        self.state_file = state_file
        self.logger = logger
        self.filesystem_service = filesystem_service
        self.state: Dict[str, Any] = self._empty_state()

    def load(self) -> Dict[str, Any]:
        if not os.path.exists(self.state_file):
            self.state = self._empty_state()
            return self.state

        try:
            with open(self.state_file, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise InstallerError(f"Could not read state file '{self.state_file}': {exc}") from exc

        if not isinstance(data, dict) or not isinstance(data.get("migrations", {}), dict):
            raise InstallerError(f"State file '{self.state_file}' has invalid format.")

        data.setdefault("migrations", {})
        data.setdefault("last_run", None)
        self.state = data
        return self.state

    def save(self):
        self.state["schema_version"] = self.SCHEMA_VERSION
        self.state["updated_at"] = self._now()
        content = json.dumps(self.state, indent=2, sort_keys=True) + "\n"
        self.filesystem_service.atomic_write_text(self.state_file, content)

    def begin_run(self, mode: str):
        self.state["last_run"] = {
            "mode": mode,
            "status": "running",
            "started_at": self._now(),
            "finished_at": None,
            "steps": [],
            "error": None,
        }
        self.save()

    def mark_step_started(self, step_name: str):
        self._run()["steps"].append(
            {
                "name": step_name,
                "status": "running",
                "started_at": self._now(),
                "finished_at": None,
                "message": None,
            }
        )
        self.save()

    def mark_step_finished(self, step_name: str, status: str, message: Optional[str] = None):
        for step in reversed(self._run()["steps"]):
            if step.get("name") == step_name and step.get("status") == "running":
                step["status"] = status
                step["finished_at"] = self._now()
                step["message"] = message
                break
        self.save()

    def finish_run(self, status: str, error: Optional[str] = None):
        run = self._run()
        run["status"] = status
        run["finished_at"] = self._now()
        run["error"] = error
        self.save()

    def is_applied(self, migration: str) -> bool:
        return migration in self.state.get("migrations", {})

    def record_applied(self, migration: str, details: Optional[Dict[str, Any]] = None):
        self.state.setdefault("migrations", {})[migration] = {
            "applied_at": self._now(),
            "details": details or {},
        }
        self.save()
        self.logger.debug("Recorded migration '%s' as applied.", migration)

    def _run(self) -> Dict[str, Any]:
        if not self.state.get("last_run"):
            raise InstallerError("No installer run in progress.")
        return self.state["last_run"]

    def _empty_state(self) -> Dict[str, Any]:
        return {
            "schema_version": self.SCHEMA_VERSION,
            "created_at": self._now(),
            "updated_at": self._now(),
            "migrations": {},
            "last_run": None,
        }

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
