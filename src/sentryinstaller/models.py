"""Shared domain models for the Sentry installer."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from .constants import HEALTH_POLL_INTERVAL, STOP_TIMEOUT


@dataclass(frozen=True)
class InstallerSettings:
    """Configuration assembled once at startup and handed to every stage."""

    project_dir: str
    compose_project_name: str
    sentry_image: str
    minimize_downtime: bool = False
    skip_user_prompt: bool = False
    ci: bool = False
    github_actions: bool = False
    msystem: Optional[str] = None
    verbose: bool = False
    log_file: Optional[str] = None
    state_file: Optional[str] = None
    stop_timeout: int = STOP_TIMEOUT
    health_url: Optional[str] = None
    health_poll_interval: float = HEALTH_POLL_INTERVAL
    health_timeout: Optional[float] = None
    environment: Dict[str, str] = field(default_factory=dict)

    @property
    def prompt_for_user(self) -> bool:
        return not (self.ci or self.skip_user_prompt)


@dataclass(frozen=True)
class HostFacts:
    """Values reported by Docker about the execution host."""

    docker_version: str
    compose_version: str
    cpu_count: int
    ram_mb: int
    is_kvm: bool
    supports_sse42: bool


class StageStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    WARNING = "warning"
    FAILED = "failed"


@dataclass(frozen=True)
class StageResult:
    name: str
    status: StageStatus = StageStatus.SUCCESS
    message: Optional[str] = None

    @classmethod
    def skipped(cls, name: str, message: Optional[str] = None) -> "StageResult":
        return cls(name=name, status=StageStatus.SKIPPED, message=message)

    @classmethod
    def warning(cls, name: str, message: str) -> "StageResult":
        return cls(name=name, status=StageStatus.WARNING, message=message)


class StackState(str, Enum):
    STOPPED = "stopped"
    PROVISIONING = "provisioning"
    RUNNING = "running"
