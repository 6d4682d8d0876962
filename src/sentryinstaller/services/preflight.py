"""Host prerequisite checks run before anything is changed."""

import re
from typing import Callable, List, Optional

from packaging import version

from sentryinstaller.constants import (
    MIN_COMPOSE_VERSION,
    MIN_CPU_HARD,
    MIN_CPU_SOFT,
    MIN_DOCKER_VERSION,
    MIN_RAM_HARD,
    MIN_RAM_SOFT,
)
from sentryinstaller.errors import InstallerError, PreflightError
from sentryinstaller.errors_catalog import actionable_error
from sentryinstaller.models import HostFacts

_DOTTED_VERSION = re.compile(r"\d+(?:\.\d+)*")


def version_number(ver_str: str) -> int:
    """Collapse ``major.minor.patch`` into one integer, three digits per component.

    ``19.03.6`` becomes ``19003006``. Missing components count as zero and any
    text around the dotted part (``v2.20.2``, ``20.10.7-ce``) is ignored.
    """
    match = _DOTTED_VERSION.search(ver_str or "")
    if not match:
        raise InstallerError(f"Could not parse version from '{ver_str}'.")

    release = version.parse(match.group(0)).release
    major, minor, patch = (tuple(release) + (0, 0, 0))[:3]
    return int(f"{major}{minor:03d}{patch:03d}")


class PreflightService:
    """Collects host facts through Docker and compares them to the minimums."""

    KVM_MARKER = "Common KVM processor"
    SSE42_FLAG = "sse4_2"

    def __init__(self, logger, console):
        self.logger = logger
        self.console = console

    def collect_facts(self, compose_cmd: List[str], run_cmd: Callable) -> HostFacts:
        docker_version = run_cmd(
            ["docker", "version", "--format", "{{.Server.Version}}"],
            capture_output=True,
        ).stdout.strip()
        compose_version = run_cmd(
            compose_cmd + ["version", "--short"],
            capture_output=True,
        ).stdout.strip()

        free_output = run_cmd(
            ["docker", "run", "--rm", "busybox", "free", "-m"],
            capture_output=True,
        ).stdout
        cpu_output = run_cmd(
            ["docker", "run", "--rm", "busybox", "nproc", "--all"],
            capture_output=True,
        ).stdout
        cpuinfo = run_cmd(
            ["docker", "run", "--rm", "busybox", "cat", "/proc/cpuinfo"],
            check=False,
            capture_output=True,
        ).stdout or ""

        return HostFacts(
            docker_version=docker_version,
            compose_version=compose_version,
            cpu_count=self._parse_int(cpu_output, "CPU count"),
            ram_mb=self._parse_total_memory(free_output),
            is_kvm=self.KVM_MARKER in cpuinfo,
            supports_sse42=self.SSE42_FLAG in cpuinfo,
        )

    def check(self, facts: HostFacts) -> List[str]:
        """Raise ``PreflightError`` on a hard failure, return soft warnings otherwise."""
        warnings: List[str] = []

        if version_number(facts.docker_version) < version_number(MIN_DOCKER_VERSION):
            raise PreflightError(
                actionable_error("docker_too_old", minimum=MIN_DOCKER_VERSION, found=facts.docker_version)
            )

        if version_number(facts.compose_version) < version_number(MIN_COMPOSE_VERSION):
            raise PreflightError(
                actionable_error(
                    "compose_too_old", minimum=MIN_COMPOSE_VERSION, found=facts.compose_version
                )
            )

        if facts.cpu_count < MIN_CPU_HARD:
            raise PreflightError(
                actionable_error("cpu_too_low", minimum=str(MIN_CPU_HARD), found=str(facts.cpu_count))
            )
        if facts.cpu_count < MIN_CPU_SOFT:
            warnings.append(
                f"Recommended minimum CPU cores available to Docker is {MIN_CPU_SOFT}, "
                f"found {facts.cpu_count}"
            )

        if facts.ram_mb < MIN_RAM_HARD:
            raise PreflightError(
                actionable_error("ram_too_low", minimum=str(MIN_RAM_HARD), found=str(facts.ram_mb))
            )
        if facts.ram_mb < MIN_RAM_SOFT:
            warnings.append(
                f"Recommended minimum RAM available to Docker is {MIN_RAM_SOFT} MB, "
                f"found {facts.ram_mb} MB"
            )

        # KVM guests may hide sse4_2 from /proc/cpuinfo even when it is available.
        if not facts.is_kvm and not facts.supports_sse42:
            raise PreflightError(actionable_error("sse42_missing"))

        for warning in warnings:
            self.console.print(f"[yellow]WARN:[/yellow] {warning}")
            self.logger.warning(warning)

        return warnings

    @staticmethod
    def _parse_int(output: Optional[str], label: str) -> int:
        try:
            return int((output or "").strip())
        except ValueError as exc:
            raise InstallerError(f"Could not read {label} from Docker: {output!r}") from exc

    @classmethod
    def _parse_total_memory(cls, free_output: Optional[str]) -> int:
        for line in (free_output or "").splitlines():
            columns = line.split()
            if columns and columns[0].startswith("Mem"):
                return cls._parse_int(columns[1] if len(columns) > 1 else "", "available RAM")
        raise InstallerError(f"Could not read available RAM from Docker: {free_output!r}")
