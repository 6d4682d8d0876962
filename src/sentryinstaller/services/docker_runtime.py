"""Docker runtime services for the Sentry installer."""

import subprocess
from typing import Callable, List

from sentryinstaller.constants import EDGE_SERVICES, LEGACY_PROJECT_NAME, LOCAL_IMAGE_SUFFIX
from sentryinstaller.errors import InstallerError


class DockerRuntimeService:
    """Manages compose detection, volumes, images and the stack lifecycle."""

    def __init__(self, logger, console, subprocess_module=subprocess):
        self.logger = logger
        self.console = console
        self.subprocess = subprocess_module

    def get_docker_compose_cmd(self) -> List[str]:
        try:
            self.subprocess.run(["docker", "compose", "version"], check=True, capture_output=True)
            return ["docker", "compose"]
        except (self.subprocess.CalledProcessError, FileNotFoundError):
            try:
                self.subprocess.run(["docker-compose", "--version"], check=True, capture_output=True)
                return ["docker-compose"]
            except (self.subprocess.CalledProcessError, FileNotFoundError):
                raise InstallerError(
                    "Docker Compose is not available. Install Docker Compose v2 (`docker compose`) "
                    "or v1 (`docker-compose`) and try again."
                )

    def volume_exists(self, name: str, run_cmd: Callable) -> bool:
        result = run_cmd(["docker", "volume", "inspect", name], check=False, capture_output=True)
        return result.returncode == 0

    def ensure_volume(self, name: str, run_cmd: Callable) -> bool:
        if self.volume_exists(name, run_cmd):
            self.logger.info("Volume %s already exists, skipped creation.", name)
            return False
        run_cmd(["docker", "volume", "create", "--name", name], capture_output=True)
        self.logger.info("Created %s.", name)
        return True

    def remove_volume(self, name: str, run_cmd: Callable, check: bool = True):
        run_cmd(["docker", "volume", "rm", name], check=check, capture_output=True)

    def list_services(self, compose_cmd: List[str], run_cmd: Callable) -> List[str]:
        result = run_cmd(compose_cmd + ["config", "--services"], capture_output=True)
        return [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]

    def non_edge_services(self, compose_cmd: List[str], run_cmd: Callable) -> List[str]:
        return [
            service
            for service in self.list_services(compose_cmd, run_cmd)
            if service not in EDGE_SERVICES
        ]

    def pull_images(self, compose_cmd: List[str], sentry_image: str, run_cmd: Callable):
        # Locally built images are tagged with LOCAL_IMAGE_SUFFIX and always fail to pull.
        result = run_cmd(
            compose_cmd + ["pull", "-q", "--ignore-pull-failures"],
            check=False,
            capture_output=True,
        )
        output = "\n".join(part for part in (result.stdout, result.stderr) if part)
        for line in output.splitlines():
            if line.strip() and LOCAL_IMAGE_SUFFIX not in line:
                self.logger.info(line.rstrip())

        # SENTRY_IMAGE may be a local image that no registry knows about.
        pulled = run_cmd(["docker", "pull", sentry_image], check=False, capture_output=True)
        if pulled.returncode != 0:
            self.logger.info("Could not pull %s, using the local image if present.", sentry_image)

    def build_images(self, compose_cmd: List[str], run_cmd: Callable):
        run_cmd(compose_cmd + ["build", "--force-rm"])
        self.console.print("[green]Docker images built.[/green]")

    def turn_off(
        self,
        compose_cmd: List[str],
        run_cmd: Callable,
        minimize_downtime: bool,
        stop_timeout: int,
    ):
        if minimize_downtime:
            services = self.non_edge_services(compose_cmd, run_cmd)
            if services:
                run_cmd(compose_cmd + ["rm", "-fsv"] + services)
            return

        down_args = ["down", "-t", str(stop_timeout), "--rmi", "local", "--remove-orphans"]
        # Installations created before the project was renamed.
        run_cmd(compose_cmd + ["-p", LEGACY_PROJECT_NAME] + down_args)
        run_cmd(compose_cmd + down_args)

    def start_edge_cutover(
        self,
        compose_cmd: List[str],
        run_cmd: Callable,
        wait_until_healthy: Callable[[], None],
    ):
        services = self.non_edge_services(compose_cmd, run_cmd)
        run_cmd(compose_cmd + ["up", "-d", "--remove-orphans"] + services)
        run_cmd(compose_cmd + ["exec", "-T", "nginx", "service", "nginx", "reload"])

        wait_until_healthy()

        # Only nginx and relay are left to (re)start at this point.
        run_cmd(compose_cmd + ["up", "-d"])

    def stop_stack(self, compose_cmd: List[str], run_cmd: Callable, stop_timeout: int):
        self.logger.debug("Stopping services...")
        run_cmd(
            compose_cmd + ["stop", "-t", str(stop_timeout)],
            check=False,
            capture_output=True,
        )
