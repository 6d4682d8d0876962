"""Health polling used by the minimize-downtime cut-over."""

import time
from typing import Callable, List, Optional

import requests

from sentryinstaller.constants import HEALTH_OK
from sentryinstaller.errors import InstallerError
from sentryinstaller.errors_catalog import actionable_error


class ContainerHealthProbe:
    """Asks ``web`` for its health from a throw-away container on the compose network."""

    URL = "http://web:9000/_health/"

    def __init__(self, network_name: str, run_cmd: Callable):
        self.network_name = network_name
        self.run_cmd = run_cmd

    def command(self) -> List[str]:
        return [
            "docker",
            "run",
            "--rm",
            f"--network={self.network_name}",
            "alpine",
            "wget",
            "-T",
            "1",
            "-q",
            "-O-",
            self.URL,
        ]

    def __call__(self) -> bool:
        result = self.run_cmd(self.command(), check=False, capture_output=True)
        return (result.stdout or "").strip() == HEALTH_OK


class HttpHealthProbe:
    """Polls a health URL reachable from the host."""

    def __init__(self, url: str, requests_module=requests):
        self.url = url
        self.requests = requests_module

    def __call__(self) -> bool:
        try:
            response = self.requests.get(self.url, timeout=1)
        except self.requests.RequestException:
            return False
        return response.status_code == 200 and response.text.strip() == HEALTH_OK


class HealthService:
    """Blocks until a probe reports healthy."""

    def __init__(self, logger, console, sleep=time.sleep, clock=time.monotonic):
        self.logger = logger
        self.console = console
        self.sleep = sleep
        self.clock = clock

    def wait_until_healthy(
        self,
        probe: Callable[[], bool],
        interval: float,
        timeout: Optional[float] = None,
    ):
        """Poll ``probe`` every ``interval`` seconds.

        Without a ``timeout`` this waits for as long as it takes.
        """
        self.console.print("[yellow]Waiting for Sentry to start...[/yellow]")
        deadline = None if timeout is None else self.clock() + timeout
        attempts = 0

        while not probe():
            attempts += 1
            if deadline is not None and self.clock() >= deadline:
                raise InstallerError(actionable_error("health_timeout", seconds=str(timeout)))
            if attempts % 20 == 0:
                self.logger.info("Still waiting for Sentry to report healthy (%s probes).", attempts)
            self.sleep(interval)

        self.console.print("[green]Sentry is up.[/green]")
