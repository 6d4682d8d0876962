"""One-way upgrade of a PostgreSQL 9.5 data volume to 9.6."""

from typing import Callable

MIGRATION_NAME = "postgres_9_6"


class PostgresUpgradeService:
    """Upgrades ``sentry-postgres`` in place when it still holds 9.5 data."""

    VOLUME = "sentry-postgres"
    NEW_VOLUME = "sentry-postgres-new"
    LEGACY_VERSION = "9.5"
    UPGRADE_IMAGE = "tianon/postgres-upgrade:9.5-to-9.6"
    TRUST_LINE = "host all all all trust"

    def __init__(self, logger, console, docker_runtime_service):
        self.logger = logger
        self.console = console
        self.docker_runtime_service = docker_runtime_service

    def data_version(self, run_cmd: Callable) -> str:
        result = run_cmd(
            ["docker", "run", "--rm", "-v", f"{self.VOLUME}:/db", "busybox", "cat", "/db/PG_VERSION"],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            return ""
        return (result.stdout or "").strip()

    def needs_upgrade(self, run_cmd: Callable) -> bool:
        if not self.docker_runtime_service.volume_exists(self.VOLUME, run_cmd):
            return False
        return self.data_version(run_cmd) == self.LEGACY_VERSION

    def upgrade(self, run_cmd: Callable):
        """Docker has no volume rename, so the result is copied back under the old name."""
        self.console.print("[blue]Upgrading PostgreSQL data from 9.5 to 9.6...[/blue]")
        self.docker_runtime_service.remove_volume(self.NEW_VOLUME, run_cmd, check=False)

        run_cmd(
            [
                "docker",
                "run",
                "--rm",
                "-v",
                f"{self.VOLUME}:/var/lib/postgresql/9.5/data",
                "-v",
                f"{self.NEW_VOLUME}:/var/lib/postgresql/9.6/data",
                self.UPGRADE_IMAGE,
            ]
        )

        self.docker_runtime_service.remove_volume(self.VOLUME, run_cmd)
        run_cmd(["docker", "volume", "create", "--name", self.VOLUME], capture_output=True)

        # The upgrade image does not carry the trust rule over to the new cluster.
        run_cmd(
            [
                "docker",
                "run",
                "--rm",
                "-v",
                f"{self.NEW_VOLUME}:/from",
                "-v",
                f"{self.VOLUME}:/to",
                "alpine",
                "ash",
                "-c",
                f"cd /from ; cp -av . /to ; echo '{self.TRUST_LINE}' >> /to/pg_hba.conf",
            ]
        )
        self.docker_runtime_service.remove_volume(self.NEW_VOLUME, run_cmd)
        self.logger.info("PostgreSQL data upgraded to 9.6.")
