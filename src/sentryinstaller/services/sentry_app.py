"""Sentry application migrations: schema upgrade and file storage layout."""

from typing import Callable, List

FILE_LAYOUT_MIGRATION = "nested_file_storage"


class SentryAppService:
    """Runs migrations that need the Sentry ``web`` image."""

    DATA_VOLUME = "sentry-data"

    def __init__(self, logger, console):
        self.logger = logger
        self.console = console

    def upgrade_database(self, compose_cmd: List[str], run_cmd: Callable, prompt_for_user: bool):
        compose_run = compose_cmd + ["run", "--rm"]
        if prompt_for_user:
            run_cmd(compose_run + ["web", "upgrade"])
            return

        run_cmd(compose_run + ["web", "upgrade", "--noinput"])
        createuser = " ".join(compose_run + ["web", "createuser"])
        self.console.print("")
        self.console.print("Did not prompt for user creation due to non-interactive shell.")
        self.console.print("Run the following command to create one yourself (recommended):")
        self.console.print("")
        self.console.print(f"  {createuser}", markup=False)
        self.console.print("")

    def flat_entry_count(self, run_cmd: Callable) -> int:
        """Top-level entries of a flat ``sentry-data`` volume, 0 when already nested."""
        result = run_cmd(
            [
                "docker",
                "run",
                "--rm",
                "-v",
                f"{self.DATA_VOLUME}:/data",
                "alpine",
                "ash",
                "-c",
                "[ ! -d '/data/files' ] && ls -A1x /data | wc -l || true",
            ],
            capture_output=True,
        )
        output = (result.stdout or "").strip()
        return int(output) if output.isdigit() else 0

    def migrate_file_storage(self, compose_cmd: List[str], run_cmd: Callable) -> bool:
        if self.flat_entry_count(run_cmd) == 0:
            return False

        self.console.print("[blue]Moving file storage into /data/files...[/blue]")
        # The web image keeps the files owned by sentry:sentry.
        run_cmd(
            compose_cmd
            + [
                "run",
                "--rm",
                "--entrypoint",
                "/bin/bash",
                "web",
                "-c",
                "mkdir -p /tmp/files; "
                "find /data -mindepth 1 -maxdepth 1 -exec mv {} /tmp/files/ \\; ; "
                "mv /tmp/files /data/files; "
                "chown -R sentry:sentry /data",
            ]
        )
        return True
