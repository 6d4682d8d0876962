import logging
import os
import signal
import subprocess
from pathlib import Path
from typing import Any, Callable, List, Optional

from rich.console import Console

from .constants import (
    RELAY_CONFIG_YML,
    RELAY_CREDENTIALS_JSON,
    SENTRY_CONFIG_PY,
    SENTRY_CONFIG_YML,
    STATE_FILE,
    TEMPLATED_FILES,
    VOLUMES,
)
from .errors import InstallerError, InstallInterrupted, PreflightError
from .errors_catalog import actionable_error
from .models import InstallerSettings, StackState, StageResult, StageStatus
from .services import postgres, sentry_app, tsdb
from .services.command_runner import CommandRunner
from .services.data_plane import DataPlaneService
from .services.docker_runtime import DockerRuntimeService
from .services.filesystem import FileSystemService
from .services.health import ContainerHealthProbe, HealthService, HttpHealthProbe
from .services.postgres import PostgresUpgradeService
from .services.preflight import PreflightService
from .services.relay import RelayService
from .services.secret_key import SecretKeyService
from .services.sentry_app import SentryAppService
from .services.state import StateService
from .services.templates import TemplateService
from .services.tsdb import TsdbMigrationService

console = Console(record=True)
logger = logging.getLogger("sentryinstaller")


class SentryInstaller:
    def __init__(self, settings: InstallerSettings):
        self.settings = settings
        self.project_dir = Path(settings.project_dir)
        self.state_file = settings.state_file or os.path.join(settings.project_dir, STATE_FILE)

        self.filesystem_service = FileSystemService(logger=logger)
        self.state_service = StateService(
            state_file=self.state_file,
            logger=logger,
            filesystem_service=self.filesystem_service,
        )
        self.command_runner = CommandRunner(
            logger=logger,
            env=settings.environment or None,
            cwd=settings.project_dir,
        )
        self.docker_runtime_service = DockerRuntimeService(
            logger=logger,
            console=console,
            subprocess_module=subprocess,
        )
        self.preflight_service = PreflightService(logger=logger, console=console)
        self.template_service = TemplateService(
            logger=logger,
            filesystem_service=self.filesystem_service,
        )
        self.secret_key_service = SecretKeyService(
            logger=logger,
            filesystem_service=self.filesystem_service,
        )
        self.tsdb_service = TsdbMigrationService(
            logger=logger,
            console=console,
            filesystem_service=self.filesystem_service,
        )
        self.data_plane_service = DataPlaneService(logger=logger, console=console)
        self.postgres_service = PostgresUpgradeService(
            logger=logger,
            console=console,
            docker_runtime_service=self.docker_runtime_service,
        )
        self.sentry_app_service = SentryAppService(logger=logger, console=console)
        self.relay_service = RelayService(logger=logger, filesystem_service=self.filesystem_service)
        self.health_service = HealthService(logger=logger, console=console)

        self.compose_cmd: Optional[List[str]] = None
        self.stack_state: Optional[StackState] = None
        self.current_stage: Optional[str] = None
        self.results: List[StageResult] = []
        self._did_clean_up = False

    @property
    def mode(self) -> str:
        return "minimize-downtime" if self.settings.minimize_downtime else "full-stop"

    def _run_cmd(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        return self.command_runner.run(
            cmd,
            check=check,
            capture_output=capture_output,
            timeout=timeout,
        )

    def _get_docker_compose_cmd(self) -> List[str]:
        return self.docker_runtime_service.get_docker_compose_cmd()

    def _begin_group(self, title: str):
        prefix = "::group::" if self.settings.github_actions else "▶ "
        console.print(f"{prefix}{title} ...", markup=False, highlight=False)

    def _end_group(self):
        if self.settings.github_actions:
            console.print("::endgroup::", markup=False, highlight=False)

    def _run_stage(self, name: str, title: str, callback: Callable[..., Any], *args) -> StageResult:
        self._begin_group(title)
        self.state_service.mark_step_started(name)
        self.current_stage = name
        logger.debug("Running stage %s", name)

        try:
            outcome = callback(*args)
        except Exception as exc:
            self.state_service.mark_step_finished(name, StageStatus.FAILED.value, str(exc))
            self.results.append(StageResult(name=name, status=StageStatus.FAILED, message=str(exc)))
            raise
        finally:
            self._end_group()

        result = outcome if isinstance(outcome, StageResult) else StageResult(name=name)
        self.state_service.mark_step_finished(name, result.status.value, result.message)
        self.results.append(result)
        self.current_stage = None
        return result

    def validate_platform(self):
        if self.settings.msystem:
            raise PreflightError(actionable_error("msys_unsupported"))
        self.compose_cmd = self._get_docker_compose_cmd()

    def check_requirements(self) -> StageResult:
        facts = self.preflight_service.collect_facts(self.compose_cmd, self._run_cmd)
        logger.debug("Host facts: %s", facts)
        warnings = self.preflight_service.check(facts)
        if warnings:
            return StageResult.warning("check_requirements", "; ".join(warnings))
        return StageResult(name="check_requirements")

    def create_volumes(self) -> StageResult:
        created = [
            name for name in VOLUMES if self.docker_runtime_service.ensure_volume(name, self._run_cmd)
        ]
        if not created:
            return StageResult.skipped("create_volumes", "All volumes already exist.")
        return StageResult(name="create_volumes", message=f"Created {', '.join(created)}")

    def ensure_files_from_examples(self) -> StageResult:
        created = self.template_service.ensure_files(self.project_dir, TEMPLATED_FILES)
        if not created:
            return StageResult.skipped("ensure_files", "All configuration files already exist.")
        return StageResult(name="ensure_files", message=f"Created {', '.join(created)}")

    def generate_secret_key(self) -> StageResult:
        if not self.secret_key_service.ensure_secret_key(self.project_dir / SENTRY_CONFIG_YML):
            return StageResult.skipped("generate_secret_key", "Secret key already set.")
        return StageResult(name="generate_secret_key")

    def replace_tsdb(self) -> StageResult:
        result = self.tsdb_service.migrate(self.project_dir / SENTRY_CONFIG_PY)
        if result.status is StageStatus.SUCCESS:
            self.state_service.record_applied(tsdb.MIGRATION_NAME)
        return result

    def fetch_images(self):
        self.docker_runtime_service.pull_images(
            self.compose_cmd,
            self.settings.sentry_image,
            self._run_cmd,
        )

    def build_images(self):
        self.docker_runtime_service.build_images(self.compose_cmd, self._run_cmd)

    def turn_things_off(self):
        self.docker_runtime_service.turn_off(
            self.compose_cmd,
            self._run_cmd,
            minimize_downtime=self.settings.minimize_downtime,
            stop_timeout=self.settings.stop_timeout,
        )
        self.stack_state = StackState.STOPPED

    def setup_zookeeper(self) -> StageResult:
        self.stack_state = StackState.PROVISIONING
        if not self.data_plane_service.repair_zookeeper(
            self.compose_cmd,
            self._run_cmd,
            self.settings.project_dir,
        ):
            return StageResult.skipped("setup_zookeeper", "Zookeeper snapshot is consistent.")
        return StageResult(name="setup_zookeeper")

    def bootstrap_snuba(self):
        self.data_plane_service.bootstrap_snuba(self.compose_cmd, self._run_cmd)

    def create_kafka_topics(self) -> StageResult:
        created = self.data_plane_service.ensure_kafka_topics(self.compose_cmd, self._run_cmd)
        if not created:
            return StageResult.skipped("create_kafka_topics", "All Kafka topics exist.")
        return StageResult(name="create_kafka_topics", message=f"Created {', '.join(created)}")

    def ensure_postgres_version(self) -> StageResult:
        if self.state_service.is_applied(postgres.MIGRATION_NAME):
            return StageResult.skipped("ensure_postgres_version", "Already on PostgreSQL 9.6.")

        if not self.postgres_service.needs_upgrade(self._run_cmd):
            self.state_service.record_applied(postgres.MIGRATION_NAME, {"upgraded": False})
            return StageResult.skipped("ensure_postgres_version", "No PostgreSQL 9.5 data found.")

        self.postgres_service.upgrade(self._run_cmd)
        self.state_service.record_applied(postgres.MIGRATION_NAME, {"upgraded": True})
        return StageResult(name="ensure_postgres_version")

    def setup_database(self):
        self.sentry_app_service.upgrade_database(
            self.compose_cmd,
            self._run_cmd,
            prompt_for_user=self.settings.prompt_for_user,
        )

    def migrate_file_storage(self) -> StageResult:
        if self.state_service.is_applied(sentry_app.FILE_LAYOUT_MIGRATION):
            return StageResult.skipped("migrate_file_storage", "File storage already nested.")

        moved = self.sentry_app_service.migrate_file_storage(self.compose_cmd, self._run_cmd)
        self.state_service.record_applied(sentry_app.FILE_LAYOUT_MIGRATION, {"moved": moved})
        if not moved:
            return StageResult.skipped("migrate_file_storage", "Nothing to move.")
        return StageResult(name="migrate_file_storage")

    def generate_relay_credentials(self) -> StageResult:
        if not self.relay_service.ensure_credentials(
            self.compose_cmd,
            self._run_cmd,
            self.project_dir / RELAY_CONFIG_YML,
            self.project_dir / RELAY_CREDENTIALS_JSON,
        ):
            return StageResult.skipped("generate_relay_credentials", "Credentials already exist.")
        return StageResult(name="generate_relay_credentials")

    def wait_for_sentry(self):
        if self.settings.health_url:
            probe = HttpHealthProbe(self.settings.health_url)
        else:
            network = f"{self.settings.compose_project_name}_default"
            probe = ContainerHealthProbe(network, self._run_cmd)

        self.health_service.wait_until_healthy(
            probe,
            interval=self.settings.health_poll_interval,
            timeout=self.settings.health_timeout,
        )

    def start_sentry(self):
        self.docker_runtime_service.start_edge_cutover(
            self.compose_cmd,
            self._run_cmd,
            self.wait_for_sentry,
        )
        self.stack_state = StackState.RUNNING

    def print_start_command(self):
        start_cmd = " ".join(self.compose_cmd + ["up", "-d"])
        rule = "-" * 65
        console.print("")
        console.print(rule)
        console.print("")
        console.print("You're all done! Run the following command to get Sentry running:")
        console.print("")
        console.print(f"  {start_cmd}", markup=False)
        console.print("")
        console.print(rule)
        console.print("")

    def cleanup(self, reason: Optional[str] = None):
        """Stop the stack once per run, unless minimize-downtime mode keeps it serving."""
        if self._did_clean_up:
            return
        self._did_clean_up = True

        stop_cmd = " ".join((self.compose_cmd or ["docker", "compose"]) + ["stop"])
        if reason is not None:
            console.print(
                f"[bold red]An error occurred, caught {reason} in stage "
                f"'{self.current_stage or 'startup'}'.[/bold red]"
            )
            if self.settings.minimize_downtime:
                console.print(
                    f'*NOT* cleaning up, to clean your environment run "{stop_cmd}".',
                    markup=False,
                )
            else:
                console.print("Cleaning up...")

        if self.settings.minimize_downtime or self.compose_cmd is None:
            return

        self.docker_runtime_service.stop_stack(
            self.compose_cmd,
            self._run_cmd,
            self.settings.stop_timeout,
        )
        self.stack_state = StackState.STOPPED

    def _handle_sigterm(self, _signum, _frame):
        raise InstallInterrupted("SIGTERM")

    def run(self) -> int:
        exit_code = 1
        failure: Optional[str] = None
        run_status = "failed"
        run_error: Optional[str] = None
        previous_sigterm = signal.signal(signal.SIGTERM, self._handle_sigterm)

        try:
            logger.info("Starting Sentry installer (%s mode)...", self.mode)
            self.state_service.load()
            self.state_service.begin_run(self.mode)

            self._run_stage("validate_platform", "Checking platform", self.validate_platform)
            self._run_stage("check_requirements", "Checking minimum requirements", self.check_requirements)
            self._run_stage("create_volumes", "Creating volumes for persistent storage", self.create_volumes)
            self._run_stage("ensure_files", "Ensuring files from examples", self.ensure_files_from_examples)
            self._run_stage("generate_secret_key", "Generating secret key", self.generate_secret_key)
            self._run_stage("replace_tsdb", "Replacing TSDB", self.replace_tsdb)
            self._run_stage("fetch_images", "Fetching and updating Docker images", self.fetch_images)
            self._run_stage("build_images", "Building and tagging Docker images", self.build_images)
            self._run_stage("turn_things_off", "Turning things off", self.turn_things_off)
            self._run_stage("setup_zookeeper", "Setting up Zookeeper", self.setup_zookeeper)
            self._run_stage("bootstrap_snuba", "Bootstrapping and migrating Snuba", self.bootstrap_snuba)
            self._run_stage("create_kafka_topics", "Creating additional Kafka topics", self.create_kafka_topics)
            self._run_stage(
                "ensure_postgres_version",
                "Ensuring proper PostgreSQL version",
                self.ensure_postgres_version,
            )
            self._run_stage("setup_database", "Setting up database", self.setup_database)
            self._run_stage("migrate_file_storage", "Migrating file storage", self.migrate_file_storage)
            self._run_stage(
                "generate_relay_credentials",
                "Generating Relay credentials",
                self.generate_relay_credentials,
            )

            if self.settings.minimize_downtime:
                self._run_stage("start_sentry", "Waiting for Sentry to start", self.start_sentry)
            else:
                self.print_start_command()

            warnings = [result for result in self.results if result.status is StageStatus.WARNING]
            for result in warnings:
                logger.warning("%s: %s", result.name, result.message)

            run_status = "success"
            exit_code = 0
            return exit_code

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            failure = "SIGINT"
            run_status = "aborted"
            run_error = "Operation cancelled by user."
            return exit_code
        except InstallInterrupted as exc:
            console.print(f"[bold red]Installation interrupted:[/bold red] {exc}")
            failure = exc.signal_name
            run_status = "aborted"
            run_error = str(exc)
            return exit_code
        except PreflightError as exc:
            console.print(f"[bold red]FAIL:[/bold red] {exc}")
            logger.error(str(exc))
            failure = "ERR"
            run_error = str(exc)
            return exit_code
        except InstallerError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            failure = "ERR"
            run_error = str(exc)
            return exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            failure = "ERR"
            run_error = str(exc)
            return exit_code
        finally:
            signal.signal(signal.SIGTERM, previous_sigterm)
            self.cleanup(failure)
            if self.state_service.state.get("last_run"):
                try:
                    self.state_service.finish_run(run_status, error=run_error)
                except InstallerError as exc:
                    logger.warning("Could not record run result: %s", exc)
