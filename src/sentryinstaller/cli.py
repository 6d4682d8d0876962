import logging
import os
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

import click
from rich.logging import RichHandler

from .constants import CONFIG_FILE, ENV_FILE, HEALTH_POLL_INTERVAL, LOG_FILE_TEMPLATE, STOP_TIMEOUT
from .core import InstallerError, SentryInstaller
from .core import console as install_console
from .models import InstallerSettings
from .services.config_loader import ConfigLoader
from .services.environment import load_environment


def _resolve_option(config: Dict[str, Any], key: str, default=None):
    value = config.get(key)
    return default if value is None else value


def _resolve_number(config: Dict[str, Any], key: str, cast, default=None):
    value = _resolve_option(config, key, default)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InstallerError(f"Configuration key '{key}' must be a number, got {value!r}.")
    try:
        number = cast(value)
    except (TypeError, ValueError) as exc:
        raise InstallerError(f"Configuration key '{key}' must be a number, got {value!r}.") from exc
    if number < 0:
        raise InstallerError(f"Configuration key '{key}' must not be negative, got {value!r}.")
    return number


def build_settings(
    project_dir: str,
    no_user_prompt: bool,
    minimize_downtime: bool,
    environ: Optional[Mapping[str, str]] = None,
) -> InstallerSettings:
    environment = load_environment(os.path.join(project_dir, ENV_FILE), environ)

    config_path = os.path.join(project_dir, CONFIG_FILE)
    config_values = ConfigLoader().load(config_path if os.path.exists(config_path) else None)

    log_file = _resolve_option(config_values, "log_file")
    if log_file is None:
        log_file = os.path.join(project_dir, datetime.now().strftime(LOG_FILE_TEMPLATE))

    return InstallerSettings(
        project_dir=project_dir,
        compose_project_name=environment["COMPOSE_PROJECT_NAME"],
        sentry_image=environment["SENTRY_IMAGE"],
        minimize_downtime=minimize_downtime,
        skip_user_prompt=no_user_prompt or environment.get("SKIP_USER_PROMPT") == "1",
        ci=bool(environment.get("CI")),
        github_actions=environment.get("GITHUB_ACTIONS") == "true",
        msystem=environment.get("MSYSTEM") or None,
        verbose=bool(_resolve_option(config_values, "verbose", default=False)),
        log_file=log_file,
        state_file=_resolve_option(config_values, "state_file"),
        stop_timeout=_resolve_number(config_values, "stop_timeout", int, default=STOP_TIMEOUT),
        health_url=_resolve_option(config_values, "health_url"),
        health_poll_interval=_resolve_number(
            config_values, "health_poll_interval", float, default=HEALTH_POLL_INTERVAL
        ),
        health_timeout=_resolve_number(config_values, "health_timeout", float),
        environment=environment,
    )


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


class InstallLogHandler(logging.FileHandler):
    """Install log that also receives everything printed to the installer console."""

    def __init__(self, filename: str, console):
        super().__init__(filename, encoding="utf-8")
        self.console = console
        # Drop output recorded before the log was opened.
        self.console.export_text(clear=True)

    def flush_console(self):
        text = self.console.export_text(clear=True)
        if not text:
            return
        self.acquire()
        try:
            if self.stream is None:
                self.stream = self._open()
            self.stream.write(text)
            self.flush()
        finally:
            self.release()

    def emit(self, record):
        self.flush_console()
        super().emit(record)

    def close(self):
        self.flush_console()
        super().close()


class InstallCommand(click.Command):
    """Unknown arguments are fatal with exit status 1."""

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as exc:
            exc.exit_code = 1
            raise


@click.command(cls=InstallCommand, context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--no-user-prompt",
    is_flag=True,
    help="Skips the initial user creation prompt (ideal for non-interactive installs).",
)
@click.option(
    "--minimize-downtime",
    is_flag=True,
    help=(
        "EXPERIMENTAL: try to keep accepting events for as long as possible while upgrading. "
        "This will disable cleanup on error, and might leave your installation in partially "
        "upgraded state. This option might not reload all configuration, and is only meant "
        "for in-place upgrades."
    ),
)
def main(no_user_prompt, minimize_downtime):
    """Install or upgrade self-hosted Sentry with Docker Compose."""
    logger = logging.getLogger("sentryinstaller")

    try:
        settings = build_settings(
            project_dir=os.getcwd(),
            no_user_prompt=no_user_prompt,
            minimize_downtime=minimize_downtime,
        )
    except InstallerError as exc:
        raise click.ClickException(str(exc)) from exc

    if settings.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    file_handler = None
    if settings.log_file:
        file_handler = InstallLogHandler(settings.log_file, console=install_console)
        file_handler.setLevel(logging.DEBUG if settings.verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    installer = SentryInstaller(settings=settings)
    try:
        exit_code = installer.run()
    finally:
        if file_handler is not None:
            file_handler.flush_console()
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
