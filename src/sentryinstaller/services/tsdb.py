"""Migration of ``sentry.conf.py`` from the legacy TSDB to the Snuba backed one."""

import ast
import io
import time
import tokenize
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from sentryinstaller.constants import SNUBA_TSDB, TSDB_SWITCHOVER_DAYS
from sentryinstaller.models import StageResult

TSDB_OPTION = "SENTRY_TSDB"
TSDB_OPTIONS_OPTION = "SENTRY_TSDB_OPTIONS"
MIGRATION_NAME = "snuba_tsdb"


def _assignments(tree: ast.Module, name: str) -> List[ast.stmt]:
    found = []
    for node in tree.body:
        if isinstance(node, ast.Assign):
            targets = node.targets
        elif isinstance(node, ast.AnnAssign):
            targets = [node.target]
        else:
            continue
        if any(isinstance(target, ast.Name) and target.id == name for target in targets):
            found.append(node)
    return found


def _literal(node: ast.stmt):
    try:
        return ast.literal_eval(node.value)
    except (ValueError, TypeError, MemoryError, RecursionError):
        return None


def _read_source(config_path: Path):
    """Decode ``config_path`` honouring its PEP 263 coding cookie."""
    raw = config_path.read_bytes()
    encoding, _ = tokenize.detect_encoding(io.BytesIO(raw).readline)
    return raw.decode(encoding), encoding


def _shares_a_line(tree: ast.Module, nodes: List[ast.stmt]) -> bool:
    for node in nodes:
        for other in tree.body:
            if other is node:
                continue
            if other.lineno <= node.end_lineno and node.lineno <= other.end_lineno:
                return True
    return False


def uses_snuba_tsdb(tree: ast.Module) -> bool:
    return any(_literal(node) == SNUBA_TSDB for node in _assignments(tree, TSDB_OPTION))


def tsdb_settings_block(now: Optional[float] = None) -> str:
    now = time.time() if now is None else now
    switchover = int(now) + TSDB_SWITCHOVER_DAYS * 24 * 3600
    started = datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    return (
        f'{TSDB_OPTION} = "{SNUBA_TSDB}"\n'
        "\n"
        f"# Automatic switchover {TSDB_SWITCHOVER_DAYS} days after {started}. "
        "Can be removed afterwards.\n"
        f'{TSDB_OPTIONS_OPTION} = {{"switchover_timestamp": {switchover}}}\n'
    )


class TsdbMigrationService:
    """Rewrites the ``SENTRY_TSDB`` statement, leaving the file alone when unsure."""

    def __init__(self, logger, console, filesystem_service, clock=time.time):
        self.logger = logger
        self.console = console
        self.filesystem_service = filesystem_service
        self.clock = clock

    def migrate(self, config_path: Path) -> StageResult:
        name = "replace_tsdb"
        if not config_path.is_file():
            return StageResult.skipped(name, f"{config_path} does not exist.")

        try:
            source, encoding = _read_source(config_path)
            tree = ast.parse(source, filename=str(config_path))
        except (SyntaxError, ValueError) as exc:
            self.logger.warning("Could not parse %s: %s", config_path, exc)
            return self._manual_migration(name, config_path)

        if uses_snuba_tsdb(tree):
            return StageResult.skipped(name, "Already using the Snuba TSDB.")

        if _assignments(tree, TSDB_OPTIONS_OPTION):
            self.logger.info(
                "Not attempting automatic TSDB migration due to presence of %s", TSDB_OPTIONS_OPTION
            )
            return self._manual_migration(name, config_path)

        if _shares_a_line(tree, _assignments(tree, TSDB_OPTION)):
            self.logger.info("Not attempting automatic TSDB migration, %s shares a line.", TSDB_OPTION)
            return self._manual_migration(name, config_path)

        self.logger.info("Attempting to automatically migrate to new TSDB")
        rewritten = self._rewrite(source, tree)
        if rewritten is None or not self._verify(rewritten):
            self.logger.warning("Failed to automatically migrate TSDB. %s left unchanged.", config_path)
            return self._manual_migration(name, config_path)

        self.filesystem_service.atomic_write_text(str(config_path), rewritten, encoding=encoding)
        self.logger.info("Migrated TSDB to Snuba in %s", config_path)
        return StageResult(name=name)

    def _rewrite(self, source: str, tree: ast.Module) -> Optional[str]:
        legacy = _assignments(tree, TSDB_OPTION)
        if not legacy:
            return None

        lines = io.StringIO(source, newline="").readlines()
        block = tsdb_settings_block(self.clock())
        # Bottom-up so earlier line numbers stay valid.
        for index, node in enumerate(sorted(legacy, key=lambda item: item.lineno, reverse=True)):
            start, end = node.lineno - 1, node.end_lineno
            replacement = block if index == len(legacy) - 1 else ""
            lines[start:end] = [replacement] if replacement else []
        return "".join(lines)

    @staticmethod
    def _verify(source: str) -> bool:
        try:
            tree = ast.parse(source)
        except (SyntaxError, ValueError):
            return False
        options = _assignments(tree, TSDB_OPTIONS_OPTION)
        return uses_snuba_tsdb(tree) and len(options) == 1 and isinstance(_literal(options[0]), dict)

    def _manual_migration(self, name: str, config_path: Path) -> StageResult:
        message = (
            "Your Sentry configuration uses a legacy data store for time-series data. "
            f"Remove the options {TSDB_OPTION} and {TSDB_OPTIONS_OPTION} from {config_path} and add:"
        )
        self.console.print(f"[yellow]WARN:[/yellow] {message}")
        self.console.print("")
        self.console.print(tsdb_settings_block(self.clock()), markup=False, highlight=False)
        self.console.print(
            "For more information please refer to https://github.com/getsentry/onpremise/pull/430"
        )
        return StageResult.warning(name, message)
