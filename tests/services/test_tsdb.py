import ast

from sentryinstaller.models import StageStatus
from sentryinstaller.services.filesystem import FileSystemService
from sentryinstaller.services.tsdb import TsdbMigrationService, tsdb_settings_block

NOW = 1_600_000_000


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None

    def debug(self, *_args, **_kwargs):
        return None


class RecordingConsole:
    def __init__(self):
        self.lines = []

    def print(self, *args, **_kwargs):
        self.lines.append(" ".join(str(arg) for arg in args))


LEGACY_CONFIG = (
    "from sentry.conf.server import *  # NOQA\n"
    "\n"
    "SENTRY_CACHE = 'sentry.cache.redis.RedisCache'\n"
    "SENTRY_TSDB = 'sentry.tsdb.redis.RedisTSDB'\n"
    "SENTRY_DIGESTS = 'sentry.digests.backends.redis.RedisBackend'\n"
)


def _service(console=None) -> TsdbMigrationService:
    return TsdbMigrationService(
        logger=DummyLogger(),
        console=console or RecordingConsole(),
        filesystem_service=FileSystemService(logger=DummyLogger()),
        clock=lambda: NOW,
    )


def _option(source: str, name: str):
    for node in ast.parse(source).body:
        if isinstance(node, ast.Assign) and node.targets[0].id == name:
            return ast.literal_eval(node.value)
    return None


def test_legacy_tsdb_is_migrated_with_future_switchover(tmp_path):
    config = tmp_path / "sentry.conf.py"
    config.write_text(LEGACY_CONFIG, encoding="utf-8")

    result = _service().migrate(config)

    migrated = config.read_text(encoding="utf-8")
    assert result.status is StageStatus.SUCCESS
    assert 'SENTRY_TSDB = "sentry.tsdb.redissnuba.RedisSnubaTSDB"' in migrated.splitlines()
    assert _option(migrated, "SENTRY_TSDB_OPTIONS")["switchover_timestamp"] > NOW
    assert _option(migrated, "SENTRY_CACHE") == "sentry.cache.redis.RedisCache"
    assert _option(migrated, "SENTRY_DIGESTS") == "sentry.digests.backends.redis.RedisBackend"


def test_switchover_is_ninety_days_out():
    block = tsdb_settings_block(NOW)

    assert _option(block, "SENTRY_TSDB_OPTIONS") == {"switchover_timestamp": NOW + 90 * 24 * 3600}


def test_conflicting_options_leave_file_byte_identical(tmp_path):
    config = tmp_path / "sentry.conf.py"
    content = LEGACY_CONFIG + "SENTRY_TSDB_OPTIONS = {'cluster': 'tsdb'}\n"
    config.write_bytes(content.encode("utf-8"))
    console = RecordingConsole()

    result = _service(console).migrate(config)

    assert result.status is StageStatus.WARNING
    assert config.read_bytes() == content.encode("utf-8")
    assert any("legacy data store" in line for line in console.lines)


def test_already_migrated_file_is_skipped(tmp_path):
    config = tmp_path / "sentry.conf.py"
    config.write_text(tsdb_settings_block(NOW), encoding="utf-8")
    before = config.read_bytes()

    result = _service().migrate(config)

    assert result.status is StageStatus.SKIPPED
    assert config.read_bytes() == before


def test_missing_legacy_setting_degrades_to_warning(tmp_path):
    config = tmp_path / "sentry.conf.py"
    content = "SENTRY_CACHE = 'sentry.cache.redis.RedisCache'\n"
    config.write_text(content, encoding="utf-8")

    result = _service().migrate(config)

    assert result.status is StageStatus.WARNING
    assert config.read_text(encoding="utf-8") == content


def test_unparsable_file_degrades_to_warning(tmp_path):
    config = tmp_path / "sentry.conf.py"
    content = "SENTRY_TSDB = (\n"
    config.write_text(content, encoding="utf-8")

    result = _service().migrate(config)

    assert result.status is StageStatus.WARNING
    assert config.read_text(encoding="utf-8") == content


def test_missing_file_is_skipped(tmp_path):
    assert _service().migrate(tmp_path / "sentry.conf.py").status is StageStatus.SKIPPED


def test_latin1_config_is_migrated_in_its_own_encoding(tmp_path):
    config = tmp_path / "sentry.conf.py"
    config.write_bytes(
        b"# -*- coding: latin-1 -*-\n"
        b"# caf\xe9\n"
        b"SENTRY_TSDB = 'sentry.tsdb.redis.RedisTSDB'\n"
    )

    result = _service().migrate(config)

    migrated = config.read_bytes()
    assert result.status is StageStatus.SUCCESS
    assert b"# caf\xe9\n" in migrated
    assert b'SENTRY_TSDB = "sentry.tsdb.redissnuba.RedisSnubaTSDB"' in migrated


def test_non_literal_legacy_value_does_not_fail_the_stage(tmp_path):
    config = tmp_path / "sentry.conf.py"
    config.write_text("SENTRY_TSDB = {[1]}\n", encoding="utf-8")

    result = _service().migrate(config)

    assert result.status is StageStatus.SUCCESS
    assert _option(config.read_text(encoding="utf-8"), "SENTRY_TSDB") == (
        "sentry.tsdb.redissnuba.RedisSnubaTSDB"
    )


def test_undecodable_file_degrades_to_warning(tmp_path):
    config = tmp_path / "sentry.conf.py"
    content = b"SENTRY_CACHE = 'x'\n\nSENTRY_TSDB = 'sentry.tsdb.redis.RedisTSDB'  # \xff\xfe\n"
    config.write_bytes(content)

    result = _service().migrate(config)

    assert result.status is StageStatus.WARNING
    assert config.read_bytes() == content


def test_null_byte_degrades_to_warning(tmp_path):
    config = tmp_path / "sentry.conf.py"
    content = b"SENTRY_TSDB = 'sentry.tsdb.redis.RedisTSDB'\n\x00\n"
    config.write_bytes(content)

    result = _service().migrate(config)

    assert result.status is StageStatus.WARNING
    assert config.read_bytes() == content


def test_statement_sharing_the_line_is_not_dropped(tmp_path):
    config = tmp_path / "sentry.conf.py"
    content = "SENTRY_TSDB = 'sentry.tsdb.redis.RedisTSDB'; SENTRY_CACHE = 'x'\n"
    config.write_text(content, encoding="utf-8")

    result = _service().migrate(config)

    assert result.status is StageStatus.WARNING
    assert config.read_text(encoding="utf-8") == content
