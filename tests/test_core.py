import io
import json
import signal
import subprocess

import pytest
from rich.console import Console

import sentryinstaller.core as core_module
from sentryinstaller.constants import VOLUMES
from sentryinstaller.core import InstallerError, SentryInstaller
from sentryinstaller.errors import InstallInterrupted
from sentryinstaller.models import InstallerSettings, StackState

COMPOSE = ["docker", "compose"]
CREDENTIALS = '{"secret_key": "s", "public_key": "p", "id": "i"}\n'
SNUBA_CONF = 'SENTRY_TSDB = "sentry.tsdb.redissnuba.RedisSnubaTSDB"\n'

EXAMPLES = {
    "sentry/sentry.conf.example.py": SNUBA_CONF,
    "sentry/config.example.yml": "mail.backend: 'dummy'\nsystem.secret-key: '!!changeme!!'\n",
    "sentry/requirements.example.txt": "",
    "symbolicator/config.example.yml": "cache_dir: /data\n",
    "relay/config.example.yml": "relay:\n  upstream: http://web:9000/\n",
}


class FakeDocker:
    """Answers installer commands the way a healthy Docker host would."""

    def __init__(self, volumes=(), docker_version="20.10.7", fail_on=None):
        self.volumes = set(volumes)
        self.docker_version = docker_version
        self.fail_on = fail_on
        self.calls = []

    def __call__(self, cmd, check=True, capture_output=False, timeout=None):
        self.calls.append(cmd)
        if self.fail_on and self.fail_on in cmd:
            if check:
                raise InstallerError(f"Command failed (1): {' '.join(cmd)}")
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="")

        returncode, stdout = 0, ""
        if cmd[:3] == ["docker", "volume", "inspect"]:
            returncode = 0 if cmd[3] in self.volumes else 1
        elif cmd[:3] == ["docker", "volume", "create"]:
            self.volumes.add(cmd[-1])
        elif cmd[:2] == ["docker", "version"]:
            stdout = f"{self.docker_version}\n"
        elif cmd[-2:] == ["version", "--short"]:
            stdout = "2.20.2\n"
        elif "free" in cmd:
            stdout = "      total used free\nMem:  15951 1200 14751\n"
        elif "nproc" in cmd:
            stdout = "8\n"
        elif "/proc/cpuinfo" in cmd:
            stdout = "flags : fpu sse4_1 sse4_2\n"
        elif cmd[-2:] == ["config", "--services"]:
            stdout = "kafka\nnginx\nrelay\nsnuba-api\nweb\n"
        elif cmd[-1] == "/db/PG_VERSION":
            returncode = 1
        elif "sentry-data:/data" in cmd:
            stdout = ""
        elif "--list" in cmd:
            stdout = "ingest-events\n"
        elif cmd[-3:] == ["credentials", "generate", "--stdout"]:
            stdout = CREDENTIALS
        elif "wget" in cmd:
            stdout = "ok"
        elif cmd[-1].startswith("ls 2>/dev/null"):
            stdout = "0"

        if returncode and check:
            raise InstallerError(f"Command failed ({returncode}): {' '.join(cmd)}")
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")

    def ran(self, *parts) -> bool:
        return any(all(part in cmd for part in parts) for cmd in self.calls)


@pytest.fixture(autouse=True)
def patch_compose_detection(monkeypatch):
    monkeypatch.setattr(SentryInstaller, "_get_docker_compose_cmd", lambda self: list(COMPOSE))


@pytest.fixture
def project_dir(tmp_path):
    for relative_path, content in EXAMPLES.items():
        path = tmp_path / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return tmp_path


def build_installer(project_dir, monkeypatch, docker, **overrides):
    values = {
        "project_dir": str(project_dir),
        "compose_project_name": "sentry_onpremise",
        "sentry_image": "getsentry/sentry:nightly",
        "skip_user_prompt": True,
        "health_poll_interval": 0,
    }
    values.update(overrides)
    installer = SentryInstaller(settings=InstallerSettings(**values))
    monkeypatch.setattr(installer, "_run_cmd", docker)
    return installer


def _ledger(project_dir):
    return json.loads((project_dir / ".install-state.json").read_text(encoding="utf-8"))


def test_fresh_install_provisions_everything(project_dir, monkeypatch):
    docker = FakeDocker()
    installer = build_installer(project_dir, monkeypatch, docker)

    assert installer.run() == 0

    for relative_path in EXAMPLES:
        assert (project_dir / relative_path.replace(".example", "")).exists()
    config_yml = (project_dir / "sentry" / "config.yml").read_text(encoding="utf-8")
    assert "!!changeme!!" not in config_yml
    assert (project_dir / "sentry" / "sentry.conf.py").read_text(encoding="utf-8") == SNUBA_CONF
    assert (project_dir / "relay" / "credentials.json").read_text(encoding="utf-8") == CREDENTIALS

    assert docker.volumes == set(VOLUMES)
    assert docker.ran("web", "upgrade", "--noinput")
    assert docker.ran("--topic", "ingest-attachments")
    assert not docker.ran("--topic", "ingest-events")
    assert docker.calls[-1] == COMPOSE + ["stop", "-t", "60"]
    assert installer.stack_state is StackState.STOPPED

    ledger = _ledger(project_dir)
    assert ledger["last_run"]["status"] == "success"
    assert "postgres_9_6" in ledger["migrations"]
    assert "nested_file_storage" in ledger["migrations"]


def test_rerun_on_configured_installation_changes_nothing(project_dir, monkeypatch):
    assert build_installer(project_dir, monkeypatch, FakeDocker()).run() == 0
    snapshot = {
        path: path.read_bytes()
        for path in project_dir.rglob("*")
        if path.is_file() and path.name != ".install-state.json" and "install_log" not in path.name
    }

    docker = FakeDocker(volumes=VOLUMES)
    assert build_installer(project_dir, monkeypatch, docker).run() == 0

    for path, content in snapshot.items():
        assert path.read_bytes() == content
    assert not docker.ran("docker", "volume", "create")
    assert not docker.ran("credentials", "generate")
    assert not docker.ran("/db/PG_VERSION")
    assert not docker.ran("sentry-data:/data")

    statuses = {step["name"]: step["status"] for step in _ledger(project_dir)["last_run"]["steps"]}
    assert statuses["generate_secret_key"] == "skipped"
    assert statuses["ensure_postgres_version"] == "skipped"
    assert statuses["generate_relay_credentials"] == "skipped"


def test_minimize_downtime_brings_stack_up(project_dir, monkeypatch):
    docker = FakeDocker()
    installer = build_installer(project_dir, monkeypatch, docker, minimize_downtime=True)

    assert installer.run() == 0

    assert docker.ran("rm", "-fsv", "kafka", "snuba-api", "web")
    assert not docker.ran("down")
    assert docker.ran("--network=sentry_onpremise_default")
    assert docker.calls[-1] == COMPOSE + ["up", "-d"]
    assert not docker.ran("stop")
    assert installer.stack_state is StackState.RUNNING


def test_failure_stops_stack_once_in_full_stop_mode(project_dir, monkeypatch):
    docker = FakeDocker(fail_on="snuba-api")
    installer = build_installer(project_dir, monkeypatch, docker)

    assert installer.run() == 1

    stops = [cmd for cmd in docker.calls if cmd[-3:] == ["stop", "-t", "60"]]
    assert len(stops) == 1
    ledger = _ledger(project_dir)
    assert ledger["last_run"]["status"] == "failed"
    assert ledger["last_run"]["steps"][-1]["name"] == "bootstrap_snuba"
    assert ledger["last_run"]["steps"][-1]["status"] == "failed"
    assert not docker.ran("web", "upgrade")


def test_failure_keeps_stack_serving_in_minimize_downtime_mode(project_dir, monkeypatch):
    docker = FakeDocker(fail_on="snuba-api")
    installer = build_installer(project_dir, monkeypatch, docker, minimize_downtime=True)

    assert installer.run() == 1
    assert not docker.ran("stop")


def test_preflight_failure_aborts_before_provisioning(project_dir, monkeypatch):
    docker = FakeDocker(docker_version="18.09.1")
    installer = build_installer(project_dir, monkeypatch, docker)

    assert installer.run() == 1
    assert not docker.ran("docker", "volume", "create")
    assert not (project_dir / "sentry" / "config.yml").exists()


def test_msys_shell_is_rejected(project_dir, monkeypatch):
    def fail_if_called(self):
        raise AssertionError("compose detection should not run on MSYS2")

    monkeypatch.setattr(SentryInstaller, "_get_docker_compose_cmd", fail_if_called)
    docker = FakeDocker()
    installer = build_installer(project_dir, monkeypatch, docker, msystem="MINGW64")

    assert installer.run() == 1
    assert docker.calls == []


def test_interruption_is_recorded_as_aborted(project_dir, monkeypatch):
    installer = build_installer(project_dir, monkeypatch, FakeDocker())

    def interrupted():
        raise InstallInterrupted("SIGTERM")

    monkeypatch.setattr(installer, "build_images", interrupted)

    assert installer.run() == 1
    assert _ledger(project_dir)["last_run"]["status"] == "aborted"


def test_cleanup_runs_at_most_once(project_dir, monkeypatch):
    docker = FakeDocker()
    installer = build_installer(project_dir, monkeypatch, docker)
    installer.compose_cmd = list(COMPOSE)

    installer.cleanup("ERR")
    installer.cleanup("SIGINT")
    installer.cleanup()

    assert docker.calls == [COMPOSE + ["stop", "-t", "60"]]


def test_legacy_tsdb_warning_does_not_fail_the_run(project_dir, monkeypatch):
    (project_dir / "sentry" / "sentry.conf.py").write_text(
        "SENTRY_TSDB = 'sentry.tsdb.redis.RedisTSDB'\nSENTRY_TSDB_OPTIONS = {}\n",
        encoding="utf-8",
    )
    installer = build_installer(project_dir, monkeypatch, FakeDocker())

    assert installer.run() == 0

    statuses = {step["name"]: step["status"] for step in _ledger(project_dir)["last_run"]["steps"]}
    assert statuses["replace_tsdb"] == "warning"


@pytest.fixture
def console_output(monkeypatch):
    output = io.StringIO()
    monkeypatch.setattr(core_module, "console", Console(file=output, width=200))
    return output


def test_stage_banners_use_github_actions_groups(project_dir, monkeypatch, console_output):
    installer = build_installer(project_dir, monkeypatch, FakeDocker(), github_actions=True)

    assert installer.run() == 0

    text = console_output.getvalue()
    assert "::group::Checking platform ..." in text
    assert "::group::Generating Relay credentials ..." in text
    assert text.count("::group::") == text.count("::endgroup::") == len(installer.results)
    assert "▶" not in text


def test_stage_banners_use_plain_prefix_outside_github_actions(
    project_dir, monkeypatch, console_output
):
    installer = build_installer(project_dir, monkeypatch, FakeDocker())

    assert installer.run() == 0

    text = console_output.getvalue()
    assert "▶ Checking platform ..." in text
    assert "::group::" not in text
    assert "::endgroup::" not in text


@pytest.fixture
def previous_sigterm():
    def handler(_signum, _frame):
        return None

    original = signal.signal(signal.SIGTERM, handler)
    yield handler
    signal.signal(signal.SIGTERM, original)


def test_sigterm_aborts_run_and_restores_previous_handler(
    project_dir, monkeypatch, previous_sigterm
):
    docker = FakeDocker()
    installer = build_installer(project_dir, monkeypatch, docker)
    installed = []

    def terminated():
        handler = signal.getsignal(signal.SIGTERM)
        installed.append(handler)
        handler(signal.SIGTERM, None)

    monkeypatch.setattr(installer, "build_images", terminated)

    assert installer.run() == 1

    assert installed == [installer._handle_sigterm]
    assert signal.getsignal(signal.SIGTERM) is previous_sigterm
    assert _ledger(project_dir)["last_run"]["status"] == "aborted"
    assert docker.calls[-1] == COMPOSE + ["stop", "-t", "60"]
