"""Zookeeper, Snuba and Kafka bootstrap steps."""

import os
import re
from typing import Callable, Iterable, List

from sentryinstaller.constants import KAFKA_TOPICS


class DataPlaneService:
    """Bootstraps the storage and messaging services Sentry depends on."""

    ZOOKEEPER_DATA_DIR = "/var/lib/zookeeper/data/version-2"
    ZOOKEEPER_LOG_DIR = "/var/lib/zookeeper/log/version-2"
    KAFKA_BOOTSTRAP_SERVER = "kafka:9092"

    def __init__(self, logger, console):
        self.logger = logger
        self.console = console

    def _count_entries(self, compose_run: List[str], run_cmd: Callable, pattern: str) -> int:
        result = run_cmd(
            compose_run
            + ["zookeeper", "bash", "-c", f"ls 2>/dev/null -Ubad1 -- {pattern} | wc -l | tr -d '[:space:]'"],
            capture_output=True,
        )
        try:
            return int((result.stdout or "0").strip() or "0")
        except ValueError:
            return 0

    def repair_zookeeper(self, compose_cmd: List[str], run_cmd: Callable, project_dir: str) -> bool:
        """Work around https://issues.apache.org/jira/browse/ZOOKEEPER-3056.

        Zookeeper refuses to start when it has transaction logs but no snapshot,
        which is what older versions leave behind. Seed an empty snapshot and
        let it start once trusting that snapshot.
        """
        compose_run = compose_cmd + ["run", "--rm"]
        if self._count_entries(compose_run, run_cmd, self.ZOOKEEPER_DATA_DIR) != 1:
            return False

        log_files = self._count_entries(compose_run, run_cmd, f"{self.ZOOKEEPER_LOG_DIR}/*")
        snapshot_files = self._count_entries(compose_run, run_cmd, f"{self.ZOOKEEPER_DATA_DIR}/*")
        if not (log_files > 0 and snapshot_files == 0):
            return False

        self.logger.info("Seeding an empty Zookeeper snapshot (%s log files, no snapshot).", log_files)
        snapshot_dir = os.path.join(project_dir, "zookeeper")
        run_cmd(
            compose_run
            + [
                "-v",
                f"{snapshot_dir}:/temp",
                "zookeeper",
                "bash",
                "-c",
                f"cp /temp/snapshot.0 {self.ZOOKEEPER_DATA_DIR}/snapshot.0",
            ]
        )
        run_cmd(
            compose_cmd
            + ["run", "-d", "-e", "ZOOKEEPER_SNAPSHOT_TRUST_EMPTY=true", "zookeeper"],
            capture_output=True,
        )
        return True

    def bootstrap_snuba(self, compose_cmd: List[str], run_cmd: Callable):
        compose_run = compose_cmd + ["run", "--rm"]
        run_cmd(compose_run + ["snuba-api", "bootstrap", "--no-migrate", "--force"])
        run_cmd(compose_run + ["snuba-api", "migrations", "migrate", "--force"])

    def existing_kafka_topics(self, compose_cmd: List[str], run_cmd: Callable) -> List[str]:
        result = run_cmd(
            compose_cmd
            + [
                "run",
                "--rm",
                "kafka",
                "kafka-topics",
                "--list",
                "--bootstrap-server",
                self.KAFKA_BOOTSTRAP_SERVER,
            ],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            self.logger.debug("Listing Kafka topics failed, assuming none exist.")
            return []
        return re.findall(r"[\w.\-]+", result.stdout or "")

    def ensure_kafka_topics(
        self,
        compose_cmd: List[str],
        run_cmd: Callable,
        topics: Iterable[str] = KAFKA_TOPICS,
    ) -> List[str]:
        # Relies on kafka having been started by the snuba bootstrap.
        existing = set(self.existing_kafka_topics(compose_cmd, run_cmd))
        created = []
        for topic in topics:
            if topic in existing:
                continue
            run_cmd(
                compose_cmd
                + [
                    "run",
                    "--rm",
                    "kafka",
                    "kafka-topics",
                    "--create",
                    "--topic",
                    topic,
                    "--bootstrap-server",
                    self.KAFKA_BOOTSTRAP_SERVER,
                ]
            )
            created.append(topic)
        return created
