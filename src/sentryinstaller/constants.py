"""Fixed names, paths and thresholds used by the installer."""

MIN_DOCKER_VERSION = "19.03.6"
MIN_COMPOSE_VERSION = "1.24.1"
MIN_RAM_HARD = 3800  # MB
MIN_RAM_SOFT = 7800  # MB
MIN_CPU_HARD = 2
MIN_CPU_SOFT = 4

# Long enough for celery queues to drain between upgrades.
STOP_TIMEOUT = 60  # seconds

SENTRY_CONFIG_PY = "sentry/sentry.conf.py"
SENTRY_CONFIG_YML = "sentry/config.yml"
SYMBOLICATOR_CONFIG_YML = "symbolicator/config.yml"
RELAY_CONFIG_YML = "relay/config.yml"
RELAY_CREDENTIALS_JSON = "relay/credentials.json"
SENTRY_EXTRA_REQUIREMENTS = "sentry/requirements.txt"

TEMPLATED_FILES = (
    SENTRY_CONFIG_PY,
    SENTRY_CONFIG_YML,
    SENTRY_EXTRA_REQUIREMENTS,
    SYMBOLICATOR_CONFIG_YML,
    RELAY_CONFIG_YML,
)

VOLUMES = (
    "sentry-data",
    "sentry-postgres",
    "sentry-redis",
    "sentry-zookeeper",
    "sentry-kafka",
    "sentry-clickhouse",
    "sentry-symbolicator",
)

SECRET_KEY_OPTION = "system.secret-key"
SECRET_KEY_PLACEHOLDER = "!!changeme!!"
SECRET_KEY_LENGTH = 50
SECRET_KEY_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789@#%^&*(-_=+)"

SNUBA_TSDB = "sentry.tsdb.redissnuba.RedisSnubaTSDB"
TSDB_SWITCHOVER_DAYS = 90

KAFKA_TOPICS = ("ingest-attachments", "ingest-transactions", "ingest-events")

EDGE_SERVICES = ("nginx", "relay")
LEGACY_PROJECT_NAME = "onpremise"
LOCAL_IMAGE_SUFFIX = "-onpremise-local"

DEFAULT_ENVIRONMENT = {
    "COMPOSE_PROJECT_NAME": "sentry_onpremise",
    "SENTRY_IMAGE": "getsentry/sentry:nightly",
}

ENV_FILE = ".env"
CONFIG_FILE = ".sentryinstall.yml"
STATE_FILE = ".install-state.json"
LOG_FILE_TEMPLATE = "sentry_install_log-%Y-%m-%d_%H-%M-%S.txt"

HEALTH_OK = "ok"
HEALTH_POLL_INTERVAL = 0.5  # seconds
