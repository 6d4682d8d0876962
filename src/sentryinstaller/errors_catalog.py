"""Actionable error catalog for the Sentry installer."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "msys_unsupported": {
        "what": "Seems like you are using an MSYS2-based system (such as Git Bash) which is not supported.",
        "next": "Run the installer from WSL instead.",
    },
    "docker_too_old": {
        "what": "Expected minimum Docker version to be {minimum} but found {found}.",
        "next": "Upgrade the Docker engine and run the installer again.",
    },
    "compose_too_old": {
        "what": "Expected minimum Docker Compose version to be {minimum} but found {found}.",
        "next": "Upgrade Docker Compose and run the installer again.",
    },
    "cpu_too_low": {
        "what": "Required minimum CPU cores available to Docker is {minimum}, found {found}.",
        "next": "Give Docker more CPU cores (Docker Desktop: Settings > Resources).",
    },
    "ram_too_low": {
        "what": "Required minimum RAM available to Docker is {minimum} MB, found {found} MB.",
        "next": "Give Docker more memory (Docker Desktop: Settings > Resources).",
    },
    "sse42_missing": {
        "what": (
            "The CPU your machine is running on does not support the SSE 4.2 instruction set, "
            "which is required for one of the services Sentry uses (Clickhouse)."
        ),
        "next": "See https://git.io/JvLDt for more info.",
    },
    "template_missing": {
        "what": "Cannot create {target}: example file {template} does not exist.",
        "next": "Restore {template} from the repository and run the installer again.",
    },
    "health_timeout": {
        "what": "Sentry did not report healthy within {seconds} seconds.",
        "next": "Inspect `docker compose logs web` and run the installer again.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
