"""Secret key generation for ``sentry/config.yml``."""

import secrets
from pathlib import Path

import yaml

from sentryinstaller.constants import (
    SECRET_KEY_ALPHABET,
    SECRET_KEY_LENGTH,
    SECRET_KEY_OPTION,
    SECRET_KEY_PLACEHOLDER,
)
from sentryinstaller.errors import InstallerError


def generate_secret_key(length: int = SECRET_KEY_LENGTH, alphabet: str = SECRET_KEY_ALPHABET) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def yaml_single_quoted(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class SecretKeyService:
    """Replaces the placeholder secret key exactly once."""

    PLACEHOLDER_LINE = f"{SECRET_KEY_OPTION}: {yaml_single_quoted(SECRET_KEY_PLACEHOLDER)}"

    def __init__(self, logger, filesystem_service, key_factory=generate_secret_key):
        self.logger = logger
        self.filesystem_service = filesystem_service
        self.key_factory = key_factory

    def has_placeholder(self, config_path: Path) -> bool:
        if not config_path.is_file():
            return False
        lines = config_path.read_text(encoding="utf-8").splitlines()
        return self.PLACEHOLDER_LINE in lines

    def ensure_secret_key(self, config_path: Path) -> bool:
        if not self.has_placeholder(config_path):
            self.logger.debug("%s already has a secret key.", config_path)
            return False

        secret_key = self.key_factory()
        new_line = f"{SECRET_KEY_OPTION}: {yaml_single_quoted(secret_key)}"

        lines = config_path.read_text(encoding="utf-8").splitlines(keepends=True)
        rewritten = []
        for line in lines:
            body = line.rstrip("\r\n")
            if body == self.PLACEHOLDER_LINE:
                line = new_line + line[len(body):]
            rewritten.append(line)
        content = "".join(rewritten)

        try:
            parsed = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise InstallerError(f"Secret key rewrite produced invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(parsed, dict) or parsed.get(SECRET_KEY_OPTION) != secret_key:
            raise InstallerError(f"Could not verify the generated secret key in {config_path}.")

        self.filesystem_service.atomic_write_text(str(config_path), content)
        self.logger.info("Secret key written to %s", config_path)
        return True
