"""Filesystem helpers for the Sentry installer."""

import logging
import os
import shutil
import tempfile
from pathlib import Path

from sentryinstaller.errors import InstallerError


class FileSystemService:
    """Encapsulates file side effects on the installation directory."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def atomic_write_text(self, path: str, content: str, encoding: str = "utf-8"):
        """Write ``content`` to a temp file next to ``path`` and rename it into place."""
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            prefix=f".{os.path.basename(path)}-",
            suffix=".tmp",
            dir=directory,
        )
        try:
            with os.fdopen(fd, "w", encoding=encoding, newline="") as file_obj:
                file_obj.write(content)
            if os.path.exists(path):
                shutil.copymode(path, temp_path)
            os.replace(temp_path, path)
        except OSError as exc:
            raise InstallerError(f"Could not write '{path}': {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass
        self.logger.debug("Wrote %s", path)

    def copy_if_absent(self, source: Path, target: Path) -> bool:
        if target.exists():
            return False
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copyfile(source, target)
        except OSError as exc:
            raise InstallerError(f"Could not copy {source} to {target}: {exc}") from exc
        return True
