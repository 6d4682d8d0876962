"""Creates configuration files from their ``.example`` counterparts."""

from pathlib import Path
from typing import Iterable, List

from sentryinstaller.errors import InstallerError
from sentryinstaller.errors_catalog import actionable_error


def example_path_for(target: Path) -> Path:
    """``sentry/sentry.conf.py`` -> ``sentry/sentry.conf.example.py``."""
    if target.suffix:
        return target.with_name(f"{target.stem}.example{target.suffix}")
    return target.with_name(f"{target.name}.example")


class TemplateService:
    """Materializes config files once and never overwrites them."""

    def __init__(self, logger, filesystem_service):
        self.logger = logger
        self.filesystem_service = filesystem_service

    def ensure_file_from_example(self, target: Path) -> bool:
        if target.exists():
            self.logger.info("%s already exists, skipped creation.", target)
            return False

        template = example_path_for(target)
        if not template.is_file():
            raise InstallerError(
                actionable_error("template_missing", target=str(target), template=str(template))
            )

        self.logger.info("Creating %s...", target)
        return self.filesystem_service.copy_if_absent(template, target)

    def ensure_files(self, project_dir: Path, relative_paths: Iterable[str]) -> List[str]:
        created = []
        for relative_path in relative_paths:
            if self.ensure_file_from_example(project_dir / relative_path):
                created.append(relative_path)
        return created
