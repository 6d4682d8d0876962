"""
sentryinstaller - Installer and upgrader for self-hosted Sentry on Docker Compose
"""

__version__ = "0.1.0"

from .core import InstallerError, SentryInstaller

__all__ = ["SentryInstaller", "InstallerError"]
