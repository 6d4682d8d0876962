"""Domain errors for the Sentry installer."""


class InstallerError(RuntimeError):
    """Raised when the installation cannot continue safely."""


class PreflightError(InstallerError):
    """Raised when the host does not meet the minimum requirements."""


class InstallInterrupted(InstallerError):
    """Raised from the signal handler when the run is asked to stop."""

    def __init__(self, signal_name: str):
        super().__init__(f"Received {signal_name}")
        self.signal_name = signal_name
