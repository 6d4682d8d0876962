"""Environment merging: built-in defaults < ``.env`` file < process environment."""

import os
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

from sentryinstaller.constants import DEFAULT_ENVIRONMENT


def load_environment(
    env_file: Optional[str],
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Return the environment every installer command runs with."""
    merged: Dict[str, str] = dict(DEFAULT_ENVIRONMENT)

    if env_file and os.path.isfile(env_file):
        for key, value in dotenv_values(env_file).items():
            if value is not None:
                merged[key] = value

    merged.update(os.environ if environ is None else environ)
    return merged
