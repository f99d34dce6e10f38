"""Package data access utilities.

Provides functions to access the bundled shell profile.
"""

from __future__ import annotations

from importlib.resources import files


def get_default_profile() -> str:
    """Get the source of the bundled default profile.

    This uses importlib.resources to locate data/profile.sh within the
    installed package, so it works both in development and when installed
    via pip.

    Returns:
        Shell source of the profile
    """
    profile = files('jobshell') / 'data' / 'profile.sh'
    return profile.read_text()
