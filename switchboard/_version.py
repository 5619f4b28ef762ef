"""Version information for Switchboard."""

__version__ = "0.3.0"


def get_version() -> str:
    """Return the installed Switchboard version string."""
    return __version__
