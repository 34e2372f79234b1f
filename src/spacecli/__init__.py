"""Space CLI - isolated multi-repository workspaces for a ticket."""

__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__
