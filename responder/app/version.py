"""Version information for the responder."""

VERSION = "0.1.0"

VERSION_MAJOR = 0
VERSION_MINOR = 1
VERSION_PATCH = 0


def version_info() -> str:
    """Return a human-readable version string."""
    return f"ntp-responder v{VERSION}"
