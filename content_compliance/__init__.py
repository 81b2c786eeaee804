"""
content_compliance package bootstrap.

Compliance evaluation and approval workflow for regulated healthcare
marketing content (AHPRA advertising guidelines, TGA advertising code).
"""

from importlib import metadata


def get_version() -> str:
    """Return the package version if installed, else '0.0.0'."""
    try:
        return metadata.version("content-compliance")
    except metadata.PackageNotFoundError:  # pragma: no cover - best effort only
        return "0.0.0"


__all__ = ["get_version"]
