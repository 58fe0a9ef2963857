"""Interactive disk partition, format and mount manager."""

from disk_manager.__version__ import __version__

__all__ = ["__version__"]
