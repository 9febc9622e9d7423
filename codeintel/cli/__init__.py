"""
codeintel CLI.

Usage:
    codeintel init-db
    codeintel enqueue <repository> <commit> <bundle> [--root path/]
    codeintel process [--once]
    codeintel purge [--max-bytes N]
    codeintel config
"""

from .. import __version__

__cli_name__ = "codeintel"

__all__ = ["__version__", "__cli_name__"]
