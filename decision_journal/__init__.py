"""Decision journal and trading performance analytics."""

from importlib import metadata

try:
    __version__ = metadata.version('decision_journal')
except metadata.PackageNotFoundError:  # pragma: no cover
    __version__ = '0.1.0-dev'

__all__ = ['__version__']
