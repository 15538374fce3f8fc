"""
HarMock Common Utilities

Shared utilities and helpers used across HarMock modules.
"""

from .utils import (
    ArchiveFormatError,
    ArchiveLoader,
    RawEntry,
    iter_headers,
    parse_archive,
)

__all__ = [
    'ArchiveFormatError',
    'ArchiveLoader',
    'RawEntry',
    'iter_headers',
    'parse_archive',
]
