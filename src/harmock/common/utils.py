"""
HarMock Common Utilities

Archive loading and small helpers shared across HarMock modules.
"""

import json
from pathlib import Path
from typing import List, Any, NamedTuple


class ArchiveFormatError(ValueError):
    """Raised when a recorded-session archive is not a usable HAR document."""


class RawEntry(NamedTuple):
    """One recorded request/response pair, as found in the archive."""

    index: int
    request: Any
    response: Any


def parse_archive(document: Any, source: str = "<archive>") -> List[RawEntry]:
    """
    Extract request/response pairs from a parsed HAR document.

    Args:
        document: Parsed JSON document (expected shape {"log": {"entries": [...]}})
        source: Name used in error messages

    Returns:
        RawEntry list in archive order

    Raises:
        ArchiveFormatError: If log.entries is missing or not a list
    """
    if not isinstance(document, dict):
        raise ArchiveFormatError(
            f"Invalid HAR structure in {source}: "
            f"expected a JSON object, got {type(document).__name__}"
        )

    log = document.get('log')
    if not isinstance(log, dict) or 'entries' not in log:
        raise ArchiveFormatError(f"Invalid HAR structure in {source}: missing log.entries")

    entries = log['entries']
    if not isinstance(entries, list):
        raise ArchiveFormatError(
            f"Invalid HAR structure in {source}: "
            f"log.entries must be a list, got {type(entries).__name__}"
        )

    raw_entries = []
    for index, entry in enumerate(entries):
        if isinstance(entry, dict):
            raw_entries.append(RawEntry(index, entry.get('request'), entry.get('response')))
        else:
            raw_entries.append(RawEntry(index, None, None))

    return raw_entries


class ArchiveLoader:
    """
    Loader for HAR (HTTP Archive) files.

    This is the single entry point for reading archives from disk.
    The file is read once; the returned entries keep their archive
    ordinals so diagnostics can point back at the original recording.

    Example:
        loader = ArchiveLoader("session.har")
        entries = loader.load()

        for entry in entries:
            print(entry.index, entry.request['url'])
    """

    def __init__(self, file_path: str):
        """
        Initialize archive loader.

        Args:
            file_path: Path to HAR file
        """
        self.file_path = Path(file_path)

    def load(self) -> List[RawEntry]:
        """
        Load request/response pairs from the HAR file.

        Returns:
            RawEntry list in archive order

        Raises:
            FileNotFoundError: If archive file doesn't exist
            ArchiveFormatError: If the file is not JSON or lacks log.entries
        """
        if not self.file_path.exists():
            raise FileNotFoundError(f"HAR file not found: {self.file_path}")

        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                document = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ArchiveFormatError(f"Failed to parse HAR file {self.file_path}: {e}") from e

        return parse_archive(document, source=str(self.file_path))

    @staticmethod
    def load_from_file(file_path: str) -> List[RawEntry]:
        """
        Convenience method to load an archive in one call.

        Example:
            entries = ArchiveLoader.load_from_file("session.har")
        """
        return ArchiveLoader(file_path).load()


def iter_headers(headers: Any) -> List[tuple]:
    """Normalize a HAR header list into (name, value) pairs, dropping malformed items."""
    if not isinstance(headers, list):
        return []

    pairs = []
    for header in headers:
        if isinstance(header, dict) and 'name' in header:
            value = header.get('value')
            pairs.append((str(header['name']), '' if value is None else str(value)))
    return pairs
