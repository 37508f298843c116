"""Key/value entries as produced by the external sort stage.

Every line of a sorted input file has the form ``key;value``. The key is
an OSM id and the value is usually a JSON document.
"""

import gzip
import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, NamedTuple

logger = logging.getLogger(__name__)

SEPARATOR = ';'


class MalformedEntryError(ValueError):
    """Raised for an input line that has no key/value separator."""


class Entry(NamedTuple):
    key: str
    value: str


def parse_entry(line: str) -> Entry:
    """Split one ``key;value`` line at the first separator."""
    idx = line.find(SEPARATOR)
    if idx < 0:
        raise MalformedEntryError(f"line does not contain '{SEPARATOR}': {line[:200]!r}")
    return Entry(line[:idx], line[idx + 1:])


def parse_entries(lines: Iterable[str]) -> Iterator[Entry]:
    for line in lines:
        yield parse_entry(line)


@contextmanager
def open_gzip_lines(path) -> Iterator[Iterator[str]]:
    """Open a gzip compressed UTF-8 file and yield an iterator over its lines.

    Line endings are stripped. The file is closed when the context exits,
    whether or not the iterator was exhausted.
    """
    logger.debug(f"Opening {path}")
    with gzip.open(path, 'rt', encoding='utf-8') as f:
        yield (line.rstrip('\r\n') for line in f)
