"""
Feed Reader - Record Parser

Turns a raw feed line into an ordered field list, then into a name -> value
mapping.

Field naming precedence, highest first:
1. the in-file header captured at the feed's header line, if it has a name
   for the position
2. the feed's configured header list, if it has a name for the position
3. a synthesized FIELD_<index> name

Splitting is a regular-expression split in which trailing empty fields are
dropped, so "a,b,," on "," yields ["a", "b"].
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Mapping, Sequence

logger = logging.getLogger(__name__)

SYNTHETIC_FIELD_PREFIX = "FIELD_"


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error as e:
        logger.warning("Ignoring malformed pattern %r: %s", pattern, e)
        return None


def split_fields(text: str, delimiter: str) -> list[str]:
    """Split text on a delimiter regex, dropping trailing empty fields."""
    compiled = _compile(delimiter)
    if compiled is None:
        raise ValueError(f"invalid delimiter pattern {delimiter!r}")
    fields = compiled.split(text)
    if len(fields) == 1:
        return fields
    while fields and fields[-1] == "":
        fields.pop()
    return fields


def is_valid(line: str | None, skip_pattern: str | None = None) -> bool:
    """
    Check whether a line should be parsed.

    Blank lines are rejected, as are lines that fully match the skip pattern.
    A malformed skip pattern never matches.
    """
    if line is None or not line.strip():
        return False

    if skip_pattern is not None:
        compiled = _compile(skip_pattern)
        if compiled is not None and compiled.fullmatch(line):
            return False
    return True


def parse_line(line: str, record_delimiter: str) -> list[str]:
    """Split a record line into its ordered fields."""
    return split_fields(line, record_delimiter)


def is_header_line(line_number: int, header_line: int | None) -> bool:
    """True when the 1-based valid-line number is the feed's in-file header line."""
    return header_line is not None and header_line == line_number


def field_name(
    index: int,
    in_file_header: Sequence[str] | None,
    configured_headers: Sequence[str] | None,
) -> str:
    if in_file_header and len(in_file_header) > index:
        return in_file_header[index]
    if configured_headers and len(configured_headers) > index:
        return configured_headers[index]
    return f"{SYNTHETIC_FIELD_PREFIX}{index}"


def to_field_mapping(
    fields: Sequence[str],
    in_file_header: Sequence[str] | None = None,
    configured_headers: Sequence[str] | None = None,
) -> dict[str, str]:
    """Name each field by position using the three-tier header precedence."""
    return {
        field_name(i, in_file_header, configured_headers): value
        for i, value in enumerate(fields)
    }


def with_context(record: Mapping[str, str], context: Mapping[str, str]) -> dict[str, str]:
    """Merge file/feed context fields into a record mapping (context wins)."""
    merged = dict(record)
    merged.update(context)
    return merged
