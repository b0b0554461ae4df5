"""
Structured header (frontmatter) handling for Markdown documents.

A document starts with a YAML block between two ``---`` lines, followed by
the Markdown body. Only the parts the sync engine needs are implemented:
splitting, parsing, and rewriting a single top-level key in place.
"""

import logging
import re
from collections.abc import Iterable
from typing import Any

import yaml

from .models import LocalDocument

logger = logging.getLogger(__name__)

FRONTMATTER_DELIMITER = "---"


def frontmatter_end_line(lines: list[str]) -> int:
    """
    Index of the first line after the frontmatter block.

    Returns 0 when the lines do not start with a complete frontmatter block.
    """
    if not lines or lines[0].strip() != FRONTMATTER_DELIMITER:
        return 0
    for index in range(1, len(lines)):
        if lines[index].strip() == FRONTMATTER_DELIMITER:
            return index + 1
    return 0


def split_frontmatter(text: str) -> tuple[str | None, str]:
    """
    Split a document into frontmatter text and body.

    Args:
        text: Full document text

    Returns:
        Tuple of (header text without delimiters or None, body)
    """
    lines = text.split("\n")
    end = frontmatter_end_line(lines)
    if end == 0:
        return None, text
    header = "\n".join(lines[1 : end - 1])
    body = "\n".join(lines[end:])
    return header, body


def parse_header(header: str | None, source: str = "<string>") -> dict[str, Any]:
    """
    Parse frontmatter text into a dictionary.

    Invalid YAML or a header that is not a mapping yields an empty dict and
    a warning, so the caller falls back to filename-based recovery.
    """
    if not header or not header.strip():
        return {}
    try:
        data = yaml.safe_load(header)
    except yaml.YAMLError as e:
        logger.warning(f"Invalid frontmatter in {source}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Frontmatter in {source} is not a key/value block")
        return {}
    return {str(key): value for key, value in data.items()}


def parse_document(path: str, text: str) -> LocalDocument:
    """Parse document text into a LocalDocument."""
    header, body = split_frontmatter(text)
    return LocalDocument(path=path, header=parse_header(header, path), body=body)


def read_header_lines(lines: Iterable[str]) -> str | None:
    """
    Collect the frontmatter text from an iterable of lines.

    Stops reading at the closing delimiter, so only the head of a file is
    consumed.
    """
    iterator = iter(lines)
    first = next(iterator, None)
    if first is None or first.strip() != FRONTMATTER_DELIMITER:
        return None
    collected: list[str] = []
    for line in iterator:
        if line.strip() == FRONTMATTER_DELIMITER:
            return "".join(collected)
        collected.append(line)
    return None


def replace_header_value(text: str, key: str, value: str) -> str:
    """
    Rewrite the value of a top-level frontmatter key.

    Only the first matching line inside the frontmatter is changed; a
    document without the key is returned unchanged.
    """
    lines = text.split("\n")
    end = frontmatter_end_line(lines)
    if end == 0:
        return text
    pattern = re.compile(rf"^{re.escape(key)}\s*:")
    for index in range(1, end - 1):
        if pattern.match(lines[index]):
            lines[index] = f"{key}: {value}"
            return "\n".join(lines)
    return text
