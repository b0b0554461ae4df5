"""
Persist blocks: user content that survives document regeneration.

A persist block is a named span delimited by
``{% persist "name" %}`` ... ``{% endpersist %}``. Before an existing
document is overwritten its blocks are extracted, and after the new text is
rendered they are merged back in:

1. A block whose marker is present in the new text replaces that marker's
   (usually empty) content exactly.
2. A block whose marker disappeared from the new text is reinserted next to
   the line it used to follow (or precede), and failing that at the same
   relative position in the document, never inside the frontmatter.

Positional reinsertion is a heuristic. It assumes persisted regions are
short and sit near stable anchor text.
"""

import logging
import re

from pydantic import BaseModel, ConfigDict

from .frontmatter import FRONTMATTER_DELIMITER, frontmatter_end_line

logger = logging.getLogger(__name__)

PERSIST_PATTERN = re.compile(
    r"\{%\s*persist\s+[\"']([^\"']+)[\"']\s*%\}(.*?)\{%\s*endpersist\s*%\}",
    re.DOTALL,
)
PERSIST_OPEN_PATTERN = re.compile(r"\{%\s*persist\s+[\"'][^\"']+[\"']\s*%\}")

# Number of neighbouring lines considered as anchors
CONTEXT_LINES = 2


class PersistBlock(BaseModel):
    """A persist block found in a document."""

    model_config = ConfigDict(frozen=True)

    name: str
    content: str
    position: int  # Character offset of the opening marker
    full_match: str

    def render(self) -> str:
        return format_persist_block(self.name, self.content)


def format_persist_block(name: str, content: str) -> str:
    """Format a persist block with canonical markers."""
    return f'{{% persist "{name}" %}}{content}{{% endpersist %}}'


def extract_persist_blocks(text: str) -> dict[str, PersistBlock]:
    """
    Extract all persist blocks from a document.

    Blocks are matched non-greedily and one level deep. A block that
    contains another opening marker is kept verbatim (the inner marker
    becomes part of its content). When a name occurs twice the later block
    wins.

    Args:
        text: Document text

    Returns:
        Mapping of block name -> PersistBlock, in document order
    """
    blocks: dict[str, PersistBlock] = {}

    for match in PERSIST_PATTERN.finditer(text):
        name, content = match.group(1), match.group(2)
        if PERSIST_OPEN_PATTERN.search(content):
            logger.warning(f"Nested persist block inside '{name}' is kept as plain text")
        if name in blocks:
            logger.warning(f"Duplicate persist block '{name}', keeping the last one")
        blocks[name] = PersistBlock(
            name=name,
            content=content,
            position=match.start(),
            full_match=match.group(0),
        )

    return blocks


def merge_persist_blocks(
    new_text: str,
    old_text: str,
    blocks: dict[str, PersistBlock],
) -> str:
    """
    Merge persist blocks from an old document into newly rendered text.

    Args:
        new_text: Freshly rendered document (may contain empty markers)
        old_text: Document being overwritten
        blocks: Blocks extracted from ``old_text``

    Returns:
        New text with every block present exactly once
    """
    if not blocks:
        return new_text

    placed: set[str] = set()

    def _restore(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in placed:
            return match.group(0)
        placed.add(name)
        block = blocks.get(name)
        if block is None:
            return match.group(0)
        return block.render()

    result = PERSIST_PATTERN.sub(_restore, new_text)

    missing = [block for name, block in blocks.items() if name not in placed]
    if missing:
        result = _insert_by_position(old_text, result, missing)

    return result


def _is_anchor_candidate(line: str) -> bool:
    stripped = line.strip()
    if not stripped or stripped == FRONTMATTER_DELIMITER:
        return False
    return not PERSIST_OPEN_PATTERN.search(line)


def _context_before(old_lines: list[str], start_line: int) -> list[str]:
    window = old_lines[max(0, start_line - CONTEXT_LINES) : start_line]
    return [line.strip() for line in window if _is_anchor_candidate(line)]


def _context_after(old_lines: list[str], end_line: int) -> list[str]:
    window = old_lines[end_line + 1 : end_line + 1 + CONTEXT_LINES]
    return [line.strip() for line in window if _is_anchor_candidate(line)]


def _find_line(lines: list[str], wanted: str) -> int | None:
    for index, line in enumerate(lines):
        if line.strip() == wanted:
            return index
    return None


def _insert_by_position(
    old_text: str,
    new_text: str,
    blocks: list[PersistBlock],
) -> str:
    """Reinsert blocks whose markers no longer appear in the new text."""
    old_lines = old_text.split("\n")
    new_lines = new_text.split("\n")

    for block in blocks:
        start_line = old_text.count("\n", 0, block.position)
        end_line = start_line + block.full_match.count("\n")

        insert_at: int | None = None

        before = _context_before(old_lines, start_line)
        if before:
            found = _find_line(new_lines, before[-1])
            if found is not None:
                insert_at = found + 1

        if insert_at is None:
            after = _context_after(old_lines, end_line)
            if after:
                found = _find_line(new_lines, after[0])
                if found is not None:
                    insert_at = found

        if insert_at is None:
            relative = start_line / len(old_lines) if old_lines else 0.0
            insert_at = int(len(new_lines) * relative)
            logger.debug(
                f"No anchor for persist block '{block.name}', inserting at line {insert_at}"
            )
        else:
            logger.debug(f"Anchored persist block '{block.name}' at line {insert_at}")

        # Never inside the frontmatter, even when a header line was the anchor
        insert_at = max(insert_at, frontmatter_end_line(new_lines))
        new_lines.insert(insert_at, block.render())

    return "\n".join(new_lines)
