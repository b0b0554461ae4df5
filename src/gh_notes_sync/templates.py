"""
Template engine for document filenames and bodies.

Templates are plain text with two kinds of placeholders:

* ``{name}`` - replaced by the string form of a variable
* ``{name:content}`` - conditional block, ``content`` is kept only when the
  variable ``name`` has a meaningful value

Conditional blocks are resolved first, then scalar placeholders are
substituted in a single pass so that substituted text (issue bodies,
comments) is never interpreted as template syntax. The engine can also run
a filename template backwards to recover the item number from a filename.
"""

import logging
import re
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime

from .config import EffectivePolicy, EscapeMode
from .escaping import escape_body, escape_yaml_string
from .models import Comment, ItemKind, PullRequest, RemoteItemBase

logger = logging.getLogger(__name__)

# Values that make a conditional block disappear
FALSY_VALUES = frozenset({"", "0", "false", "unknown", "unassigned"})

MAX_FILENAME_LENGTH = 255
NO_DESCRIPTION = "No description found"

TOKEN_PATTERN = re.compile(r"\{(\w+)\}")
CONDITIONAL_START = re.compile(r"\{(\w+):")
ILLEGAL_FILENAME_CHARS = re.compile(r'[<>:"|?*\\/]')

# Filename template tokens: conditional blocks (with embedded scalars) or scalars
_FILENAME_TOKEN = re.compile(r"\{\w+:[^{}\n]*(?:\{\w+\}[^{}\n]*)*\}|\{\w+\}")

DEFAULT_ISSUE_TEMPLATE = """---
title: "{title_yaml}"
number: {number}
status: "{status}"
type: "{type}"
created: "{created}"
updated: "{updated_iso}"
url: "{url}"
opened_by: "{author}"
assignees: {assignees_yaml}
labels: {labels_yaml}
updateMode: "{updateMode}"
allowDelete: {allowDelete}
---

# {title_escaped}
{body}
{comments}
"""

DEFAULT_PULL_REQUEST_TEMPLATE = """---
title: "{title_yaml}"
number: {number}
status: "{status}"
type: "{type}"
created: "{created}"
updated: "{updated_iso}"
url: "{url}"
opened_by: "{author}"
assignees: {assignees_yaml}
requested_reviewers: {reviewers_yaml}
labels: {labels_yaml}
base: "{baseBranch}"
head: "{headBranch}"
updateMode: "{updateMode}"
allowDelete: {allowDelete}
---

# {title_escaped}
{body}
{comments}
"""

APPEND_FRAGMENT_TEMPLATE = """---
### New status: "{status}"

# {title_escaped}
{body}
{comments}
"""


def default_content_template(kind: ItemKind) -> str:
    """Built-in document layout for an item kind."""
    if kind == ItemKind.PULL_REQUEST:
        return DEFAULT_PULL_REQUEST_TEMPLATE
    return DEFAULT_ISSUE_TEMPLATE


def is_truthy(value: str | None) -> bool:
    """Check whether a variable value keeps a conditional block."""
    return value is not None and value not in FALSY_VALUES


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def format_date(dt: datetime | None, date_format: str = "", with_time: bool = False) -> str:
    """
    Format a date for display.

    Args:
        dt: Datetime to format (None renders as an empty string)
        date_format: strftime pattern; empty uses the locale default
        with_time: Include the time in the locale default rendering

    Returns:
        Formatted date in local time
    """
    if dt is None:
        return ""
    local = _as_utc(dt).astimezone()
    if date_format:
        return local.strftime(date_format)
    return local.strftime("%x %X" if with_time else "%x")


def format_iso(dt: datetime | None) -> str:
    """Format a date as ISO 8601 in UTC."""
    if dt is None:
        return ""
    return _as_utc(dt).isoformat()


def sanitize_filename(filename: str) -> str:
    """
    Make a rendered filename safe for common filesystems.

    Replaces ``< > : " | ? * \\ /`` with ``-``, turns line breaks and tabs
    into spaces, collapses whitespace, trims leading/trailing dots and
    whitespace and caps the length at 255 characters.
    """
    result = ILLEGAL_FILENAME_CHARS.sub("-", filename)
    result = result.replace("\r", "").replace("\n", " ").replace("\t", " ")
    result = re.sub(r"\s+", " ", result).strip()
    result = result.strip(".").strip()
    return result[:MAX_FILENAME_LENGTH]


def format_comments(
    comments: Sequence[Comment],
    date_format: str = "",
    escape_mode: EscapeMode = EscapeMode.NORMAL,
) -> str:
    """
    Format a comment thread as a Markdown section.

    Review comments name the file and line they were made on.

    Args:
        comments: Issue comments and review comments
        date_format: strftime pattern for comment timestamps
        escape_mode: Escape mode for comment bodies

    Returns:
        ``## Comments`` section, or an empty string without comments
    """
    if not comments:
        return ""

    parts = ["\n## Comments\n\n"]
    for comment in sorted(comments, key=lambda c: _as_utc(c.created_at)):
        created = format_date(comment.created_at, date_format, with_time=True)
        username = comment.author.login or "Unknown User"
        if comment.is_review_comment:
            line = comment.line if comment.line is not None else "N/A"
            path = comment.path or "unknown"
            parts.append(f"### {username} commented on line {line} of file `{path}` ({created}):\n\n")
        else:
            parts.append(f"### {username} commented ({created}):\n\n")
        parts.append(f"{escape_body(comment.body or 'No content', escape_mode)}\n\n")

    return "".join(parts)


def _collection_variables(name: str, values: Sequence[str], empty: str = "") -> dict[str, str]:
    """Four renderings of a list variable: comma, bullets, hashtags, quoted array."""
    return {
        name: ", ".join(values) if values else empty,
        f"{name}_list": "\n".join(f"- {v}" for v in values),
        f"{name}_hash": " ".join("#" + re.sub(r"\s", "_", v) for v in values),
        f"{name}_yaml": "[" + ", ".join(f'"{escape_yaml_string(v)}"' for v in values) + "]",
    }


def _find_block_end(text: str, start: int) -> int | None:
    """Index of the brace closing a conditional block opened before ``start``."""
    depth = 1
    for pos in range(start, len(text)):
        char = text[pos]
        if char == "\n":
            return None
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return pos
    return None


def resolve_conditionals(template: str, variables: Mapping[str, str]) -> str:
    """
    Resolve ``{name:content}`` blocks.

    A block spans a single line; its content may hold scalar placeholders.
    Blocks containing another conditional block and blocks that are never
    closed are left in the output literally.

    Args:
        template: Template text
        variables: Template variables

    Returns:
        Template text with conditional blocks resolved
    """
    out: list[str] = []
    pos = 0
    while pos < len(template):
        match = CONDITIONAL_START.search(template, pos)
        if match is None:
            out.append(template[pos:])
            break

        out.append(template[pos : match.start()])
        end = _find_block_end(template, match.end())
        if end is None:
            # Not a block; keep the brace and scan on from the next character
            out.append("{")
            pos = match.start() + 1
            continue

        name = match.group(1)
        content = template[match.end() : end]
        if CONDITIONAL_START.search(content):
            logger.debug(f"Nested conditional block '{name}' left as-is")
            out.append(template[match.start() : end + 1])
        elif is_truthy(variables.get(name)):
            out.append(content)
        pos = end + 1

    return "".join(out)


def substitute(template: str, variables: Mapping[str, str]) -> str:
    """Replace ``{name}`` placeholders; unknown names are left untouched."""
    return TOKEN_PATTERN.sub(lambda m: variables.get(m.group(1), m.group(0)), template)


def render_template(template: str, variables: Mapping[str, str]) -> str:
    """Render a template: conditional blocks first, then scalar placeholders."""
    return substitute(resolve_conditionals(template, variables), variables)


def _filename_pattern(template: str) -> re.Pattern[str]:
    parts: list[str] = []
    have_number = False
    pos = 0
    for match in _FILENAME_TOKEN.finditer(template):
        parts.append(_literal_pattern(template[pos : match.start()]))
        token = match.group(0)
        if token == "{number}":
            parts.append(r"(?P=number)" if have_number else r"(?P<number>\d+)")
            have_number = True
        else:
            parts.append(".*?")
        pos = match.end()
    parts.append(_literal_pattern(template[pos:]))
    return re.compile("".join(parts))


def _literal_pattern(literal: str) -> str:
    # Literal template text went through sanitize_filename as well
    cleaned = ILLEGAL_FILENAME_CHARS.sub("-", literal)
    cleaned = re.sub(r"\s+", " ", cleaned)
    return re.escape(cleaned)


def extract_number_from_filename(filename: str, template: str) -> str | None:
    """
    Recover the item number from a filename rendered from ``template``.

    Every placeholder except ``{number}`` matches anything (non-greedy);
    ``{number}`` matches digits. The whole filename must match.

    Args:
        filename: Document filename, with or without ``.md``
        template: Filename template that produced it

    Returns:
        The number as a string, or None when the filename does not match
    """
    base = filename[:-3] if filename.endswith(".md") else filename
    match = _filename_pattern(template).fullmatch(base)
    if match is None or "number" not in match.groupdict():
        return None
    return match.group("number")


class TemplateRenderer:
    """
    Renders remote items into filenames, documents and append fragments.

    Holds the presentation settings (date format and escape mode) that
    apply to every repository in a sync pass.
    """

    def __init__(
        self,
        date_format: str = "",
        escape_mode: EscapeMode = EscapeMode.STRICT,
    ) -> None:
        """
        Initialize the renderer.

        Args:
            date_format: strftime pattern for dates; empty uses the locale default
            escape_mode: Escape mode for bodies and comments
        """
        self.date_format = date_format
        self.escape_mode = escape_mode

    def build_data(
        self,
        item: RemoteItemBase,
        policy: EffectivePolicy,
        comments: Sequence[Comment] = (),
    ) -> dict[str, str]:
        """
        Build the flat variable mapping for an item.

        Args:
            item: Issue or pull request
            policy: Effective policy of the item's repository and kind
            comments: Comment thread (already fetched)

        Returns:
            Mapping of variable name -> rendered string
        """
        assignees = item.assignee_logins
        data: dict[str, str] = {
            "title": item.title or "Untitled",
            "title_yaml": escape_yaml_string(item.title or "Untitled"),
            "title_escaped": escape_body(item.title or "Untitled", self.escape_mode),
            "number": str(item.number),
            "status": item.state.value,
            "state": item.state.value,
            "author": item.author.login or "unknown",
            "assignee": assignees[0] if assignees else "unassigned",
            "repository": policy.repository,
            "owner": policy.owner,
            "repoName": policy.repo_name,
            "type": item.item_kind.value,
            "body": (
                escape_body(item.body, self.escape_mode) if item.body else NO_DESCRIPTION
            ),
            "url": item.url,
            "milestone": item.milestone.title if item.milestone else "",
            "commentsCount": str(item.comments_count),
            "isLocked": "true" if item.locked else "false",
            "lockReason": item.lock_reason or "",
            "created": format_date(item.created_at, self.date_format),
            "updated": format_date(item.updated_at, self.date_format),
            "closed": format_date(item.closed_at, self.date_format),
            "created_iso": format_iso(item.created_at),
            "updated_iso": format_iso(item.updated_at),
            "closed_iso": format_iso(item.closed_at),
            "comments": format_comments(comments, self.date_format, self.escape_mode),
            "updateMode": policy.update_mode.value,
            "allowDelete": "true" if policy.allow_delete else "false",
        }
        data.update(_collection_variables("assignees", assignees, empty="unassigned"))
        data.update(_collection_variables("labels", item.label_names))

        if isinstance(item, PullRequest):
            data.update(
                {
                    "mergedAt": format_date(item.merged_at, self.date_format),
                    "mergeable": (
                        "unknown" if item.mergeable is None else str(item.mergeable).lower()
                    ),
                    "merged": "true" if item.merged else "false",
                    "baseBranch": item.base_branch or "",
                    "headBranch": item.head_branch or "",
                }
            )
            data.update(_collection_variables("reviewers", item.reviewer_logins))

        return data

    def render_filename(self, template: str, data: Mapping[str, str]) -> str:
        """
        Render a filename template into a sanitized ``.md`` filename.

        Falls back to ``<type> - <number>`` when the template renders to
        nothing usable.
        """
        name = sanitize_filename(render_template(template, data))
        if not name:
            logger.warning(
                f"Filename template '{template}' rendered empty for #{data.get('number')}"
            )
            name = sanitize_filename(f"{data.get('type', 'item')} - {data.get('number', '')}")
        return f"{name}.md"

    def render_content(self, template: str, data: Mapping[str, str]) -> str:
        """Render a document body template."""
        return render_template(template, data)

    def render_append_fragment(self, data: Mapping[str, str]) -> str:
        """Render the status-change fragment appended in append mode."""
        return render_template(APPEND_FRAGMENT_TEMPLATE, data)
