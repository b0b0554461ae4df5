"""
Escaping of remote text for safe inclusion in Markdown documents.

Issue and comment bodies are user-controlled. Depending on the configured
escape mode they are passed through, defused for template plugins, or
stripped of characters that could break the frontmatter or inject markup.
"""

import re

from .config import EscapeMode

_STRICT_CHARS = re.compile(r"[<>{}$`\\]")
_VERY_STRICT_CHARS = re.compile(r"[<>{}$`\\\"'|&*~^]")


def escape_body(text: str, mode: EscapeMode = EscapeMode.NORMAL) -> str:
    """
    Escape text according to the escape mode.

    Modes:
        disabled: No escaping applied
        normal: Defuse template syntax (``<% %>``, ``{{ }}``, backticks)
        strict: Remove HTML/JS/template characters, keep Unicode
        veryStrict: Like strict, also removing quotes and Markdown emphasis

    Every mode except ``disabled`` rewrites ``---`` so that a body line can
    never be mistaken for a frontmatter delimiter.

    Args:
        text: Raw text to escape
        mode: Escape mode

    Returns:
        Escaped text
    """
    if not text:
        return ""

    if mode == EscapeMode.DISABLED:
        return text

    if mode == EscapeMode.STRICT:
        return _STRICT_CHARS.sub("", text).replace("---", "- - -")

    if mode == EscapeMode.VERY_STRICT:
        return _VERY_STRICT_CHARS.sub("", text).replace("---", "- - -")

    return (
        text.replace("<%", "'<<'")
        .replace("%>", "'>>'")
        .replace("`", '"')
        .replace("---", "- - -")
        .replace("{{", "((")
        .replace("}}", "))")
    )


def escape_yaml_string(text: str) -> str:
    """
    Escape text for use inside a double-quoted YAML scalar.

    Args:
        text: Raw text

    Returns:
        Text with backslashes and double quotes escaped and line breaks
        collapsed to spaces
    """
    if not text:
        return ""
    text = text.replace("\\", "\\\\").replace('"', '\\"')
    return re.sub(r"[\r\n\t]+", " ", text)
