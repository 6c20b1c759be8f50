"""Verbatim region shielding for template substitution.

Posts regularly quote template syntax inside code samples. Those regions
must come out of the build exactly as written, while the same syntax in
prose is substituted. VerbatimShield swaps code regions for opaque
placeholders before the body goes through Jinja and puts them back
afterwards, before Markdown sees the text.

Shielded regions:
- fenced code blocks (``` and ~~~), also inside list items and blockquotes
- indented code blocks (Markdown only, outside lists and HTML blocks)
- inline code spans (Markdown only)
- HTML <pre> and <code> elements
"""

from __future__ import annotations

import re

_FENCE_OPEN_RE = re.compile(
    r"^(?P<prefix>[ \t]*(?:>[ \t]?)*[ \t]*)(?P<fence>`{3,}|~{3,})(?P<info>[^\n]*)$"
)

_LIST_ITEM_RE = re.compile(r"^ {0,3}(?:[-+*]|\d{1,9}[.)])(?:[ \t]|$)")

_RAW_HTML_OPEN_RE = re.compile(r"^ {0,3}<(pre|script|style|textarea)\b", re.IGNORECASE)

_HTML_BLOCK_RE = re.compile(r"^ {0,3}</?[A-Za-z!?]")

_INLINE_CODE_RE = re.compile(r"(?<!`)(?P<ticks>`+)(?!`)(?:(?!\n[ \t]*\n).)+?(?<!`)(?P=ticks)(?!`)", re.DOTALL)

_HTML_CODE_RE = re.compile(r"<(pre|code)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)

_PLACEHOLDER_RE = re.compile("\x02verbatim:(\\d+)\n*\x03")


class VerbatimShield:
    """Replaces code regions with placeholders and restores them later.

    A shield is good for one body: shield() the source, render it, then
    restore() the rendered text.
    """

    def __init__(self) -> None:
        self._chunks: list[str] = []

    def __len__(self) -> int:
        return len(self._chunks)

    def _stash(self, chunk: str) -> str:
        self._chunks.append(chunk)
        # Carry the chunk's newlines so template error line numbers stay right
        newlines = "\n" * chunk.count("\n")
        return f"\x02verbatim:{len(self._chunks) - 1}{newlines}\x03"

    def shield(self, text: str, markdown: bool = True) -> str:
        """Return text with every code region replaced by a placeholder.

        Args:
            text: Body source.
            markdown: Whether code blocks and inline code spans apply. HTML
                bodies only shield <pre> and <code> elements.
        """
        if markdown:
            text = self._shield_blocks(text)
        text = _HTML_CODE_RE.sub(lambda m: self._stash(m.group(0)), text)
        if markdown:
            text = _INLINE_CODE_RE.sub(lambda m: self._stash(m.group(0)), text)
        return text

    def restore(self, text: str) -> str:
        """Put every shielded region back in place of its placeholder."""
        if not self._chunks:
            return text
        # An HTML element may enclose an earlier placeholder
        while _PLACEHOLDER_RE.search(text):
            text = _PLACEHOLDER_RE.sub(lambda m: self._chunks[int(m.group(1))], text)
        return text

    def _shield_blocks(self, text: str) -> str:
        lines = text.splitlines(keepends=True)
        out: list[str] = []
        in_list = False
        in_html = False
        raw_tag = ""
        after_blank = True
        i = 0
        while i < len(lines):
            bare = lines[i].rstrip("\r\n")
            if raw_tag:
                if f"</{raw_tag}" in bare.lower():
                    raw_tag = ""
                out.append(lines[i])
                i += 1
                continue
            if not bare.strip():
                in_html = False
                after_blank = True
                out.append(lines[i])
                i += 1
                continue

            width = _indent_width(bare)
            fence = _open_fence(bare, in_list)
            if fence is not None:
                end = _fence_end(lines, i, *fence)
                out.append(self._stash("".join(lines[i:end])))
                i = end
                after_blank = False
                continue
            if width >= 4 and after_blank and not (in_list or in_html):
                end = _indented_end(lines, i)
                out.append(self._stash("".join(lines[i:end])))
                i = end
                after_blank = False
                continue

            if _LIST_ITEM_RE.match(bare):
                in_list = True
            elif width == 0 and after_blank:
                in_list = False
            raw = _RAW_HTML_OPEN_RE.match(bare)
            if raw and f"</{raw.group(1).lower()}" not in bare.lower():
                raw_tag = raw.group(1).lower()
            elif _HTML_BLOCK_RE.match(bare) and after_blank:
                in_html = True
            after_blank = False
            out.append(lines[i])
            i += 1
        return "".join(out)


def _indent_width(line: str) -> int:
    width = 0
    for char in line:
        if char == " ":
            width += 1
        elif char == "\t":
            width += 4 - width % 4
        else:
            break
    return width


def _open_fence(line: str, in_list: bool) -> tuple[str, int] | None:
    """Return (fence, indent) when line opens a fenced code block."""
    match = _FENCE_OPEN_RE.match(line)
    if not match:
        return None
    fence = match.group("fence")
    # A backtick fence's info string may not contain backticks
    if fence[0] == "`" and "`" in match.group("info"):
        return None
    prefix = match.group("prefix")
    indent = _indent_width(prefix.replace(">", ""))
    # Deeper fences belong to a list item or blockquote
    if indent > 3 and not (in_list or ">" in prefix):
        return None
    return fence, indent


def _fence_end(lines: list[str], start: int, fence: str, indent: int) -> int:
    for j in range(start + 1, len(lines)):
        if _closes_fence(lines[j].rstrip("\r\n"), fence, indent):
            return j + 1
    # An unclosed fence runs to the end of the document
    return len(lines)


def _closes_fence(line: str, fence: str, indent: int) -> bool:
    rest = line.lstrip(" \t>")
    width = _indent_width(line[: len(line) - len(rest)].replace(">", ""))
    stripped = rest.rstrip()
    return (
        width <= indent + 3
        and len(stripped) >= len(fence)
        and set(stripped) == {fence[0]}
    )


def _indented_end(lines: list[str], start: int) -> int:
    """Return the index after the last line of an indented code block."""
    last = start
    for j in range(start + 1, len(lines)):
        bare = lines[j].rstrip("\r\n")
        if not bare.strip():
            continue
        if _indent_width(bare) < 4:
            break
        last = j
    return last + 1
