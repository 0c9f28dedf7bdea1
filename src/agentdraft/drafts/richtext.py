"""Markdown to structured rich-text conversion.

Agents write Markdown; rich-text module fields store a Lexical-style JSON
document. The conversion walks the markdown-it syntax tree and emits one node per
block, folding inline emphasis into text-node format bit flags.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from markdown_it import MarkdownIt
from markdown_it.tree import SyntaxTreeNode

__all__ = [
    "markdown_to_richtext",
    "looks_structured",
    "FORMAT_BOLD",
    "FORMAT_ITALIC",
    "FORMAT_STRIKETHROUGH",
    "FORMAT_CODE",
]

LOGGER = logging.getLogger(__name__)

FORMAT_BOLD = 1
FORMAT_ITALIC = 2
FORMAT_STRIKETHROUGH = 4
FORMAT_CODE = 16

_FORMAT_BY_NODE = {
    "strong": FORMAT_BOLD,
    "em": FORMAT_ITALIC,
    "s": FORMAT_STRIKETHROUGH,
}

_MARKDOWN_PARSER: Optional[MarkdownIt] = None


def _build_parser() -> MarkdownIt:
    global _MARKDOWN_PARSER
    if _MARKDOWN_PARSER is None:
        parser = MarkdownIt("commonmark", {"html": False, "typographer": False})
        parser.enable("table")
        parser.enable("strikethrough")
        _MARKDOWN_PARSER = parser
    return _MARKDOWN_PARSER


def looks_structured(value: str) -> bool:
    """True when ``value`` already looks like serialized JSON content."""
    return value.lstrip().startswith(("{", "["))


def markdown_to_richtext(markdown: str, *, skip_first_h1: bool = True) -> dict[str, Any]:
    """Convert Markdown to a rich-text document.

    Args:
        markdown: Source text; plain text yields paragraphs.
        skip_first_h1: Drop the first level-one heading, which duplicates the
            document title on rendered pages.

    Returns:
        ``{"root": {"type": "root", ..., "children": [...]}}``
    """
    tokens = _build_parser().parse(markdown or "")
    tree = SyntaxTreeNode(tokens)
    children: list[dict[str, Any]] = []
    skipped = False
    for node in tree.children:
        if skip_first_h1 and not skipped and node.type == "heading" and node.tag == "h1":
            skipped = True
            continue
        converted = _block(node)
        if converted is not None:
            children.append(converted)
    return {"root": _element("root", children)}


# ---------------------------------------------------------------------------
# Block nodes
# ---------------------------------------------------------------------------
def _element(node_type: str, children: list[dict[str, Any]], **extra: Any) -> dict[str, Any]:
    node: dict[str, Any] = {
        "type": node_type,
        "direction": "ltr",
        "format": "",
        "indent": 0,
        "version": 1,
    }
    node.update(extra)
    node["children"] = children
    return node


def _text(text: str, fmt: int = 0) -> dict[str, Any]:
    return {
        "type": "text",
        "text": text,
        "detail": 0,
        "format": fmt,
        "mode": "normal",
        "style": "",
        "version": 1,
    }


def _block(node: SyntaxTreeNode) -> dict[str, Any] | None:
    kind = node.type
    if kind == "heading":
        return _element("heading", _inline_children(node), tag=node.tag)
    if kind == "paragraph":
        return _element("paragraph", _inline_children(node))
    if kind in ("bullet_list", "ordered_list"):
        ordered = kind == "ordered_list"
        start = node.attrs.get("start", 1) if ordered else 1
        return _element(
            "list",
            [_list_item(item, position) for position, item in enumerate(node.children, start=1)],
            listType="number" if ordered else "bullet",
            start=int(start),
            tag="ol" if ordered else "ul",
        )
    if kind in ("fence", "code_block"):
        language = (node.info or "").strip().split(" ")[0] or "plain"
        return _element("code", [_text(node.content.rstrip("\n"))], language=language)
    if kind == "blockquote":
        inner = [child for child in (_block(item) for item in node.children) if child is not None]
        return _element("quote", inner or [_element("paragraph", [])])
    if kind == "hr":
        return {"type": "horizontalrule", "version": 1}
    if kind == "table":
        return _table(node)
    if kind == "html_block":
        return _element("paragraph", [_text(node.content.strip())])
    LOGGER.debug("Skipping unsupported markdown block %s", kind)
    return None


def _list_item(node: SyntaxTreeNode, position: int) -> dict[str, Any]:
    children = [child for child in (_block(item) for item in node.children) if child is not None]
    return _element("listitem", children, value=position)


def _table(node: SyntaxTreeNode) -> dict[str, Any]:
    rows: list[dict[str, Any]] = []
    for section in node.children:
        for row in section.children:
            cells = []
            for cell in row.children:
                cells.append(
                    {
                        "type": "tablecell",
                        "header": cell.type == "th",
                        "version": 1,
                        "children": [_element("paragraph", _inline_children(cell))],
                    }
                )
            rows.append({"type": "tablerow", "version": 1, "children": cells})
    return {"type": "table", "version": 1, "children": rows}


# ---------------------------------------------------------------------------
# Inline nodes
# ---------------------------------------------------------------------------
def _inline_children(node: SyntaxTreeNode) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for child in node.children:
        if child.type == "inline":
            out.extend(_inline(child.children, 0))
        else:
            out.extend(_inline([child], 0))
    return out


def _inline(nodes: list[SyntaxTreeNode], fmt: int) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for node in nodes:
        kind = node.type
        if kind == "text":
            if node.content:
                out.append(_text(node.content, fmt))
        elif kind in _FORMAT_BY_NODE:
            out.extend(_inline(node.children, fmt | _FORMAT_BY_NODE[kind]))
        elif kind == "code_inline":
            out.append(_text(node.content, fmt | FORMAT_CODE))
        elif kind == "softbreak":
            out.append(_text(" ", fmt))
        elif kind == "hardbreak":
            out.append({"type": "linebreak", "version": 1})
        elif kind == "link":
            out.append(
                _element(
                    "link",
                    _inline(node.children, fmt),
                    url=str(node.attrs.get("href") or "#"),
                    title=str(node.attrs.get("title") or ""),
                    rel="noreferrer noopener",
                    target="_blank",
                )
            )
        elif kind == "image":
            alt = "".join(child.content for child in node.children if child.type == "text") or node.content
            out.append(
                {
                    "type": "lexical-media",
                    "url": str(node.attrs.get("src") or ""),
                    "alt": alt,
                    "version": 1,
                }
            )
        elif node.content:
            out.append(_text(node.content, fmt))
    return out
