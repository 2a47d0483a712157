"""Human-readable rendering of a context graph."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .constants import UNRESOLVED
from .types import ContextDescription
from .utils import short_repr

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from .context.node import ContextNode

logger = logging.getLogger(__name__)

_BRANCH = "├── "
_LAST = "└── "
_PIPE = "│   "
_SPACE = "    "


def describe(node: ContextNode) -> ContextDescription:
    """Describe ``node`` without ever raising."""
    try:
        return node.describe()
    except Exception as exc:
        logger.debug("Failed to describe %r: %s", node, exc)
        return ContextDescription(
            label=getattr(node, "label", None) or type(node).__name__,
            properties={"error": str(exc)},
            unresolved=True,
        )


def _format_properties(desc: ContextDescription) -> str:
    parts: list[str] = []
    if desc.address is not None or desc.unresolved:
        parts.append(f"address={desc.address or UNRESOLVED}")
    for key, value in desc.properties.items():
        parts.append(f"{key}={UNRESOLVED if value is None else short_repr(value)}")
    return ", ".join(parts)


def _flags(desc: ContextDescription) -> str:
    flags = [
        name
        for name, enabled in (
            ("mutable", desc.mutable),
            ("unused", desc.unused),
            ("unresolved", desc.unresolved),
        )
        if enabled
    ]
    return f" [{','.join(flags)}]" if flags else ""


def format_description(node: ContextNode) -> str:
    desc = describe(node)
    properties = _format_properties(desc)
    return f"{desc.label}{_flags(desc)} {properties}".rstrip()


def _truncate(line: str, width: int) -> str:
    if len(line) <= width:
        return line
    return line[: max(width - 3, 0)] + "..."


def to_tree_string(
    node: ContextNode, max_depth: int = 5, max_line_width: int = 200
) -> str:
    """Render ``node`` and its descendants as a box-drawing tree.

    The start node is keyed ``(this)``. Children below ``max_depth`` are
    collapsed into a ``+N more`` line naming the skipped edges.
    """
    entries: list[tuple[str, str, str]] = []
    visited: set[int] = set()

    def collect(current: ContextNode, key: str, prefix: str, child_prefix: str, depth: int) -> None:
        visited.add(id(current))
        entries.append((prefix, key, format_description(current)))

        children = [(name, child) for name, child in _children(current) if id(child) not in visited]
        if depth >= max_depth:
            if children:
                names = ", ".join(name for name, _ in children)
                entries.append((child_prefix + _LAST, f"+{len(children)} more", names))
            return

        for index, (name, child) in enumerate(children):
            last = index == len(children) - 1
            collect(
                child,
                name,
                child_prefix + (_LAST if last else _BRANCH),
                child_prefix + (_SPACE if last else _PIPE),
                depth + 1,
            )

    collect(node, "(this)", "", "", 0)

    key_width = max(len(prefix) + len(key) for prefix, key, _ in entries) + 4
    lines = []
    for prefix, key, text in entries:
        left = prefix + key.ljust(key_width - len(prefix))
        lines.append(_truncate(f"{left}{text}".rstrip(), max_line_width))
    return "\n".join(lines)


def _children(node: Any) -> list[tuple[str, Any]]:
    try:
        return list(node.children)
    except Exception as exc:
        logger.debug("Failed to list children of %r: %s", node, exc)
        return []
