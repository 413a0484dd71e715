"""Small helpers shared by the source and destination adapters."""

from typing import Any, Sequence

PREVIEW_LENGTH = 200
PREVIEW_ITEMS = 10


def quote_identifier(name: str) -> str:
    """Quote a table or column name using ANSI double-quote rules."""
    if not name:
        raise ValueError("Identifier must not be empty")
    if "\x00" in name:
        raise ValueError(f"Identifier contains a NUL byte: {name!r}")
    return '"' + name.replace('"', '""') + '"'


def preview_value(value: Any, limit: int = PREVIEW_LENGTH) -> str:
    """Short printable form of a value for diagnostics."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        text = f"<{len(bytes(value))} bytes>"
    else:
        text = repr(value)
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def preview_params(params: Sequence[Any], max_items: int = PREVIEW_ITEMS) -> str:
    """Render the first few statement arguments."""
    items = list(params)
    shown = ", ".join(preview_value(p) for p in items[:max_items])
    if len(items) > max_items:
        shown += f", ... ({len(items) - max_items} more)"
    return f"[{shown}]"
