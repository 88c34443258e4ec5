"""
Filename-based grouping for bulk imports.

Images that belong to the same product usually share a base name and differ
only by a counter or a view suffix:

    vestido-azul-1.jpg, vestido-azul-2.jpg  -> "vestido-azul"
    camisa_frente.png, camisa_costas.png    -> "camisa"

Grouping never looks at image content, so false groupings are expected and
are repaired by the draft editor (split/merge).
"""

import os
import re
from typing import Callable, Iterable, TypeVar

T = TypeVar("T")

VIEW_SUFFIXES = ("frente", "costas", "lateral", "detalhe")

_NUMERIC_SUFFIX = re.compile(r"(?:[-_]\d+|\d+)$")
_VIEW_SUFFIX = re.compile(
    r"[-_](?:" + "|".join(VIEW_SUFFIXES) + r")$",
    re.IGNORECASE,
)
_SEPARATORS = " \t-_"


def _stem(filename: str) -> str:
    """Filename without directories and extension."""
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    stem, _ = os.path.splitext(name)
    return stem or name


def group_key(filename: str) -> str:
    """
    Derive the grouping key of a filename.

    Strips the extension, then a trailing counter (-1, _02, 3), then a
    trailing view suffix (frente, costas, lateral, detalhe), then stray
    separators. Falls back to the bare stem so the key is never empty.

    Args:
        filename: Original filename as uploaded

    Returns:
        Non-empty group key
    """
    stem = _stem(filename)

    cleaned = _NUMERIC_SUFFIX.sub("", stem)
    cleaned = _VIEW_SUFFIX.sub("", cleaned)
    cleaned = cleaned.strip(_SEPARATORS)

    return cleaned or stem.strip() or filename or "untitled"


def group_files(
    files: Iterable[T],
    filename: Callable[[T], str] = lambda f: f.filename,
) -> dict[str, list[T]]:
    """
    Partition files by group key.

    Group order is first-seen order; file order inside a group follows
    submission order.

    Args:
        files: Uploaded files (any objects)
        filename: Accessor returning the original filename of an item

    Returns:
        Ordered mapping of group key to files
    """
    groups: dict[str, list[T]] = {}
    for item in files:
        groups.setdefault(group_key(filename(item)), []).append(item)
    return groups


def product_name(key: str) -> str:
    """
    Seed a display name from a group key.

    "vestido-azul" -> "Vestido Azul", "camisa_polo" -> "Camisa Polo"
    """
    spaced = re.sub(r"[-_]", " ", key)
    titled = re.sub(r"\b\w", lambda m: m.group(0).upper(), spaced)
    return " ".join(titled.split())
