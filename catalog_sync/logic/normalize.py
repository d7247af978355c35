"""Tag and category-name normalization rules.

Shopify's order-entry collection metafield is typed by hand, so the same
category shows up with stray digits, doubled markers and inconsistent
spacing. Each rule is a pure ``str -> str`` function; the rule lists are
applied in order and can be tested one by one.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

Rule = Callable[[str], str]

PREORDER_MARKER = "PreOrder"
PREORDER_RE = re.compile(r"preorder", re.IGNORECASE)
PREORDER_SPELLING_RE = re.compile(r"pre[\s-]order", re.IGNORECASE)


def unify_preorder_spelling(value: str) -> str:
    """'Pre-Order' and 'Pre Order' -> 'PreOrder'."""
    return PREORDER_SPELLING_RE.sub(PREORDER_MARKER, value)


def collapse_doubled_preorder(value: str) -> str:
    return re.sub(r"(?:PreOrder){2,}", PREORDER_MARKER, value, flags=re.IGNORECASE)


def collapse_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def fix_day_typo(value: str) -> str:
    """'Jul 151' -> 'Jul 15'."""
    return re.sub(r"\bJul 151\b", "Jul 15", value, flags=re.IGNORECASE)


def space_around_hyphen(value: str) -> str:
    value = re.sub(r"(\w)- ", r"\1 - ", value)
    return re.sub(r" -(\w)", r" - \1", value)


def split_glued_year(value: str) -> str:
    """'Holiday 2025Preppy Goose' -> 'Holiday 2025 Preppy Goose'."""
    return re.sub(r"(\d{4})([A-Z])", r"\1 \2", value)


def rename_holiday_preppy_goose(value: str) -> str:
    if re.fullmatch(r"Holiday Preppy Goose 2025", value, flags=re.IGNORECASE):
        return "Holiday 2025 Preppy Goose"
    return value


def drop_redundant_fw_year(value: str) -> str:
    """'FW26 Preppy Goose 2026' -> 'FW26 Preppy Goose'."""
    return re.sub(r"^(FW\d{2} Preppy Goose) 20\d{2}$", r"\1", value, flags=re.IGNORECASE)


TAG_RULES: tuple[Rule, ...] = (
    unify_preorder_spelling,
    collapse_doubled_preorder,
)

NAME_RULES: tuple[Rule, ...] = (
    collapse_whitespace,
    fix_day_typo,
    space_around_hyphen,
    split_glued_year,
    rename_holiday_preppy_goose,
    drop_redundant_fw_year,
    collapse_whitespace,
)


def apply_rules(value: str, rules: Sequence[Rule]) -> str:
    for rule in rules:
        value = rule(value)
    return value


@dataclass(slots=True, frozen=True)
class TagPart:
    raw: str
    name: str
    is_preorder: bool
    # Whether the part itself carried the marker, before a bare marker applied.
    marked: bool = False


def split_tags(tags: str) -> list[TagPart]:
    """Split a comma-separated collection string into normalized parts.

    A part containing the pre-order marker is a pre-order part. A part that
    is nothing but the marker (``"Fall 2025, PreOrder"``) marks every part
    of the string as pre-order and is dropped; ``marked`` keeps the part's own
    flag.
    """
    parts: list[TagPart] = []
    bare_marker = False
    for raw in tags.split(","):
        raw = raw.strip()
        if not raw:
            continue
        tagged = apply_rules(raw, TAG_RULES)
        is_preorder = bool(PREORDER_RE.search(tagged))
        name = apply_rules(PREORDER_RE.sub(" ", tagged), NAME_RULES)
        if is_preorder and not name:
            bare_marker = True
            continue
        parts.append(TagPart(raw=raw, name=name, is_preorder=is_preorder, marked=is_preorder))
    if bare_marker:
        parts = [TagPart(raw=p.raw, name=p.name, is_preorder=True, marked=p.marked) for p in parts]
    return parts
