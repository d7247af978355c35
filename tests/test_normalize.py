import pytest

from catalog_sync.logic.normalize import (
    NAME_RULES,
    apply_rules,
    collapse_doubled_preorder,
    drop_redundant_fw_year,
    fix_day_typo,
    space_around_hyphen,
    split_glued_year,
    split_tags,
    unify_preorder_spelling,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Pre-Order", "PreOrder"),
        ("pre order", "PreOrder"),
        ("Fall 2025 PreOrder", "Fall 2025 PreOrder"),
    ],
)
def test_unify_preorder_spelling(raw, expected):
    assert unify_preorder_spelling(raw) == expected


def test_single_rules():
    assert collapse_doubled_preorder("PreOrderPreOrder Jul 15") == "PreOrder Jul 15"
    assert fix_day_typo("Jul 151") == "Jul 15"
    assert fix_day_typo("Jul 1515") == "Jul 1515"
    assert space_around_hyphen("Basics -Core") == "Basics - Core"
    assert space_around_hyphen("Basics- Core") == "Basics - Core"
    assert split_glued_year("Holiday 2025Preppy Goose") == "Holiday 2025 Preppy Goose"
    assert drop_redundant_fw_year("FW26 Preppy Goose 2026") == "FW26 Preppy Goose"


def test_name_rules_rename_holiday_order():
    assert apply_rules("  Holiday   Preppy Goose 2025 ", NAME_RULES) == "Holiday 2025 Preppy Goose"


def test_split_tags_bare_marker_marks_all_parts():
    parts = split_tags("Fall 2025, PreOrder")
    assert [(p.name, p.is_preorder) for p in parts] == [("Fall 2025", True)]


def test_split_tags_keeps_order_and_flags():
    parts = split_tags("Basics -Core, PreOrderPreOrder Jul 151, , Holiday 2025Preppy Goose Pre-Order")
    assert [(p.name, p.is_preorder) for p in parts] == [
        ("Basics - Core", False),
        ("Jul 15", True),
        ("Holiday 2025 Preppy Goose", True),
    ]
    assert parts[0].raw == "Basics -Core"


def test_split_tags_empty():
    assert split_tags("") == []
    assert split_tags(" , ") == []
