"""Ingestion helpers."""

from __future__ import annotations

import pathlib
from typing import Any

import yaml

from catalog_sync.ingest.models import CategoryDefinition

REFERENCE_PATH = pathlib.Path(__file__).with_name("reference.yml")


def load_reference_seed(path: pathlib.Path | None = None) -> tuple[list[CategoryDefinition], dict[int, str]]:
    """Read the category and prepack-size seed file."""
    data: dict[str, Any] = yaml.safe_load((path or REFERENCE_PATH).read_text()) or {}
    categories = [
        CategoryDefinition(id=int(item["id"]), name=str(item["name"]), is_preorder=bool(item.get("is_preorder", False)))
        for item in data.get("categories", [])
    ]
    prepack_sizes = {int(size): str(label) for size, label in (data.get("prepack_sizes") or {}).items()}
    return categories, prepack_sizes
