"""Catalog ingestion and reference data."""

from __future__ import annotations

import functools
import pathlib

import yaml

from dealbot.ingest.models import Category, Store

STORES_PATH = pathlib.Path(__file__).with_name("stores.yml")
CATEGORIES_PATH = pathlib.Path(__file__).with_name("categories.yml")


@functools.lru_cache(maxsize=None)
def load_stores() -> tuple[Store, ...]:
    data = yaml.safe_load(STORES_PATH.read_text())
    return tuple(Store(**item) for item in data)


@functools.lru_cache(maxsize=None)
def load_categories() -> tuple[Category, ...]:
    data = yaml.safe_load(CATEGORIES_PATH.read_text())
    return tuple(Category(**item) for item in data)


def category_by_id(category_id: int | None) -> Category | None:
    for category in load_categories():
        if category.id == category_id:
            return category
    return None


def store_by_id(store_id: int | None) -> Store | None:
    for store in load_stores():
        if store.id == store_id:
            return store
    return None
