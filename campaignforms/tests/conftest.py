"""
Shared test fixtures and helpers for the campaign forms test suite.

Provides schema loaders for the example forms under ``schemas/`` and a
builder for small inline schemas, plus one fixture per storage backend so
backend-agnostic tests can be parametrized over all of them.
"""

import json
from pathlib import Path
from typing import Any

import pytest

from campaignforms.core.schema import FormSchema, parse_schema
from campaignforms.storage.jsonfile import JSONFileRepository
from campaignforms.storage.memory import InMemoryRepository
from campaignforms.storage.sqlite import SQLiteRepository

SCHEMAS_DIR = Path(__file__).parent.parent / "schemas"


def load_schema_dict(filename: str) -> dict[str, Any]:
    """Load an example schema file as a dict."""
    with open(SCHEMAS_DIR / filename) as f:
        return json.load(f)


def load_schema(filename: str) -> FormSchema:
    return parse_schema(load_schema_dict(filename))


def build_schema(fields: list[dict], **overrides) -> FormSchema:
    """Build a FormSchema from field dicts, with optional top-level overrides."""
    data: dict[str, Any] = {
        "id": "test_form",
        "title": "Test Form",
        "fields": fields,
    }
    data.update(overrides)
    return parse_schema(data)


@pytest.fixture
def signup_schema() -> FormSchema:
    """Campaign sign-up form: conditional table, custom regex, validation code."""
    return load_schema("campaign_signup.json")


@pytest.fixture
def feedback_schema() -> FormSchema:
    """Customer feedback form: no conditions, no validation code."""
    return load_schema("customer_feedback.json")


@pytest.fixture
def memory_repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def file_repository(tmp_path) -> JSONFileRepository:
    return JSONFileRepository(tmp_path / "data")


@pytest.fixture
def sqlite_repository(tmp_path) -> SQLiteRepository:
    return SQLiteRepository(tmp_path / "campaignforms.db")


@pytest.fixture(params=["memory", "file", "sqlite"])
def repository(request):
    """Every concrete backend in turn."""
    return request.getfixturevalue(f"{request.param}_repository")
