"""Shared fixtures. No live database: tests compile SQL or use fakes."""

import os

# Point the engine at an in-memory database before any module creates it
os.environ["DATABASE_URL"] = "sqlite://"

import pytest

from listing_search.compiler import FilterCompiler
from listing_search.search import clear_search_cache


@pytest.fixture
def compiler():
    return FilterCompiler()


@pytest.fixture(autouse=True)
def fresh_search_cache():
    clear_search_cache()
    yield
    clear_search_cache()
