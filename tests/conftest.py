"""
Global pytest configuration and fixtures for test isolation.

Every test starts with a fresh settings cache, no trace id and no recorded
probe timings.
"""

import os
import random

import numpy as np
import pytest

from vulnkb.config.container import get_container
from vulnkb.config.settings import get_settings
from vulnkb.observability.logging import clear_trace_id
from vulnkb.observability.probe import clear_trace_metrics
from vulnkb.storage.memory import InMemoryKnowledgeStore
from vulnkb.storage.sqlite import SQLiteKnowledgeStore

from fakes import FakeEmbedder


def reset_all_global_state():
    random.seed(1337)
    np.random.seed(1337)
    get_settings.cache_clear()
    get_container.cache_clear()
    clear_trace_id()
    clear_trace_metrics()


@pytest.fixture(autouse=True)
def test_isolation(monkeypatch):
    """Per-test isolation; VULNKB_* variables from the shell never leak in."""
    for key in list(os.environ):
        if key.startswith("VULNKB_"):
            monkeypatch.delenv(key, raising=False)
    reset_all_global_state()
    yield
    reset_all_global_state()


@pytest.fixture
def memory_store():
    store = InMemoryKnowledgeStore()
    yield store
    store.close()


@pytest.fixture
def sqlite_store(tmp_path):
    store = SQLiteKnowledgeStore(tmp_path / "knowledge.db")
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Each store backend in turn."""
    if request.param == "memory":
        instance = InMemoryKnowledgeStore()
    else:
        instance = SQLiteKnowledgeStore(tmp_path / "knowledge.db")
    yield instance
    instance.close()


@pytest.fixture
def embedder():
    return FakeEmbedder()
