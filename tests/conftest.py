"""Shared fixtures for chat_stats tests."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from stats_store import StatsStore


@pytest.fixture()
def data_root(tmp_path):
    """Empty data root with characters/ and chats/ directories."""
    (tmp_path / "characters").mkdir()
    (tmp_path / "chats").mkdir()
    return tmp_path


@pytest.fixture()
def store(data_root):
    """StatsStore over the temporary data root (not yet initialised)."""
    return StatsStore(
        data_root / "characters",
        data_root / "chats",
        data_root / "stats.json",
    )


@pytest.fixture()
def client(store):
    """TestClient for app.py backed by the temporary store.

    Entering the client runs the app lifespan, so the store is
    initialised (rebuilt from the data root) before the first request.
    """
    import app as app_module

    with patch.object(app_module, "_store", store):
        with TestClient(app_module.app) as tc:
            yield tc
