"""FastAPI service for incremental chat statistics.

Keeps the stats collection in memory, loads it from (or rebuilds it into)
the snapshot at startup, autosaves it while running and saves it once
more on shutdown.

Deployment: uvicorn app:app --host 127.0.0.1 --port 8204
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException

from stats_store import StatsStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
DATA_ROOT = Path(os.environ.get("CHAT_STATS_DATA_ROOT", Path(__file__).parent / "data"))
CHARACTERS_DIR = DATA_ROOT / "characters"
CHATS_DIR = DATA_ROOT / "chats"
SNAPSHOT_PATH = DATA_ROOT / "stats.json"
SAVE_INTERVAL_SECONDS = 300  # 5 minutes

# ---------------------------------------------------------------------------
# Store, guarded by one lock: sync routes run on the threadpool
# ---------------------------------------------------------------------------
_store_lock = threading.Lock()
_store = StatsStore(CHARACTERS_DIR, CHATS_DIR, SNAPSHOT_PATH)


def _init_locked() -> None:
    with _store_lock:
        _store.init()


def _save_locked() -> bool:
    with _store_lock:
        return _store.save()


def _on_exit_locked() -> None:
    with _store_lock:
        _store.on_exit()


async def _autosave_loop() -> None:
    while True:
        await asyncio.sleep(SAVE_INTERVAL_SECONDS)
        await asyncio.to_thread(_save_locked)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load or rebuild stats on startup; persist them on shutdown."""
    await asyncio.to_thread(_init_locked)
    autosave = asyncio.create_task(_autosave_loop())
    try:
        yield
    finally:
        autosave.cancel()
        with suppress(asyncio.CancelledError):
            await autosave
        await asyncio.to_thread(_on_exit_locked)


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Chat Statistics",
    root_path="/chat_stats",
    lifespan=lifespan,
)


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=404, detail=detail)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health")
@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@app.get("/api/stats")
def api_all_stats() -> dict[str, Any]:
    """Return the whole collection: global, every character, timestamps."""
    with _store_lock:
        return _store.get_collection().to_dict()


@app.get("/api/stats/global")
def api_global_stats() -> dict[str, Any]:
    with _store_lock:
        return _store.get_global_stats().to_dict()


@app.get("/api/stats/characters/{character_key}")
def api_character_stats(character_key: str) -> dict[str, Any]:
    with _store_lock:
        stats = _store.get_character_stats(character_key)
        if stats is None:
            raise _not_found(f"No stats for character {character_key}")
        return stats.to_dict()


@app.get("/api/stats/characters/{character_key}/chats/{chat_name}")
def api_chat_stats(character_key: str, chat_name: str) -> dict[str, Any]:
    with _store_lock:
        stats = _store.get_chat_stats(character_key, chat_name)
        if stats is None:
            raise _not_found(f"No stats for chat {chat_name} of {character_key}")
        return stats.to_dict()


@app.post("/api/stats/recreate")
def api_recreate_stats() -> dict[str, Any]:
    """Rebuild all stats from the chat files."""
    with _store_lock:
        return _store.recreate_stats().to_dict()


@app.post("/api/stats/characters/{character_key}/recreate")
def api_recreate_character_stats(character_key: str) -> dict[str, Any]:
    with _store_lock:
        stats = _store.recreate_character_stats(character_key)
        if stats is None:
            raise _not_found(f"No chats found for character {character_key}")
        return stats.to_dict()


@app.post("/api/stats/characters/{character_key}/chats/{chat_name}")
def api_update_chat(character_key: str, chat_name: str) -> dict[str, Any]:
    """Re-process one chat file after it changed on disk."""
    with _store_lock:
        stats = _store.trigger_chat_update(character_key, chat_name)
        if stats is None:
            raise _not_found(f"Chat {chat_name} of {character_key} produced no stats")
        return stats.to_dict()


@app.delete("/api/stats/characters/{character_key}/chats/{chat_name}")
def api_remove_chat(character_key: str, chat_name: str) -> dict[str, Any]:
    with _store_lock:
        if not _store.remove_chat(character_key, chat_name):
            raise _not_found(f"No stats for chat {chat_name} of {character_key}")
        return {"status": "removed", "character_key": character_key, "chat_name": chat_name}
