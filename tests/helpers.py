"""Shared test helpers for chat_stats tests.

Regular functions (not fixtures) that can be imported by any test module.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """Return T0 shifted by *seconds*."""
    return T0 + timedelta(seconds=seconds)


def iso(seconds: float) -> str:
    return at(seconds).isoformat()


def make_header(create_date: str = "2024-1-15@10h00m00s", chat_id: int = 1234) -> dict:
    """Build the metadata record that starts a chat file."""
    return {
        "user_name": "User",
        "character_name": "Alice",
        "create_date": create_date,
        "chat_metadata": {"chat_id_hash": chat_id},
    }


def make_user_message(text: str, sent: float) -> dict:
    """Build a user message sent *sent* seconds after T0."""
    return {
        "name": "User",
        "is_user": True,
        "is_system": False,
        "send_date": iso(sent),
        "mes": text,
    }


def make_swipe(
    started: float,
    finished: float,
    tokens: int | None = None,
    model: str | None = None,
) -> dict:
    extra = {}
    if tokens is not None:
        extra["token_count"] = tokens
    if model is not None:
        extra["model"] = model
    return {
        "send_date": iso(finished),
        "gen_started": iso(started),
        "gen_finished": iso(finished),
        "extra": extra,
    }


def make_char_message(
    text: str,
    sent: float,
    gen: tuple[float, float] | None = None,
    tokens: int | None = None,
    model: str | None = None,
    swipe_info: list[dict] | None = None,
    name: str = "Alice",
) -> dict:
    """Build a character reply; *gen* is (start, finish) in seconds after T0."""
    message = {
        "name": name,
        "is_user": False,
        "is_system": False,
        "send_date": iso(sent),
        "mes": text,
        "extra": {},
    }
    if gen is not None:
        message["gen_started"] = iso(gen[0])
        message["gen_finished"] = iso(gen[1])
    if tokens is not None:
        message["extra"]["token_count"] = tokens
    if model is not None:
        message["extra"]["model"] = model
    if swipe_info is not None:
        message["swipe_info"] = swipe_info
    return message


def make_two_message_chat() -> list[dict]:
    """A user message (5 words at T0) and a reply (8 words, generated T0+2s..T0+5s)."""
    return [
        make_header(),
        make_user_message("hello there my good friend", 0),
        make_char_message(
            "I am doing very well thank you kindly",
            5,
            gen=(2, 5),
            tokens=12,
            model="model-a",
        ),
    ]


def make_character(data_root: Path, character_key: str) -> None:
    """Create the character card file that marks a character as known."""
    characters = data_root / "characters"
    characters.mkdir(parents=True, exist_ok=True)
    (characters / f"{character_key}.png").write_bytes(b"\x89PNG")


def write_chat(data_root: Path, character_key: str, chat_name: str, records: list[dict]) -> Path:
    """Write *records* as a JSON-lines chat file and return its path."""
    chat_dir = data_root / "chats" / character_key
    chat_dir.mkdir(parents=True, exist_ok=True)
    path = chat_dir / chat_name
    path.write_text("\n".join(json.dumps(r) for r in records) + "\n", encoding="utf-8")
    return path


def aggregate_state(aggregate) -> tuple:
    """Order-independent view of an AggregateStat."""
    return (
        aggregate.count,
        aggregate.total,
        aggregate.min,
        aggregate.max,
        aggregate.avg,
        sorted(aggregate.values),
    )
