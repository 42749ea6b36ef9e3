"""Per-message and per-chat statistics extracted from chat log records.

A chat file is a JSON-lines log.  The first line is usually a header that
carries ``create_date`` and ``chat_metadata``; every other line is one
message record with at least ``is_user``, ``is_system``, ``send_date`` and
``mes``.  Model replies may also carry ``gen_started``/``gen_finished``,
``extra.token_count``/``extra.model`` and a ``swipe_info`` list with one
entry per generated variant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from aggregate import (
    AggregateStat,
    ModelUsage,
    add_model_usage,
    merge_model_usage,
)
from stats_errors import MalformedDataError
from stats_util import (
    MIN_DATE,
    calculate_duration,
    count_words,
    date_from_iso,
    date_to_iso,
    hash_message,
    max_date,
    now,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

# Per-message facts collected into one AggregateStat each on ChatStats.
CHAT_AGGREGATE_FIELDS = (
    "gen_time",
    "gen_token_count",
    "swipe_gen_time",
    "swipes",
    "user_response_time",
    "words",
    "user_words",
    "char_words",
)

# Chat-level scalars that roll up into one value per chat.
CHAT_SCALAR_FIELDS = (
    "chatting_time",
    "messages",
    "system_messages",
    "user_messages",
    "char_messages",
)


@dataclass(frozen=True)
class MessageStats:
    """Numeric facts about one chat message.

    The generation fields are None for messages that were not generated by
    a model (user messages, or replies without timing data), which keeps
    "not applicable" apart from zero.
    """

    is_user: bool = False
    is_char: bool = False
    is_system: bool = False
    hash: str = ""
    send_date: datetime = MIN_DATE
    gen_time: int | None = None
    gen_token_count: int | None = None
    swipe_gen_time: int | None = None
    swipes: int | None = None
    words: int = 0
    gen_end_dates: tuple[datetime, ...] = ()
    gen_models: ModelUsage = field(default_factory=dict)

    def last_interaction_before(self, moment: datetime) -> datetime:
        """Latest generation end before *moment*, else the send date."""
        earlier = [d for d in sorted(self.gen_end_dates) if d < moment]
        return earlier[-1] if earlier else self.send_date

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_user": self.is_user,
            "is_char": self.is_char,
            "is_system": self.is_system,
            "hash": self.hash,
            "send_date": date_to_iso(self.send_date),
            "gen_time": self.gen_time,
            "gen_token_count": self.gen_token_count,
            "swipe_gen_time": self.swipe_gen_time,
            "swipes": self.swipes,
            "words": self.words,
            "gen_end_dates": [date_to_iso(d) for d in self.gen_end_dates],
            "gen_models": {k: dict(v) for k, v in self.gen_models.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageStats:
        return cls(
            is_user=bool(data.get("is_user")),
            is_char=bool(data.get("is_char")),
            is_system=bool(data.get("is_system")),
            hash=data.get("hash", ""),
            send_date=date_from_iso(data.get("send_date")),
            gen_time=data.get("gen_time"),
            gen_token_count=data.get("gen_token_count"),
            swipe_gen_time=data.get("swipe_gen_time"),
            swipes=data.get("swipes"),
            words=data.get("words", 0),
            gen_end_dates=tuple(
                date_from_iso(d) for d in data.get("gen_end_dates", [])
            ),
            gen_models={k: dict(v) for k, v in data.get("gen_models", {}).items()},
        )


@dataclass
class ChatStats:
    """Statistics for one chat file, rebuilt wholesale on every change."""

    chat_name: str
    character_key: str = ""
    chat_id: Any = 0
    chat_size: int = 0
    create_date: datetime = MIN_DATE
    last_interaction_date: datetime = MIN_DATE

    chatting_time: int | None = 0
    messages: int = 0
    system_messages: int = 0
    user_messages: int = 0
    char_messages: int = 0

    gen_time: AggregateStat = field(default_factory=AggregateStat)
    gen_token_count: AggregateStat = field(default_factory=AggregateStat)
    swipe_gen_time: AggregateStat = field(default_factory=AggregateStat)
    swipes: AggregateStat = field(default_factory=AggregateStat)
    user_response_time: AggregateStat = field(default_factory=AggregateStat)
    words: AggregateStat = field(default_factory=AggregateStat)
    user_words: AggregateStat = field(default_factory=AggregateStat)
    char_words: AggregateStat = field(default_factory=AggregateStat)

    gen_models: ModelUsage = field(default_factory=dict)
    messages_stats: list[MessageStats] = field(default_factory=list)
    calculated: datetime = field(default_factory=now)

    @property
    def key(self) -> tuple[str, str]:
        """Identity of this chat inside any roll-up record."""
        return self.character_key, self.chat_name

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "chat_name": self.chat_name,
            "character_key": self.character_key,
            "chat_id": self.chat_id,
            "chat_size": self.chat_size,
            "create_date": date_to_iso(self.create_date),
            "last_interaction_date": date_to_iso(self.last_interaction_date),
        }
        for name in CHAT_SCALAR_FIELDS:
            data[name] = getattr(self, name)
        for name in CHAT_AGGREGATE_FIELDS:
            data[name] = getattr(self, name).to_dict()
        data["gen_models"] = {k: dict(v) for k, v in self.gen_models.items()}
        data["messages_stats"] = [m.to_dict() for m in self.messages_stats]
        data["calculated"] = date_to_iso(self.calculated)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatStats:
        stats = cls(
            chat_name=data["chat_name"],
            character_key=data.get("character_key", ""),
            chat_id=data.get("chat_id", 0),
            chat_size=data.get("chat_size", 0),
            create_date=date_from_iso(data.get("create_date")),
            last_interaction_date=date_from_iso(data.get("last_interaction_date")),
            gen_models={k: dict(v) for k, v in data.get("gen_models", {}).items()},
            messages_stats=[
                MessageStats.from_dict(m) for m in data.get("messages_stats", [])
            ],
            calculated=date_from_iso(data.get("calculated")),
        )
        for name in CHAT_SCALAR_FIELDS:
            setattr(stats, name, data.get(name, 0))
        for name in CHAT_AGGREGATE_FIELDS:
            setattr(stats, name, AggregateStat.from_dict(data.get(name)))
        return stats


def _token_count(extra: dict[str, Any]) -> int:
    tokens = extra.get("token_count") or 0
    if isinstance(tokens, bool) or not isinstance(tokens, (int, float)):
        raise TypeError(f"token_count must be a number, got {tokens!r}")
    return tokens


def process_message(message: dict[str, Any], char_name: str | None = None) -> MessageStats:
    """Reduce one raw message record to its ``MessageStats``.

    Generation time, token count and swipe data are only collected for
    messages not sent by the user.  Every swipe whose own generation start
    differs from the reply's start adds its duration to both ``gen_time``
    and ``swipe_gen_time``.

    Args:
        message: Parsed JSON-lines message record.
        char_name: When given (group chats), only messages sent under this
            name count as character messages.

    Returns:
        The immutable per-message stats.
    """
    is_user = bool(message.get("is_user"))
    is_system = bool(message.get("is_system"))
    is_char = (
        not is_user
        and not is_system
        and (not char_name or message.get("name") == char_name)
    )
    text = message.get("mes")

    gen_time: int | None = None
    gen_token_count: int | None = None
    swipe_gen_time: int | None = None
    swipes: int | None = None
    gen_end_dates: list[datetime] = []
    gen_models: ModelUsage = {}

    if not is_user:
        extra = message.get("extra") or {}
        gen_started = message.get("gen_started")
        gen_finished = message.get("gen_finished")
        if gen_started and gen_finished:
            gen_token_count = _token_count(extra)
            gen_time = calculate_duration(gen_started, gen_finished)
            finished = parse_timestamp(gen_finished)
            if finished is not None:
                gen_end_dates.append(finished)
            add_model_usage(gen_models, extra.get("model"), gen_token_count)

        swipe_info = message.get("swipe_info") or []
        if not isinstance(swipe_info, list):
            raise TypeError(f"swipe_info must be a list, got {type(swipe_info).__name__}")
        for swipe in swipe_info:
            if not isinstance(swipe, dict):
                continue
            started = swipe.get("gen_started")
            finished_raw = swipe.get("gen_finished")
            if not started or not finished_raw or started == gen_started:
                continue
            swipe_extra = swipe.get("extra") or {}
            swipe_tokens = _token_count(swipe_extra)
            gen_token_count = (gen_token_count or 0) + swipe_tokens
            duration = calculate_duration(started, finished_raw)
            if duration is not None:
                gen_time = (gen_time or 0) + duration
                swipe_gen_time = (swipe_gen_time or 0) + duration
            finished = parse_timestamp(finished_raw)
            if finished is not None:
                gen_end_dates.append(finished)
            add_model_usage(gen_models, swipe_extra.get("model"), swipe_tokens)

        # swipe_info holds the chosen reply too
        if swipe_info:
            swipes = len(swipe_info) - 1

    return MessageStats(
        is_user=is_user,
        is_char=is_char,
        is_system=is_system,
        hash=hash_message(text),
        send_date=parse_timestamp(message.get("send_date")) or MIN_DATE,
        gen_time=gen_time,
        gen_token_count=gen_token_count,
        swipe_gen_time=swipe_gen_time,
        swipes=swipes,
        words=count_words(text),
        gen_end_dates=tuple(gen_end_dates),
        gen_models=gen_models,
    )


def _is_header(record: dict[str, Any]) -> bool:
    return record.get("chat_metadata") is not None and bool(record.get("create_date"))


def process_chat(
    chat_name: str,
    lines: list[dict[str, Any]],
    chat_size: int = 0,
    character_key: str = "",
    char_name: str | None = None,
) -> ChatStats | None:
    """Fold the records of one chat file into a ``ChatStats``.

    Args:
        chat_name: File name of the chat, unique within its character.
        lines: Parsed records in file order.  A header record with
            ``chat_metadata`` and ``create_date`` is consumed without being
            counted as a message.
        chat_size: Size of the chat file in bytes.
        character_key: Key of the owning character.
        char_name: Optional character name for group-chat attribution,
            passed through to ``process_message``.

    Returns:
        The chat's stats, or None if *lines* is empty.

    Raises:
        MalformedDataError: If a message record has fields of the wrong type.
    """
    if not lines:
        logger.warning("Processing chat file %s failed: no records.", chat_name)
        return None

    stats = ChatStats(chat_name=chat_name, character_key=character_key, chat_size=chat_size)
    last_message: MessageStats | None = None

    for lineno, record in enumerate(lines, start=1):
        if not isinstance(record, dict):
            logger.debug("Skipping non-object record in chat %s", chat_name)
            continue

        if _is_header(record):
            stats.create_date = parse_timestamp(record["create_date"]) or stats.create_date
            metadata = record["chat_metadata"]
            if isinstance(metadata, dict):
                stats.chat_id = metadata.get("chat_id_hash", 0)
            continue

        try:
            message_stats = process_message(record, char_name)
        except (TypeError, AttributeError, ValueError) as exc:
            raise MalformedDataError(f"{chat_name}:{lineno}: {exc}") from exc
        stats.messages_stats.append(message_stats)

        stats.last_interaction_date = max_date(
            stats.last_interaction_date,
            message_stats.send_date,
            *message_stats.gen_end_dates,
        )

        stats.messages += 1
        stats.system_messages += 1 if message_stats.is_system else 0
        stats.user_messages += 1 if message_stats.is_user else 0
        stats.char_messages += 1 if message_stats.is_char else 0

        stats.gen_time.add(message_stats.gen_time)
        stats.gen_token_count.add(message_stats.gen_token_count)
        stats.swipe_gen_time.add(message_stats.swipe_gen_time)
        stats.swipes.add(message_stats.swipes)

        if message_stats.is_user and last_message is not None:
            replied_after = last_message.last_interaction_before(message_stats.send_date)
            stats.user_response_time.add(
                calculate_duration(replied_after, message_stats.send_date)
            )

        stats.words.add(message_stats.words)
        stats.user_words.add(message_stats.words if message_stats.is_user else None)
        stats.char_words.add(message_stats.words if message_stats.is_char else None)

        merge_model_usage(stats.gen_models, message_stats.gen_models)
        last_message = message_stats

    stats.chatting_time = calculate_duration(stats.create_date, stats.last_interaction_date)
    return stats
