"""Character-level roll-up and roll-back of chat statistics.

A ``CharacterStats`` owns a list of ``ChatStats`` and aggregates them in
two ways:

- chat-scoped aggregates receive one value per owned chat (its size, its
  scalar counts, and the totals of its per-message aggregates), and
- per-message aggregates merge in every individual message-level value of
  every owned chat.

The global record is a ``CharacterStats`` as well, fed with the chats of
all characters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from aggregate import AggregateStat, ModelUsage, merge_model_usage, unmerge_model_usage
from chat_stats import CHAT_AGGREGATE_FIELDS, CHAT_SCALAR_FIELDS, ChatStats
from stats_util import MIN_DATE, date_from_iso, date_to_iso, max_date, min_date, now

logger = logging.getLogger(__name__)

PER_MESSAGE_FIELDS = tuple(f"per_message_{name}" for name in CHAT_AGGREGATE_FIELDS)

DATE_EXTREMA_FIELDS = (
    "first_create_date",
    "last_create_date",
    "first_last_interaction_date",
    "last_last_interaction_date",
)


@dataclass
class CharacterStats:
    character_key: str = ""
    name: str = ""
    chats: int = 0
    chat_size: int = 0

    first_create_date: datetime = MIN_DATE
    last_create_date: datetime = MIN_DATE
    first_last_interaction_date: datetime = MIN_DATE
    last_last_interaction_date: datetime = MIN_DATE

    # One value per owned chat
    chat_sizes: AggregateStat = field(default_factory=AggregateStat)
    chatting_time: AggregateStat = field(default_factory=AggregateStat)
    messages: AggregateStat = field(default_factory=AggregateStat)
    system_messages: AggregateStat = field(default_factory=AggregateStat)
    user_messages: AggregateStat = field(default_factory=AggregateStat)
    char_messages: AggregateStat = field(default_factory=AggregateStat)
    gen_time: AggregateStat = field(default_factory=AggregateStat)
    gen_token_count: AggregateStat = field(default_factory=AggregateStat)
    swipe_gen_time: AggregateStat = field(default_factory=AggregateStat)
    swipes: AggregateStat = field(default_factory=AggregateStat)
    user_response_time: AggregateStat = field(default_factory=AggregateStat)
    words: AggregateStat = field(default_factory=AggregateStat)
    user_words: AggregateStat = field(default_factory=AggregateStat)
    char_words: AggregateStat = field(default_factory=AggregateStat)

    # Every message-level value across all owned chats
    per_message_gen_time: AggregateStat = field(default_factory=AggregateStat)
    per_message_gen_token_count: AggregateStat = field(default_factory=AggregateStat)
    per_message_swipe_gen_time: AggregateStat = field(default_factory=AggregateStat)
    per_message_swipes: AggregateStat = field(default_factory=AggregateStat)
    per_message_user_response_time: AggregateStat = field(default_factory=AggregateStat)
    per_message_words: AggregateStat = field(default_factory=AggregateStat)
    per_message_user_words: AggregateStat = field(default_factory=AggregateStat)
    per_message_char_words: AggregateStat = field(default_factory=AggregateStat)

    gen_models: ModelUsage = field(default_factory=dict)
    chats_stats: list[ChatStats] = field(default_factory=list)
    calculated: datetime = field(default_factory=now)

    def find_chat(self, chat_name: str, character_key: str | None = None) -> ChatStats | None:
        """Return the owned chat named *chat_name*, optionally of one character."""
        for chat in self.chats_stats:
            if chat.chat_name == chat_name and (
                character_key is None or chat.character_key == character_key
            ):
                return chat
        return None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "character_key": self.character_key,
            "name": self.name,
            "chats": self.chats,
            "chat_size": self.chat_size,
        }
        for name in DATE_EXTREMA_FIELDS:
            data[name] = date_to_iso(getattr(self, name))
        for name in ("chat_sizes", *CHAT_SCALAR_FIELDS, *CHAT_AGGREGATE_FIELDS, *PER_MESSAGE_FIELDS):
            data[name] = getattr(self, name).to_dict()
        data["gen_models"] = {k: dict(v) for k, v in self.gen_models.items()}
        data["chats_stats"] = [c.to_dict() for c in self.chats_stats]
        data["calculated"] = date_to_iso(self.calculated)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CharacterStats:
        stats = cls(
            character_key=data.get("character_key", ""),
            name=data.get("name", ""),
            chats=data.get("chats", 0),
            chat_size=data.get("chat_size", 0),
            gen_models={k: dict(v) for k, v in data.get("gen_models", {}).items()},
            chats_stats=[ChatStats.from_dict(c) for c in data.get("chats_stats", [])],
            calculated=date_from_iso(data.get("calculated")),
        )
        for name in DATE_EXTREMA_FIELDS:
            setattr(stats, name, date_from_iso(data.get(name)))
        for name in ("chat_sizes", *CHAT_SCALAR_FIELDS, *CHAT_AGGREGATE_FIELDS, *PER_MESSAGE_FIELDS):
            setattr(stats, name, AggregateStat.from_dict(data.get(name)))
        return stats


def _find_chat_index(stats: CharacterStats, chat_stats: ChatStats) -> int | None:
    for index, owned in enumerate(stats.chats_stats):
        if owned.key == chat_stats.key:
            return index
    return None


def _extend_date_extrema(stats: CharacterStats, chat_stats: ChatStats) -> None:
    if stats.chats == 1:
        stats.first_create_date = chat_stats.create_date
        stats.last_create_date = chat_stats.create_date
        stats.first_last_interaction_date = chat_stats.last_interaction_date
        stats.last_last_interaction_date = chat_stats.last_interaction_date
        return
    stats.first_create_date = min_date(stats.first_create_date, chat_stats.create_date)
    stats.last_create_date = max_date(stats.last_create_date, chat_stats.create_date)
    stats.first_last_interaction_date = min_date(
        stats.first_last_interaction_date, chat_stats.last_interaction_date
    )
    stats.last_last_interaction_date = max_date(
        stats.last_last_interaction_date, chat_stats.last_interaction_date
    )


def _recompute_date_extrema(stats: CharacterStats) -> None:
    """Recompute the four date extrema over the chats still owned."""
    create_dates = [c.create_date for c in stats.chats_stats]
    interaction_dates = [c.last_interaction_date for c in stats.chats_stats]
    stats.first_create_date = min_date(*create_dates) or MIN_DATE
    stats.last_create_date = max_date(*create_dates) or MIN_DATE
    stats.first_last_interaction_date = min_date(*interaction_dates) or MIN_DATE
    stats.last_last_interaction_date = max_date(*interaction_dates) or MIN_DATE


def update_char_stats_with_chat(stats: CharacterStats, chat_stats: ChatStats) -> bool:
    """Roll *chat_stats* into *stats*, replacing any earlier version of it.

    Works for both a first insertion and a replacement: the previous
    contribution of the same chat (matched by character key and chat name)
    is rolled back first.

    Args:
        stats: Character (or global) record to update in place.
        chat_stats: Freshly processed stats of one chat.

    Returns:
        True once the chat has been rolled in.
    """
    remove_chat_from_char_stats(stats, chat_stats)

    stats.chats_stats.append(chat_stats)
    stats.chats += 1
    stats.chat_size += chat_stats.chat_size
    _extend_date_extrema(stats, chat_stats)

    stats.chat_sizes.add(chat_stats.chat_size)
    for name in CHAT_SCALAR_FIELDS:
        getattr(stats, name).add(getattr(chat_stats, name))
    for name in CHAT_AGGREGATE_FIELDS:
        chat_aggregate: AggregateStat = getattr(chat_stats, name)
        getattr(stats, name).add(chat_aggregate.total)
        getattr(stats, f"per_message_{name}").merge(chat_aggregate)

    merge_model_usage(stats.gen_models, chat_stats.gen_models)

    stats.calculated = now()
    logger.debug(
        "Updated %s's stats with chat %s", stats.name or stats.character_key, chat_stats.chat_name
    )
    return True


def remove_chat_from_char_stats(stats: CharacterStats, chat_stats: ChatStats) -> bool:
    """Roll a chat's contribution back out of *stats*.

    The chat is located by character key and chat name, and the contribution
    of the owned copy is subtracted, so passing a newer version of the chat
    still removes exactly what was rolled in before.

    Returns:
        Whether the chat was owned and has been removed.
    """
    index = _find_chat_index(stats, chat_stats)
    if index is None:
        return False
    owned = stats.chats_stats.pop(index)

    stats.chats -= 1
    stats.chat_size -= owned.chat_size

    stats.chat_sizes.remove(owned.chat_size)
    for name in CHAT_SCALAR_FIELDS:
        getattr(stats, name).remove(getattr(owned, name))
    for name in CHAT_AGGREGATE_FIELDS:
        owned_aggregate: AggregateStat = getattr(owned, name)
        getattr(stats, name).remove(owned_aggregate.total)
        getattr(stats, f"per_message_{name}").unmerge(owned_aggregate)

    unmerge_model_usage(stats.gen_models, owned.gen_models)
    _recompute_date_extrema(stats)

    stats.calculated = now()
    logger.debug(
        "Removed old chat stats for chat %s from %s", owned.chat_name, stats.name or stats.character_key
    )
    return True
