"""stats_summary.py

Print a usage summary from a persisted stats snapshot and export one row
per character (plus a global row) as JSON and CSV.

Usage: python stats_summary.py [--snapshot data/stats.json] [--output-dir stats_report]
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from character_stats import CharacterStats
from stats_errors import MissingFileError, SnapshotCorruptError
from stats_store import StatsCollection, load_snapshot

logger = logging.getLogger(__name__)

ROW_FIELDS = [
    "character_key",
    "name",
    "chats",
    "chat_size",
    "messages",
    "user_messages",
    "char_messages",
    "words",
    "gen_time_ms",
    "gen_tokens",
    "avg_gen_time_ms",
    "avg_user_response_ms",
    "swipes",
    "top_model",
]


def _top_model(stats: CharacterStats) -> str:
    if not stats.gen_models:
        return ""
    return max(stats.gen_models.items(), key=lambda item: item[1]["count"])[0]


def build_character_row(stats: CharacterStats) -> dict[str, Any]:
    """Flatten one character record into a report row.

    Averages are per message (from the per-message aggregates), not per chat.
    """
    return {
        "character_key": stats.character_key,
        "name": stats.name,
        "chats": stats.chats,
        "chat_size": stats.chat_size,
        "messages": stats.messages.total,
        "user_messages": stats.user_messages.total,
        "char_messages": stats.char_messages.total,
        "words": stats.words.total,
        "gen_time_ms": stats.gen_time.total,
        "gen_tokens": stats.gen_token_count.total,
        "avg_gen_time_ms": round(stats.per_message_gen_time.avg, 2),
        "avg_user_response_ms": round(stats.per_message_user_response_time.avg, 2),
        "swipes": stats.swipes.total,
        "top_model": _top_model(stats),
    }


def build_character_rows(collection: StatsCollection) -> list[dict[str, Any]]:
    """Rows for every character, busiest (most messages) first."""
    rows = [build_character_row(s) for s in collection.stats.values()]
    rows.sort(key=lambda r: r["messages"], reverse=True)
    return rows


def save_summary_files(
    rows: list[dict[str, Any]],
    global_row: dict[str, Any],
    output_dir: str = "stats_report",
) -> None:
    """Write character_stats.json/csv and global_stats.json to *output_dir*."""
    os.makedirs(output_dir, exist_ok=True)

    with open(f"{output_dir}/character_stats.json", "w") as f:
        json.dump(rows, f, indent=2)

    with open(f"{output_dir}/global_stats.json", "w") as f:
        json.dump(global_row, f, indent=2)

    with open(f"{output_dir}/character_stats.csv", "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=ROW_FIELDS)
        writer.writeheader()
        writer.writerows(rows)


def _format_ms(ms: float) -> str:
    return f"{ms / 1000:.1f}s"


def print_summary_report(global_row: dict[str, Any], rows: list[dict[str, Any]]) -> None:
    """Print the console summary report to stdout."""
    print(f"\n{'=' * 60}")
    print("Chat Statistics Summary")
    print(f"{'=' * 60}")
    print(f"Characters: {len(rows):,}")
    print(f"Total Chats: {global_row['chats']:,}")
    print(f"Total Messages: {global_row['messages']:,}")
    print(f"  User: {global_row['user_messages']:,}  Character: {global_row['char_messages']:,}")
    print(f"Total Words: {global_row['words']:,}")
    print(f"Generated Tokens: {global_row['gen_tokens']:,}")
    print(f"Total Generation Time: {_format_ms(global_row['gen_time_ms'])}")
    print(f"Avg Generation Time per Message: {_format_ms(global_row['avg_gen_time_ms'])}")
    print(f"Avg User Response Time: {_format_ms(global_row['avg_user_response_ms'])}")
    if global_row["top_model"]:
        print(f"Most Used Model: {global_row['top_model']}")

    if rows:
        print("\nTop 5 Characters by Messages:")
        for row in rows[:5]:
            print(f"  {row['name']}: {row['messages']:,} messages in {row['chats']:,} chats")
    print(f"{'=' * 60}")


def main(snapshot_path: str = "data/stats.json", output_dir: str = "stats_report") -> None:
    """Load the snapshot, export the rows and print the report.

    Exits with status 1 if the snapshot is missing or unusable.
    """
    try:
        collection = load_snapshot(Path(snapshot_path))
    except MissingFileError:
        print(f"Error: {snapshot_path} not found.", file=sys.stderr)
        sys.exit(1)
    except SnapshotCorruptError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    rows = build_character_rows(collection)
    global_row = build_character_row(collection.global_stats)
    save_summary_files(rows, global_row, output_dir)
    print_summary_report(global_row, rows)
    print(f"\nReport files have been saved to the '{output_dir}' directory.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[2])
    parser.add_argument("--snapshot", default="data/stats.json", help="stats snapshot to read")
    parser.add_argument("--output-dir", default="stats_report", help="directory for report files")
    args = parser.parse_args()
    main(args.snapshot, args.output_dir)
