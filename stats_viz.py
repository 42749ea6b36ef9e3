"""Render per-character charts from the CSV written by stats_summary.py."""

from __future__ import annotations

import argparse
import os

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import pandas as pd  # noqa: E402
import seaborn as sns  # noqa: E402

TOP_N = 20


def load_character_frame(csv_path: str) -> pd.DataFrame:
    """Read the character CSV, busiest characters first, at most TOP_N rows."""
    df = pd.read_csv(csv_path)
    df["name"] = df["name"].astype(str)
    df["avg_gen_time_s"] = df["avg_gen_time_ms"] / 1000
    df["avg_user_response_s"] = df["avg_user_response_ms"] / 1000
    return df.sort_values("messages", ascending=False).head(TOP_N)


def _bar_chart(df: pd.DataFrame, column: str, title: str, ylabel: str, path: str) -> None:
    plt.figure(figsize=(15, 8))
    sns.barplot(data=df, x="name", y=column, color="skyblue")
    plt.title(title, fontsize=14, pad=20)
    plt.xlabel("Character", fontsize=12)
    plt.ylabel(ylabel, fontsize=12)
    plt.grid(True, alpha=0.3, axis="y")
    plt.xticks(rotation=45, ha="right")
    plt.tight_layout()
    plt.savefig(path, dpi=150, bbox_inches="tight")
    plt.close()


def render_charts(csv_path: str, output_dir: str) -> list[str]:
    """Write the chart PNGs into *output_dir* and return their paths."""
    df = load_character_frame(csv_path)
    os.makedirs(output_dir, exist_ok=True)

    charts = [
        ("messages", "Messages per Character", "Messages", "character_messages.png"),
        ("avg_gen_time_s", "Average Generation Time per Message", "Seconds", "character_gen_time.png"),
        ("avg_user_response_s", "Average User Response Time", "Seconds", "character_response_time.png"),
    ]
    paths = []
    for column, title, ylabel, filename in charts:
        path = os.path.join(output_dir, filename)
        _bar_chart(df, column, title, ylabel, path)
        paths.append(path)
    return paths


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--csv", default="stats_report/character_stats.csv")
    parser.add_argument("--output-dir", default="stats_report")
    args = parser.parse_args()
    for written in render_charts(args.csv, args.output_dir):
        print(f"Saved {written}")
