"""Append-only, day-partitioned change event log."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from vaultsync.exceptions import LogParseError
from vaultsync.filesystem.layout import append_lines
from vaultsync.schemas.events import ChangeEvent
from vaultsync.services.datetime_service import partition_name

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)

PARTITION_SUFFIX = ".jsonl"


def parse_event_line(line: str) -> ChangeEvent:
    """Parse one JSONL record. Raises LogParseError on malformed input."""
    try:
        return ChangeEvent.model_validate_json(line)
    except ValidationError as exc:
        raise LogParseError(f"Malformed event record: {exc.error_count()} error(s)") from exc


def iter_partition_lines(text: str) -> Iterator[tuple[int, str]]:
    """Yield ``(index, line)`` for non-blank lines; indexes are cursor offsets."""
    index = 0
    for raw in text.splitlines():
        if not raw.strip():
            continue
        yield index, raw
        index += 1


def parse_partition(text: str, source: str) -> list[tuple[int, ChangeEvent]]:
    """Parse a partition body, skipping malformed lines with a warning."""
    events: list[tuple[int, ChangeEvent]] = []
    for index, line in iter_partition_lines(text):
        try:
            events.append((index, parse_event_line(line)))
        except LogParseError as exc:
            logger.warning("Skipping line %d of %s: %s", index, source, exc)
    return events


class HistoryRepository:
    """Local source of truth: every observed change, one JSON line per event.

    Partitions are ``history/YYYY-MM-DD.jsonl`` keyed by the UTC date the
    event occurred, so filename order is chronological order.
    """

    def __init__(self, history_dir: Path) -> None:
        self.history_dir = history_dir

    def ensure_structure(self) -> None:
        self.history_dir.mkdir(parents=True, exist_ok=True)

    def partition_path(self, partition: str) -> Path:
        return self.history_dir / f"{partition}{PARTITION_SUFFIX}"

    def list_partitions(self) -> list[str]:
        if not self.history_dir.is_dir():
            return []
        return sorted(
            p.name.removesuffix(PARTITION_SUFFIX)
            for p in self.history_dir.iterdir()
            if p.is_file() and p.name.endswith(PARTITION_SUFFIX)
        )

    def append(self, event: ChangeEvent) -> None:
        """Durably append one event to the partition of its occurrence date."""
        self.ensure_structure()
        target = self.partition_path(partition_name(event.occurred_at))
        append_lines(target, event.to_line() + "\n")

    def extend(self, events: list[ChangeEvent]) -> None:
        for event in events:
            self.append(event)

    def replay(self) -> list[ChangeEvent]:
        """All valid events in partition order; malformed lines are skipped."""
        events: list[ChangeEvent] = []
        for partition in self.list_partitions():
            path = self.partition_path(partition)
            text = path.read_text(encoding="utf-8", errors="replace")
            events.extend(event for _, event in parse_partition(text, path.name))
        return events

    def known_ids(self) -> set[str]:
        return {event.id for event in self.replay()}
