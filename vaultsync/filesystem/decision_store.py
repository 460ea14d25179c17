"""Persisted conflict decisions, one per path."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from vaultsync.exceptions import LogParseError
from vaultsync.filesystem.layout import atomic_write_text
from vaultsync.schemas.state import ConflictDecision, ConflictStrategy, DecisionsFile

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

DECISIONS_FILE_NAME = "decisions.json"


class ConflictDecisionStore:
    """Stores the resolution strategy chosen for each conflicted path."""

    def __init__(self, conflicts_dir: Path) -> None:
        self.conflicts_dir = conflicts_dir

    @property
    def decisions_file(self) -> Path:
        return self.conflicts_dir / DECISIONS_FILE_NAME

    def list(self) -> list[ConflictDecision]:
        if not self.decisions_file.is_file():
            return []
        raw = self.decisions_file.read_text(encoding="utf-8")
        if not raw.strip():
            return []
        try:
            return DecisionsFile.model_validate_json(raw).decisions
        except ValidationError as exc:
            raise LogParseError(f"Corrupt decisions file {self.decisions_file}: {exc}") from exc

    def _write(self, decisions: list[ConflictDecision]) -> None:
        payload = DecisionsFile(decisions=decisions).model_dump_json(indent=2)
        atomic_write_text(self.decisions_file, payload + "\n")

    def get(self, path: str) -> ConflictDecision | None:
        for decision in self.list():
            if decision.path == path:
                return decision
        return None

    def set(self, path: str, strategy: ConflictStrategy | str) -> ConflictDecision:
        """Record ``strategy`` for ``path``, replacing any earlier decision."""
        decision = ConflictDecision(path=path, strategy=ConflictStrategy(strategy))
        kept = [d for d in self.list() if d.path != path]
        kept.append(decision)
        self._write(kept)
        logger.info("Conflict decision for %s: %s", path, decision.strategy)
        return decision

    def remove(self, path: str) -> bool:
        decisions = self.list()
        kept = [d for d in decisions if d.path != path]
        if len(kept) == len(decisions):
            return False
        self._write(kept)
        return True
