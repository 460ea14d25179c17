"""Change event schemas: the records stored in the append-only history logs."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from vaultsync.schemas.hashes import FileHash, HashField


class ChangeType(StrEnum):
    """Kind of filesystem change an event records."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


class EventOrigin(StrEnum):
    """Replica that produced the change."""

    LOCAL = "local"
    REMOTE = "remote"


class FileChange(BaseModel):
    """What happened to one vault file."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(min_length=1)
    change_type: ChangeType
    hash: HashField = None
    size: int | None = Field(default=None, ge=0)
    mtime: float | None = None


class InlineText(BaseModel):
    """UTF-8 body carried inside the event itself."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["inline"] = "inline"
    text: str


class BlobRef(BaseModel):
    """Body stored in the content-addressed blob store."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["blob"] = "blob"
    hash: FileHash


EventContent = Annotated[InlineText | BlobRef, Field(discriminator="kind")]


class ChangeEvent(BaseModel):
    """One immutable entry of a history log."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    occurred_at: str
    origin: EventOrigin = EventOrigin.LOCAL
    change: FileChange
    content: EventContent | None = None

    @property
    def path(self) -> str:
        return self.change.path

    @property
    def is_deletion(self) -> bool:
        return self.change.change_type == ChangeType.DELETED

    def to_line(self) -> str:
        """Serialize as one JSONL record."""
        return self.model_dump_json(exclude_none=True)
