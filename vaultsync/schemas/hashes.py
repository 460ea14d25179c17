"""Content hash value type."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict


class FileHash(BaseModel):
    """SHA-256 digest of a file body. The only hash representation the engine uses."""

    model_config = ConfigDict(frozen=True)

    algorithm: Literal["sha256"] = "sha256"
    value: str

    def __str__(self) -> str:
        return self.value

    @property
    def short(self) -> str:
        return self.value[:12]


def coerce_hash(raw: Any) -> Any:
    """Normalize a bare hex digest into the ``FileHash`` mapping shape.

    Older records and third-party writers store hashes as plain strings;
    everything past the load boundary sees ``FileHash`` only.
    """
    if isinstance(raw, str):
        return {"algorithm": "sha256", "value": raw} if raw else None
    return raw


HashField = Annotated[FileHash | None, BeforeValidator(coerce_hash)]
