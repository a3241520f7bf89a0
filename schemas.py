"""Pydantic schemas for the canonical Work and its JSON wire form."""
import json
from typing import Optional, Set, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from models import ChapterStatus


class Chapter(BaseModel):
    """One chapter in TOC order."""
    title: str
    index: int = Field(..., ge=1, description="1-based position in the Work")
    body: str = Field("", description="Plain text or restricted HTML (paragraph markup only)")
    status: ChapterStatus = ChapterStatus.OK
    source_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("sourceUrl", "source_url"),
        serialization_alias="sourceUrl",
    )

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @property
    def is_ok(self) -> bool:
        return self.status == ChapterStatus.OK


class Work(BaseModel):
    """
    Canonical book: metadata plus ordered chapters.

    Every spider produces this shape and every writer consumes it; writers
    never see site-specific structures.
    """
    title: str
    author: str
    description: Optional[str] = None
    cover_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("coverUrl", "cover_url"),
        serialization_alias="coverUrl",
    )
    chapters: Tuple[Chapter, ...] = ()
    source_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("sourceUrl", "source_url"),
        serialization_alias="sourceUrl",
    )

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @model_validator(mode="after")
    def _check_unique_indices(self) -> "Work":
        seen: Set[int] = set()
        for chapter in self.chapters:
            if chapter.index in seen:
                raise ValueError(f"duplicate chapter index {chapter.index}")
            seen.add(chapter.index)
        return self

    def to_wire(self) -> dict:
        """
        Serialize to the canonical wire form.

        Optional fields are omitted when unset and chapter ``status`` is only
        written for non-ok chapters, so files stay readable by older readers.
        """
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        for chapter in data.get("chapters", []):
            if chapter.get("status") == ChapterStatus.OK.value:
                del chapter["status"]
        return data

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False, indent=indent)

    @classmethod
    def from_json(cls, text: str) -> "Work":
        return cls.model_validate_json(text)
