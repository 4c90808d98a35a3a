"""Document loader output models.

A loader turns raw bytes into a :class:`LoadResult`: plain text plus an
optional structural view of it.  The structure is one of

- ``flat``      -- no structure beyond the text itself
- ``paged``     -- ordered :class:`PageInfo` entries (PDF pages, slides)
- ``sectioned`` -- a tree of :class:`SectionInfo` headings (Markdown, Word)

Offsets are character offsets into ``LoadResult.text``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StructureKind(str, Enum):
    FLAT = "flat"
    PAGED = "paged"
    SECTIONED = "sectioned"


class PageInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    page_number: int = Field(ge=1)
    text: str
    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)


class SectionInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: int = Field(ge=1, le=6)
    title: str
    text: str = ""
    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)
    children: list[SectionInfo] = Field(default_factory=list)


class DocumentStructure(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: StructureKind = StructureKind.FLAT
    pages: list[PageInfo] = Field(default_factory=list)
    sections: list[SectionInfo] = Field(default_factory=list)


class LoadResult(BaseModel):
    """Text and structure extracted from one input."""

    model_config = ConfigDict(frozen=True)

    text: str
    title: str | None = None
    mime_type: str
    structure: DocumentStructure = Field(default_factory=DocumentStructure)
    metadata: dict[str, Any] = Field(default_factory=dict)


SectionInfo.model_rebuild()
