from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional

CategoryStatus = Literal["ok", "missing", "error"]
TargetType = Literal["family", "face", "file"]
WatchKind = Literal["add", "change", "remove"]
SortKey = Literal["name_asc", "recent"]


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    path: str  # absolute root directory
    status: CategoryStatus = "ok"
    last_error: Optional[str] = None
    created_at: float | None = None
    updated_at: float | None = None


@dataclass(frozen=True)
class FontFile:
    id: int
    category_id: int
    full_path: str
    rel_path: str
    filename: str
    ext: str  # lowercase, no dot
    size_bytes: int
    mtime_ms: int
    sha1: str
    url_key: str
    duplicate_group_key: Optional[str] = None
    created_at: float | None = None
    updated_at: float | None = None


@dataclass(frozen=True)
class FontFace:
    id: int
    font_file_id: int
    family: str
    subfamily: str
    postscript_name: Optional[str] = None
    weight: int = 400
    italic: bool = False
    stretch: Optional[str] = None
    version: Optional[str] = None
    full_name: Optional[str] = None
    created_at: float | None = None


@dataclass(frozen=True)
class FaceWithFile:
    face: FontFace
    file: FontFile

    @property
    def family(self) -> str:
        return self.face.family


@dataclass(frozen=True)
class Favorite:
    id: int
    target_type: str
    target_id: str
    created_at: float | None = None


@dataclass(frozen=True)
class Collection:
    id: int
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    count: int = 0
    created_at: float | None = None
    updated_at: float | None = None


@dataclass(frozen=True)
class CollectionItem:
    id: int
    collection_id: int
    target_type: str
    target_id: str
    created_at: float | None = None


@dataclass(frozen=True)
class FaceDescriptor:
    """One face as reported by the container parser, before it gets an id."""

    family: str
    subfamily: str = "Regular"
    weight: int = 400
    italic: bool = False
    postscript_name: Optional[str] = None
    stretch: Optional[str] = None
    version: Optional[str] = None
    full_name: Optional[str] = None


@dataclass(frozen=True)
class NewFontFile:
    """Attributes of a FontFile about to be inserted."""

    category_id: int
    full_path: str
    rel_path: str
    filename: str
    ext: str
    size_bytes: int
    mtime_ms: int
    sha1: str
    url_key: str
    fallback_url_key: Optional[str] = None


@dataclass(frozen=True)
class SearchParams:
    q: Optional[str] = None
    category_id: Optional[int] = None
    collection_id: Optional[int] = None
    favorites: bool = False
    types: tuple[str, ...] = ()  # extension allow-list, empty = any
    italic: Optional[bool] = None
    weight_min: Optional[int] = None
    weight_max: Optional[int] = None
    sort: SortKey = "recent"
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True)
class FamilyGroup:
    family: str
    faces: list[FaceWithFile] = field(default_factory=list)

    @property
    def newest(self) -> float:
        return max((f.face.created_at or 0.0) for f in self.faces) if self.faces else 0.0


@dataclass(frozen=True)
class SearchResult:
    items: list[FamilyGroup]
    total: int


@dataclass(frozen=True)
class FamilyDetail:
    family: str
    faces: list[FaceWithFile]
    collections: list[int]


@dataclass(frozen=True)
class WatchEvent:
    kind: WatchKind
    path: str
