from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from fontshelf_app.db.repo import Repo
from fontshelf_app.models.entities import (
    FaceWithFile,
    FamilyDetail,
    FamilyGroup,
    FontFile,
    SearchParams,
    SearchResult,
)

FAMILY = "family"


def group_by_family(rows: list[FaceWithFile]) -> list[FamilyGroup]:
    """Fold faces into families, keeping first-seen order."""
    grouped: dict[str, list[FaceWithFile]] = {}
    for row in rows:
        grouped.setdefault(row.face.family, []).append(row)
    return [FamilyGroup(family=family, faces=faces) for family, faces in grouped.items()]


class QueryEngine:
    """
    Read side of the catalog. Family groupings are rebuilt from the store on
    every call; nothing is cached between calls.
    """

    def __init__(self, repo: Repo) -> None:
        self.repo = repo

    def search_fonts(self, params: SearchParams | None = None) -> SearchResult:
        params = params or SearchParams()

        rows = self.repo.select_face_rows(
            q=params.q,
            category_id=params.category_id,
            types=params.types,
            italic=params.italic,
            weight_min=params.weight_min,
            weight_max=params.weight_max,
        )

        if params.favorites:
            wanted = self.repo.favorite_targets(FAMILY)
            rows = [r for r in rows if r.face.family in wanted]
        if params.collection_id is not None:
            members = self.repo.collection_targets(params.collection_id, FAMILY)
            rows = [r for r in rows if r.face.family in members]

        families = group_by_family(rows)

        # both sorts are stable: ties keep grouping order
        if params.sort == "name_asc":
            families.sort(key=lambda g: g.family.casefold())
        else:
            families.sort(key=lambda g: g.newest, reverse=True)

        offset = max(0, int(params.offset))
        limit = max(0, int(params.limit))
        return SearchResult(items=families[offset : offset + limit], total=len(families))

    def get_font_family(self, family: str) -> Optional[FamilyDetail]:
        faces = self.repo.faces_for_family(family)
        if not faces:
            return None
        return FamilyDetail(
            family=family,
            faces=faces,
            collections=self.repo.collections_containing(FAMILY, family),
        )

    def resolve_url_key(self, url_key: str) -> Optional[Path]:
        """Absolute path behind a public key, or None if unknown or gone from disk."""
        f = self.repo.get_font_file_by_url_key(url_key)
        if f is None or not os.path.isfile(f.full_path):
            return None
        return Path(f.full_path)

    def list_duplicates(self) -> list[list[FontFile]]:
        return list(self.repo.duplicate_groups().values())
