from __future__ import annotations

from pathlib import Path

from fontshelf_app.db.repo import Repo
from fontshelf_app.models.entities import Category
from fontshelf_app.utils.app_logging import get_logger

DEFAULT_CATEGORY_NAME = "Local Fonts"
DEFAULT_COLLECTION = {
    "name": "My Projects",
    "description": "Fonts for upcoming work",
    "color": "#3b82f6",
}

logger = get_logger()


def seed(repo: Repo, fonts_dir: Path) -> list[Category]:
    """First-run defaults: a root for fonts_dir and one empty collection."""
    if not fonts_dir.exists():
        fonts_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Created %s", fonts_dir)

    categories = repo.list_categories()
    if not categories:
        categories = [repo.create_category(DEFAULT_CATEGORY_NAME, fonts_dir)]
        logger.info("Seeded '%s' category", DEFAULT_CATEGORY_NAME)

    if not repo.list_collections():
        repo.create_collection(**DEFAULT_COLLECTION)
        logger.info("Seeded '%s' collection", DEFAULT_COLLECTION["name"])

    return categories
