"""
Pytest configuration and fixtures for the catalog tests.
"""

from pathlib import Path

import pytest

from fontshelf_app.db.repo import Repo
from fontshelf_app.services.scanner import Scanner
from fontshelf_app.services.search import QueryEngine


class StepClock:
    """Deterministic clock: every reading is one step later than the last."""

    def __init__(self, start: float = 1_000.0, step: float = 1.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


@pytest.fixture(autouse=True)
def app_home(tmp_path, monkeypatch):
    """Point the application root at a temp dir."""
    home = tmp_path / "home"
    monkeypatch.setenv("FONTSHELF_HOME", str(home))
    return home


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def repo(tmp_path, clock):
    r = Repo(tmp_path / "catalog.db", clock=clock)
    yield r
    r.close()


@pytest.fixture
def scanner(repo):
    return Scanner(repo)


@pytest.fixture
def engine(repo):
    return QueryEngine(repo)


@pytest.fixture
def fonts_root(tmp_path) -> Path:
    root = tmp_path / "fonts"
    root.mkdir()
    return root


@pytest.fixture
def category(repo, fonts_root):
    return repo.create_category("Local Fonts", fonts_root)
