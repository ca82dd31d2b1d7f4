"""Tests for the filesystem watcher bridge."""

import os
import threading
import time

import pytest
from helpers import make_font_bytes, write_font
from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)
from watchdog.observers.polling import PollingObserver

from fontshelf_app.models.entities import SearchParams, WatchEvent
from fontshelf_app.services.parser import parse_font
from fontshelf_app.services.scanner import Scanner
from fontshelf_app.services.watcher import WatcherBridge, is_hidden, normalize_event


def _wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class TestNormalizeEvent:
    @pytest.mark.parametrize(
        "event, expected",
        [
            (FileCreatedEvent("/r/a.ttf"), [WatchEvent("add", "/r/a.ttf")]),
            (FileModifiedEvent("/r/a.ttf"), [WatchEvent("change", "/r/a.ttf")]),
            (FileDeletedEvent("/r/a.ttf"), [WatchEvent("remove", "/r/a.ttf")]),
            (DirDeletedEvent("/r/sub"), [WatchEvent("remove", "/r/sub")]),
            (DirCreatedEvent("/r/sub"), []),
            (DirModifiedEvent("/r/sub"), []),
        ],
    )
    def test_simple_events(self, event, expected):
        assert normalize_event(event) == expected

    def test_file_move_is_remove_then_add(self):
        got = normalize_event(FileMovedEvent("/r/a.ttf.tmp", "/r/a.ttf"))

        assert got == [WatchEvent("remove", "/r/a.ttf.tmp"), WatchEvent("add", "/r/a.ttf")]

    def test_directory_move_removes_old_tree(self):
        assert normalize_event(DirMovedEvent("/r/old", "/r/new")) == [WatchEvent("remove", "/r/old")]


class TestHidden:
    def test_dot_component_below_root(self):
        assert is_hidden("/r/.cache/a.ttf", ["/r"])
        assert is_hidden("/r/.a.ttf", ["/r"])
        assert not is_hidden("/r/sub/a.ttf", ["/r"])

    def test_dotted_root_itself_is_fine(self):
        assert not is_hidden("/home/me/.fonts/a.ttf", ["/home/me/.fonts"])


@pytest.fixture
def bridge(repo, scanner):
    return WatcherBridge(repo, scanner, observer=PollingObserver(timeout=0.1))


class TestHandle:
    def test_add_indexes_file(self, bridge, repo, category, fonts_root):
        p = write_font(fonts_root / "Inter.ttf", make_font_bytes("Inter"))

        bridge.handle(WatchEvent("add", str(p)))

        assert repo.get_font_file_by_path(str(p)).category_id == category.id

    def test_change_reindexes(self, bridge, repo, category, fonts_root):
        p = write_font(fonts_root / "Inter.ttf", make_font_bytes("Inter"), 1_000_000_000)
        bridge.handle(WatchEvent("add", str(p)))
        write_font(p, make_font_bytes("Inter", "Bold", weight=700), 2_000_000_000)

        bridge.handle(WatchEvent("change", str(p)))

        f = repo.get_font_file_by_path(str(p))
        assert [x.weight for x in repo.faces_for_file(f.id)] == [700]

    def test_remove_drops_family_from_search(self, bridge, repo, engine, category, fonts_root):
        a = write_font(fonts_root / "Inter-Regular.ttf", make_font_bytes("Inter"))
        b = write_font(fonts_root / "Inter-Bold.ttf", make_font_bytes("Inter", "Bold", weight=700))
        bridge.handle(WatchEvent("add", str(a)))
        bridge.handle(WatchEvent("add", str(b)))

        a.unlink()
        bridge.handle(WatchEvent("remove", str(a)))
        assert [len(g.faces) for g in engine.search_fonts(SearchParams()).items] == [1]

        b.unlink()
        bridge.handle(WatchEvent("remove", str(b)))
        assert engine.search_fonts(SearchParams()).total == 0
        assert repo.orphan_face_count() == 0

    def test_removed_directory_drops_its_files(self, bridge, repo, category, fonts_root):
        keep = write_font(fonts_root / "keep.ttf", make_font_bytes("Keep"))
        for name in ("A", "B"):
            p = write_font(fonts_root / "sub" / f"{name}.ttf", make_font_bytes(name))
            bridge.handle(WatchEvent("add", str(p)))
        bridge.handle(WatchEvent("add", str(keep)))

        bridge.handle(WatchEvent("remove", str(fonts_root / "sub")))

        assert [f.full_path for f in repo.list_font_files()] == [str(keep)]

    def test_untracked_path_is_ignored(self, bridge, repo, category, tmp_path):
        p = write_font(tmp_path / "elsewhere" / "Inter.ttf", make_font_bytes("Inter"))

        bridge.handle(WatchEvent("add", str(p)))

        assert repo.list_font_files() == []

    def test_hidden_path_is_ignored(self, bridge, repo, category, fonts_root):
        p = write_font(fonts_root / ".trash" / "Inter.ttf", make_font_bytes("Inter"))

        bridge.handle(WatchEvent("add", str(p)))

        assert repo.list_font_files() == []

    def test_category_not_ok_is_ignored(self, bridge, repo, category, fonts_root):
        repo.set_category_status(category.id, "error", "boom")
        p = write_font(fonts_root / "Inter.ttf", make_font_bytes("Inter"))

        bridge.handle(WatchEvent("add", str(p)))

        assert repo.list_font_files() == []

    def test_longest_prefix_wins(self, bridge, repo, category, fonts_root):
        inner = repo.create_category("Inner", fonts_root / "inner")
        p = write_font(fonts_root / "inner" / "Inter.ttf", make_font_bytes("Inter"))

        bridge.handle(WatchEvent("add", str(p)))

        f = repo.get_font_file_by_path(str(p))
        assert f.category_id == inner.id
        assert f.rel_path == "Inter.ttf"

    def test_sibling_with_shared_prefix_is_not_owned(self, bridge, repo, category, fonts_root):
        p = write_font(fonts_root.parent / (fonts_root.name + "-other") / "Inter.ttf", make_font_bytes("Inter"))

        assert bridge.resolve_category(str(p)) is None


def test_live_observer_follows_changes(bridge, repo, category, fonts_root):
    bridge.start()
    try:
        target = fonts_root / "Inter.ttf"
        tmp = fonts_root / "Inter.ttf.part"
        tmp.write_bytes(make_font_bytes("Inter"))
        os.replace(tmp, target)

        assert _wait_for(lambda: repo.get_font_file_by_path(str(target)) is not None)
        assert repo.get_font_file_by_path(str(tmp)) is None

        target.unlink()
        assert _wait_for(lambda: repo.get_font_file_by_path(str(target)) is None)
    finally:
        bridge.stop()


def test_missing_root_is_not_watched(bridge, repo, tmp_path):
    cat = repo.create_category("Gone", tmp_path / "gone")

    assert bridge.watch_category(cat) is False


@pytest.mark.parametrize("policy", ["last_write_wins", "per_path"])
def test_remove_during_slow_parse_leaves_no_row(repo, category, fonts_root, policy):
    p = write_font(fonts_root / "Inter-Regular.ttf", make_font_bytes("Inter"))
    entered = threading.Event()
    release = threading.Event()

    def slow_parser(data):
        entered.set()
        assert release.wait(10)
        return parse_font(data)

    scanner = Scanner(repo, parser=slow_parser, write_policy=policy)
    bridge = WatcherBridge(repo, scanner, observer=PollingObserver(timeout=0.1))

    indexing = threading.Thread(target=scanner.process_file, args=(str(p), category.id, str(fonts_root)))
    indexing.start()
    assert entered.wait(10)

    os.remove(p)
    removing = threading.Thread(target=bridge.handle, args=(WatchEvent("remove", str(p)),))
    removing.start()
    release.set()
    indexing.join(10)
    removing.join(10)

    assert repo.get_font_file_by_path(str(p)) is None
    assert repo.orphan_face_count() == 0
