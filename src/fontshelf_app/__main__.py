from __future__ import annotations

import argparse
import threading
from dataclasses import dataclass
from typing import Optional, Sequence

from rich.console import Console
from rich.table import Table

from fontshelf_app.db.repo import CatalogError, Repo
from fontshelf_app.models.entities import SearchParams
from fontshelf_app.services.catalog import seed
from fontshelf_app.services.scanner import Scanner
from fontshelf_app.services.search import QueryEngine
from fontshelf_app.services.watcher import WatcherBridge
from fontshelf_app.utils.app_logging import install_excepthooks, setup_logging
from fontshelf_app.utils.paths import db_path, ensure_app_dirs, fonts_dir
from fontshelf_app.utils.settings import AppSettings, load_settings

console = Console()


@dataclass
class App:
    settings: AppSettings
    repo: Repo
    scanner: Scanner
    engine: QueryEngine

    def close(self) -> None:
        self.repo.close()


def open_app(settings: Optional[AppSettings] = None) -> App:
    settings = settings or load_settings()
    repo = Repo(db_path())
    seed(repo, fonts_dir())
    scanner = Scanner(
        repo,
        workers=settings.scan_workers,
        write_policy=settings.write_policy,
    )
    return App(settings=settings, repo=repo, scanner=scanner, engine=QueryEngine(repo))


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fontshelf", description="Index and search local font files.")
    sub = p.add_subparsers(dest="command", required=True)

    roots = sub.add_parser("roots", help="Manage watched directories")
    roots_sub = roots.add_subparsers(dest="action", required=True)
    add = roots_sub.add_parser("add")
    add.add_argument("name")
    add.add_argument("path")
    roots_sub.add_parser("list")
    rm = roots_sub.add_parser("remove")
    rm.add_argument("id", type=int)

    scan = sub.add_parser("scan", help="Rescan every root, or one category")
    scan.add_argument("--category", type=int)

    sub.add_parser("watch", help="Scan, then follow filesystem changes until Ctrl+C")

    search = sub.add_parser("search", help="Search font families")
    search.add_argument("-q", "--query")
    search.add_argument("--category", type=int)
    search.add_argument("--collection", type=int)
    search.add_argument("--favorites", action="store_true")
    search.add_argument("--types", help="comma separated extensions, e.g. ttf,otf")
    style = search.add_mutually_exclusive_group()
    style.add_argument("--italic", dest="italic", action="store_true", default=None)
    style.add_argument("--upright", dest="italic", action="store_false")
    search.add_argument("--weight-min", type=int)
    search.add_argument("--weight-max", type=int)
    search.add_argument("--sort", choices=("recent", "name_asc"), default="recent")
    search.add_argument("--page", type=int, default=1)
    search.add_argument("--page-size", type=int, default=50)

    family = sub.add_parser("family", help="Show every face of a family")
    family.add_argument("name")

    resolve = sub.add_parser("resolve", help="Map a public URL key to its file")
    resolve.add_argument("url_key")

    sub.add_parser("duplicates", help="List files with identical content")

    fav = sub.add_parser("favorite", help="Toggle a family as favorite")
    fav.add_argument("family")

    cols = sub.add_parser("collections", help="Manage collections")
    cols_sub = cols.add_subparsers(dest="action", required=True)
    cols_sub.add_parser("list")
    create = cols_sub.add_parser("create")
    create.add_argument("name")
    create.add_argument("--description")
    create.add_argument("--color")
    for action in ("add", "remove"):
        item = cols_sub.add_parser(action)
        item.add_argument("id", type=int)
        item.add_argument("family")

    return p


def _cmd_roots(app: App, args: argparse.Namespace) -> int:
    if args.action == "add":
        cat = app.repo.create_category(args.name, args.path)
        console.print(f"[green]Added[/green] {cat.name} ({cat.path})")
        result = app.scanner.scan_category(cat.id, cat.path, progress=console.print)
        console.print(f"Indexed {result.indexed} file(s).")
    elif args.action == "list":
        table = Table("ID", "Name", "Path", "Status", "Error")
        for cat in app.repo.list_categories():
            color = "green" if cat.status == "ok" else "red"
            table.add_row(str(cat.id), cat.name, cat.path, f"[{color}]{cat.status}[/{color}]", cat.last_error or "")
        console.print(table)
    elif args.action == "remove":
        if not app.repo.delete_category(args.id):
            console.print(f"[red]Unknown category:[/red] {args.id}")
            return 1
        console.print(f"Removed category {args.id}")
    return 0


def _cmd_scan(app: App, args: argparse.Namespace) -> int:
    if args.category is not None:
        cat = app.repo.get_category(args.category)
        if cat is None:
            console.print(f"[red]Unknown category:[/red] {args.category}")
            return 1
        result = app.scanner.scan_category(cat.id, cat.path, progress=console.print)
    else:
        with console.status("[bold cyan]Scanning…[/bold cyan]"):
            result = app.scanner.scan_all(progress=console.print)
    if result is None:
        console.print("[yellow]A scan is already running.[/yellow]")
        return 0
    console.print(
        f"[bold green]Done.[/bold green] files={result.files_seen} indexed={result.indexed} "
        f"unchanged={result.unchanged} failed={result.failed}"
    )
    for category_id in result.missing_categories:
        console.print(f"[yellow]Category {category_id} is missing on disk.[/yellow]")
    for category_id in result.error_categories:
        console.print(f"[red]Category {category_id} could not be read.[/red]")
    return 0


def _cmd_watch(app: App, args: argparse.Namespace) -> int:
    if not app.settings.watch:
        console.print("[yellow]Watching is disabled in settings; running a single scan.[/yellow]")
        return _cmd_scan(app, argparse.Namespace(category=None))

    bridge = WatcherBridge(app.repo, app.scanner)
    bridge.start()
    full_scan = threading.Thread(target=app.scanner.scan_all, name="full-scan")
    full_scan.start()
    console.print("[bold cyan]Watching for changes. Ctrl+C to stop.[/bold cyan]")
    stop = threading.Event()
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        console.print("\n[bold yellow]Stopping…[/bold yellow]")
    finally:
        bridge.stop()
        full_scan.join()
    return 0


def _cmd_search(app: App, args: argparse.Namespace) -> int:
    page_size = max(1, args.page_size)
    params = SearchParams(
        q=args.query,
        category_id=args.category,
        collection_id=args.collection,
        favorites=args.favorites,
        types=tuple(t for t in (args.types or "").split(",") if t),
        italic=args.italic,
        weight_min=args.weight_min,
        weight_max=args.weight_max,
        sort=args.sort,
        limit=page_size,
        offset=(max(1, args.page) - 1) * page_size,
    )
    result = app.engine.search_fonts(params)
    table = Table("Family", "Faces", "Styles", title=f"{result.total} famil{'y' if result.total == 1 else 'ies'}")
    for group in result.items:
        styles = ", ".join(sorted({f.face.subfamily for f in group.faces}))
        table.add_row(group.family, str(len(group.faces)), styles)
    console.print(table)
    return 0


def _cmd_family(app: App, args: argparse.Namespace) -> int:
    detail = app.engine.get_font_family(args.name)
    if detail is None:
        console.print(f"[red]Family not found:[/red] {args.name}")
        return 1
    table = Table("Style", "Weight", "Italic", "PostScript", "File", "URL key", title=detail.family)
    for row in detail.faces:
        table.add_row(
            row.face.subfamily,
            str(row.face.weight),
            "yes" if row.face.italic else "",
            row.face.postscript_name or "",
            row.file.rel_path,
            row.file.url_key,
        )
    console.print(table)
    if detail.collections:
        console.print(f"Collections: {', '.join(str(c) for c in detail.collections)}")
    return 0


def _cmd_resolve(app: App, args: argparse.Namespace) -> int:
    path = app.engine.resolve_url_key(args.url_key)
    if path is None:
        console.print(f"[red]Not found:[/red] {args.url_key}")
        return 1
    console.print(str(path))
    return 0


def _cmd_duplicates(app: App, args: argparse.Namespace) -> int:
    groups = app.engine.list_duplicates()
    if not groups:
        console.print("No duplicates.")
    for files in groups:
        console.print(f"[bold]{files[0].sha1}[/bold]")
        for f in files:
            console.print(f"  {f.full_path}")
    return 0


def _cmd_favorite(app: App, args: argparse.Namespace) -> int:
    on = app.repo.toggle_favorite("family", args.family)
    console.print(f"{args.family}: {'favorite' if on else 'not favorite'}")
    return 0


def _cmd_collections(app: App, args: argparse.Namespace) -> int:
    if args.action == "list":
        table = Table("ID", "Name", "Items", "Description")
        for c in app.repo.list_collections():
            table.add_row(str(c.id), c.name, str(c.count), c.description or "")
        console.print(table)
    elif args.action == "create":
        c = app.repo.create_collection(args.name, args.description, args.color)
        console.print(f"Created collection {c.id}: {c.name}")
    elif args.action == "add":
        app.repo.add_collection_item(args.id, "family", args.family)
        console.print(f"Added {args.family} to collection {args.id}")
    elif args.action == "remove":
        app.repo.remove_collection_item(args.id, "family", args.family)
        console.print(f"Removed {args.family} from collection {args.id}")
    return 0


_COMMANDS = {
    "roots": _cmd_roots,
    "scan": _cmd_scan,
    "watch": _cmd_watch,
    "search": _cmd_search,
    "family": _cmd_family,
    "resolve": _cmd_resolve,
    "duplicates": _cmd_duplicates,
    "favorite": _cmd_favorite,
    "collections": _cmd_collections,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    ensure_app_dirs()
    settings = load_settings()
    setup_logging(settings.log_level_value)
    install_excepthooks()

    app = open_app(settings)
    try:
        return _COMMANDS[args.command](app, args)
    except CatalogError as e:
        console.print(f"[red]{e}[/red]")
        return 1
    finally:
        app.close()


if __name__ == "__main__":
    raise SystemExit(main())
