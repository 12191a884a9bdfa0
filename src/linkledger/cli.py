"""linkledger CLI — a categorized link list kept in one versioned markdown file.

Commands:
    linkledger init                      create linkledger.toml
    linkledger add URL TITLE             add a link (optionally -c CATEGORY)
    linkledger delete --url/--title      delete one link
    linkledger delete-many -u ... -t ... delete links, prune emptied categories
    linkledger show                      list categories and links
    linkledger check                     report duplicated links
    linkledger repair                    commit a deduplicated ledger
    linkledger status                    store reachability and counts
    linkledger fmt FILE                  canonicalize a local ledger file
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import click

from linkledger import codec
from linkledger.config import build_controller, build_store, init_config, load_config
from linkledger.errors import LedgerError
from linkledger.models import EntryMatch
from linkledger.repair import detect, duplicate_count

if TYPE_CHECKING:
    from linkledger.config import LedgerConfig
    from linkledger.sync import Change, SyncController

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg() -> LedgerConfig:
    try:
        return load_config()
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def _controller(cfg: LedgerConfig) -> SyncController:
    try:
        return build_controller(cfg)
    except LedgerError as exc:
        raise click.ClickException(str(exc)) from exc


def _report(change: Change) -> None:
    if change.repaired:
        click.echo(f"Repaired {len(change.repaired)} duplicated link(s) first", err=True)
    click.echo(change.message)
    if change.attempts > 1:
        click.echo(f"  (committed after {change.attempts} attempts)", err=True)


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="linkledger")
@click.option("-v", "--verbose", count=True, help="-v for INFO logs, -vv for DEBUG")
def cli(verbose: int) -> None:
    """linkledger — categorized links in one versioned markdown file."""
    level = logging.WARNING if verbose == 0 else logging.INFO if verbose == 1 else logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s", datefmt="%H:%M:%S")


# ---------------------------------------------------------------------------
# linkledger init
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--dir", "root", default=".", show_default=True, help="Project root")
@click.option("--backend", default="github", show_default=True, type=click.Choice(["github", "file"]))
def init(root: str, backend: str) -> None:
    """Create linkledger.toml in the current project."""
    root_path = Path(root).resolve()
    try:
        config_path = init_config(root_path, backend=backend)
        click.echo(f"Created {config_path}")
    except FileExistsError:
        click.echo("linkledger.toml already exists — skipping init")


# ---------------------------------------------------------------------------
# linkledger add / delete / delete-many
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("url")
@click.argument("title")
@click.option("--description", "-d", default="", help="One-line description")
@click.option("--category", "-c", default=None, help="Category heading (created if missing)")
def add(url: str, title: str, description: str, category: str | None) -> None:
    """Add a link to the ledger.

    \b
    linkledger add https://foo.com Foo -d "A tool." -c Tools
    """
    ctl = _controller(_load_cfg())
    try:
        change = ctl.add_link(url, title, description, category)
    except LedgerError as exc:
        raise click.ClickException(str(exc)) from exc
    _report(change)


@cli.command()
@click.option("--url", "-u", default=None, help="Match by link target")
@click.option("--title", "-t", default=None, help="Match by link label")
def delete(url: str | None, title: str | None) -> None:
    """Delete the first link matching URL or TITLE (its category is kept)."""
    if not url and not title:
        raise click.UsageError("Pass --url or --title")
    ctl = _controller(_load_cfg())
    try:
        change = ctl.delete_link(reference=url, label=title)
    except LedgerError as exc:
        raise click.ClickException(str(exc)) from exc
    _report(change)


@cli.command("delete-many")
@click.option("--url", "-u", "urls", multiple=True, help="Link target to delete (repeatable)")
@click.option("--title", "-t", "titles", multiple=True, help="Link label to delete (repeatable)")
def delete_many(urls: tuple[str, ...], titles: tuple[str, ...]) -> None:
    """Delete every matching link and prune categories left empty.

    \b
    linkledger delete-many -u https://a.example -t "Old Tool"
    """
    if not urls and not titles:
        raise click.UsageError("Pass at least one --url or --title")
    ctl = _controller(_load_cfg())
    try:
        matches = [EntryMatch(reference=u) for u in urls] + [EntryMatch(label=t) for t in titles]
        change = ctl.delete_links(matches)
    except LedgerError as exc:
        raise click.ClickException(str(exc)) from exc
    _report(change)
    click.echo(f"Deleted {change.deleted_count} link(s) for {len(matches)} request(s)")
    if change.removed_categories:
        click.echo(f"Removed empty categories: {', '.join(change.removed_categories)}")


# ---------------------------------------------------------------------------
# linkledger show / check / repair
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--category", "-c", default=None, help="Only this category")
@click.option("--json", "as_json", is_flag=True, help="Print the parsed ledger as JSON")
def show(category: str | None, as_json: bool) -> None:
    """List categories and links."""
    from rich.console import Console
    from rich.markup import escape
    from rich.table import Table

    ctl = _controller(_load_cfg())
    try:
        doc = ctl.fetch().document
    except LedgerError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(json.dumps(doc.to_dict(), indent=2))
        return

    table = Table(title=doc.title or ctl.path, show_header=True, header_style="bold")
    table.add_column("Category", style="dim", no_wrap=True)
    table.add_column("Link")
    table.add_column("URL", style="cyan")
    table.add_column("Description", style="dim")
    for name, entry in doc.iter_entries():
        if category is not None and name != category.strip():
            continue
        table.add_row(escape(name or "—"), escape(entry.label), escape(entry.reference), escape(entry.description))
    Console().print(table)


@cli.command()
def check() -> None:
    """Report links whose URL appears more than once (exit 1 if any)."""
    ctl = _controller(_load_cfg())
    try:
        doc = ctl.fetch().document
    except LedgerError as exc:
        raise click.ClickException(str(exc)) from exc
    duplicates = detect(doc)
    if not duplicates:
        click.echo(f"OK: {doc.entry_count()} links, no duplicates")
        return
    click.echo(f"{len(duplicates)} duplicated URL(s), {duplicate_count(doc)} extra entries:")
    for ref in sorted(duplicates):
        click.echo(f"  {ref}")
    raise SystemExit(1)


@cli.command()
def repair() -> None:
    """Remove duplicated links (first occurrence wins) and commit."""
    ctl = _controller(_load_cfg())
    try:
        repaired = ctl.repair()
    except LedgerError as exc:
        raise click.ClickException(str(exc)) from exc
    if repaired:
        click.echo(f"Repaired {len(repaired)} duplicated URL(s)")
    else:
        click.echo("Nothing to repair")


# ---------------------------------------------------------------------------
# linkledger status
# ---------------------------------------------------------------------------


@cli.command()
def status() -> None:
    """Show store configuration, reachability and ledger stats."""
    from rich.console import Console
    from rich.table import Table

    cfg = _load_cfg()
    try:
        store = build_store(cfg)
    except LedgerError as exc:
        raise click.ClickException(str(exc)) from exc

    console = Console()
    table = Table(title=f"linkledger — {cfg.ledger.path}", show_header=True, header_style="bold")
    table.add_column("Metric", style="dim", no_wrap=True)
    table.add_column("Value", justify="right")

    from importlib.metadata import version as _pkg_version
    try:
        _ver = _pkg_version("linkledger")
    except Exception:
        _ver = "unknown"
    table.add_row("Version", _ver)
    table.add_row("Config", str(cfg.config_path) if cfg.config_path.exists() else "(defaults)")
    table.add_row("", "")

    report = store.probe(cfg.ledger.path)
    table.add_row("Backend", report["backend"])
    table.add_row("Repository", report["repository"])
    if report.get("branch"):
        table.add_row("Branch", report["branch"])
    table.add_row("Reachable", "[green]yes[/green]" if report["reachable"] else "[red]no[/red]")
    if not report["reachable"]:
        table.add_row("Error", str(report.get("error", "")))
    elif not report["exists"]:
        table.add_row("Ledger", "[yellow]missing[/yellow] (created on first add)")
    else:
        table.add_row("Version token", str(report["version"]))
        table.add_row("Size", f"{report['size']} bytes")
        try:
            doc = build_controller(cfg, store).fetch().document
        except LedgerError as exc:
            raise click.ClickException(str(exc)) from exc
        table.add_row("Categories", str(len(doc.categories)))
        table.add_row("Links", str(doc.entry_count()))
        dupes = duplicate_count(doc)
        table.add_row("Duplicates", f"[red]{dupes}[/red]" if dupes else "0")

    console.print(table)
    if not report["reachable"]:
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# linkledger fmt
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--check", "check_only", is_flag=True, help="Exit 1 if the file is not canonical")
def fmt(file: Path, check_only: bool) -> None:
    """Rewrite a local ledger file in canonical form."""
    try:
        original = file.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise click.ClickException(f"{file} is not valid UTF-8: {exc}") from exc
    formatted = codec.format_text(original)
    if formatted == original:
        click.echo(f"{file}: already canonical")
        return
    if check_only:
        click.echo(f"{file}: would reformat")
        raise SystemExit(1)
    file.write_text(formatted, encoding="utf-8")
    click.echo(f"{file}: reformatted")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    cli(standalone_mode=True)


if __name__ == "__main__":
    main()
