"""CLI entry point for the meme search tool."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional

import click
from rich.console import Console

from memesearch.models import SearchOutcome, SearchState
from memesearch.session import SearchSession, SessionListener

console = Console()
logger = logging.getLogger(__name__)


@click.group()
@click.version_option(package_name="memesearch")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def cli(verbose: bool):
    """memesearch - Find reaction memes by describing them."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# memesearch env
# ---------------------------------------------------------------------------


@cli.group(invoke_without_command=True)
@click.pass_context
def env(ctx):
    """Show or configure settings.

    Run without arguments to see current status.
    Use `memesearch env set KEY value` to save a setting to ~/.memesearch/.env.
    """
    if ctx.invoked_subcommand is not None:
        return

    from memesearch.config import PERSISTENT_ENV, check_env

    statuses = check_env()
    console.print("Settings:")
    console.print()
    for var, is_set, info in statuses:
        status = "[green]set[/green]" if is_set else "[dim]not set[/dim]"
        console.print(f"  {var}: {status}")
        console.print(f"    {info['description']}")
        console.print(f"    Used by: {', '.join(info['used_by'])}", style="dim")
        console.print()

    console.print(f"Config file: {PERSISTENT_ENV}", style="dim")


@env.command("set")
@click.argument("key")
@click.argument("value")
def env_set(key: str, value: str):
    """Save a setting to ~/.memesearch/.env.

    KEY: one of MEMESEARCH_API_BASE, MEMESEARCH_API_TOKEN, API_TIMEOUT
    VALUE: the setting value
    """
    from memesearch.config import VALID_KEYS, save_key

    key = key.upper()
    if key not in VALID_KEYS:
        console.print(f"[red]Unknown key: {key}[/red]")
        console.print(f"Valid keys: {', '.join(sorted(VALID_KEYS))}")
        raise SystemExit(1)

    path = save_key(key, value)
    console.print(f"Saved {key} to {path}")


# ---------------------------------------------------------------------------
# memesearch search
# ---------------------------------------------------------------------------


class _ConsoleListener(SessionListener):
    """Prints a progress line each time the search moves to a new stage."""

    def __init__(self) -> None:
        self._last_stage: Optional[str] = None

    def state_changed(self, state: SearchState) -> None:
        from memesearch.renderer import render_progress

        if state.finished or state.stage == self._last_stage:
            return
        self._last_stage = state.stage
        render_progress(state)


async def _run_stream_search(session: SearchSession, query: str, limit: int) -> SearchOutcome:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, session.cancel)
    except (NotImplementedError, RuntimeError, ValueError):
        # No signal handlers on this platform; Ctrl-C raises KeyboardInterrupt
        pass
    try:
        return await session.start_search(query, limit)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError, ValueError):
            pass


def _render_outcome(outcome: SearchOutcome) -> None:
    from memesearch.renderer import render_fallback_notice, render_search_results

    if outcome.cancelled:
        console.print("Search cancelled.", style="dim")
        return
    if outcome.used_fallback:
        render_fallback_notice(outcome.error or "unknown error")
        render_search_results(outcome.results, source="curated memes")
        return
    render_search_results(outcome.results, total=outcome.total)


@cli.command()
@click.argument("query")
@click.option("--limit", "-n", default=20, help="Number of results.")
@click.option("--category", default=None, help="Category filter (plain search only).")
@click.option("--no-stream", is_flag=True, help="Use the plain search endpoint without progress.")
def search(query: str, limit: int, category: Optional[str], no_stream: bool):
    """Search memes by description.

    QUERY: what the meme should look like, e.g. '一只无语的猫'
    """
    if no_stream or category:
        _plain_search(query, limit, category)
        return

    session = SearchSession(listener=_ConsoleListener())
    try:
        outcome = asyncio.run(_run_stream_search(session, query, limit))
    except KeyboardInterrupt:
        console.print("Search cancelled.", style="dim")
        return
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)
    _render_outcome(outcome)


def _plain_search(query: str, limit: int, category: Optional[str]) -> None:
    from memesearch.api import search_memes
    from memesearch.fallback import match_fallback
    from memesearch.renderer import render_fallback_notice, render_search_results

    try:
        page = search_memes(query, top_k=limit, category=category)
    except Exception as e:
        logger.warning("Plain search failed: %s", e)
        render_fallback_notice(str(e) or type(e).__name__)
        render_search_results(match_fallback(query), source="curated memes")
        return
    render_search_results(page.results, total=page.total)


# ---------------------------------------------------------------------------
# memesearch list / categories / show / curated
# ---------------------------------------------------------------------------


@cli.command("list")
@click.option("--limit", "-n", default=30, help="Number of memes.")
@click.option("--offset", default=0, help="Pagination offset.")
@click.option("--category", default=None, help="Only memes in this category.")
def list_cmd(limit: int, offset: int, category: Optional[str]):
    """Browse indexed memes."""
    from memesearch.api import list_memes
    from memesearch.renderer import render_search_results

    try:
        page = list_memes(limit=limit, offset=offset, category=category)
        render_search_results(page.results, total=page.total)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)


@cli.command()
def categories():
    """List meme categories."""
    from memesearch.api import get_categories
    from memesearch.renderer import render_categories

    try:
        render_categories(get_categories())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)


@cli.command()
@click.argument("meme_id")
def show(meme_id: str):
    """Show details for a specific meme.

    MEME_ID: the meme id from a search result
    """
    from memesearch.api import get_meme
    from memesearch.renderer import render_meme_details

    try:
        render_meme_details(get_meme(meme_id))
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)


@cli.command()
def curated():
    """Show the bundled curated memes (works offline)."""
    from memesearch.curated import curated_memes
    from memesearch.renderer import render_search_results

    render_search_results(curated_memes(), source="curated memes")
