"""Rich terminal renderer for meme results and search progress."""

from __future__ import annotations

from rich.console import Console
from rich.text import Text

from memesearch.models import ResultEntity, SearchState
from memesearch.progress import PROGRESS_STEPS, is_thinking, stage_index

console = Console()

EMPTY_MESSAGE = "No matching memes found."


def _meta_parts(meme: ResultEntity) -> list[str]:
    parts = []
    if meme.category:
        parts.append(meme.category)
    if meme.width and meme.height:
        parts.append(f"{meme.width}x{meme.height}")
    if meme.is_animated:
        parts.append("animated")
    return parts


def render_search_results(
    results: list[ResultEntity],
    *,
    source: str = "",
    total: int | None = None,
) -> None:
    """Render a list of memes with reference IDs."""
    if not results:
        console.print(f"[yellow]{EMPTY_MESSAGE}[/yellow]")
        return

    header = f"Found {len(results)} memes"
    if total is not None and total > len(results):
        header += f" (of {total})"
    if source:
        header += f" from {source}"
    console.print(header)
    console.print()

    for i, m in enumerate(results, 1):
        title_line = Text()
        title_line.append(f"[m{i}] ", style="bold cyan")
        title_line.append(m.description or m.id, style="bold")
        if m.is_ranked():
            title_line.append(f"  {round(m.score * 100)}%", style="green")
        console.print(title_line)

        console.print(f"     {m.url}", style="dim")

        meta = _meta_parts(m)
        if meta:
            console.print(f"     {' | '.join(meta)}", style="dim")

        if m.tags:
            console.print(f"     tags: {', '.join(m.tags)}")

        console.print(f"  > Use `memesearch show {m.id}` for details", style="dim italic")
        console.print()


def render_fallback_notice(error: str) -> None:
    console.print(f"[yellow]Search is unavailable ({error}); showing curated memes instead.[/yellow]")
    console.print()


def format_progress(state: SearchState) -> Text:
    """One-line step bar plus the current message."""
    current = stage_index(state.stage)
    line = Text()
    for i, (_, label) in enumerate(PROGRESS_STEPS):
        if i < current:
            line.append(f"✓ {label}", style="green")
        elif i == current:
            line.append(f"● {label}", style="bold cyan")
        else:
            line.append(f"○ {label}", style="dim")
        if i < len(PROGRESS_STEPS) - 1:
            line.append(" ─ ", style="dim")
    if state.message:
        line.append(f"  {state.message}")
    return line


def render_progress(state: SearchState) -> None:
    """Render the current progress of a streaming search."""
    console.print(format_progress(state))
    if state.thinking_text:
        console.print(f"  💭 {state.thinking_text}", style="dim")
    if state.expanded_query and not is_thinking(state.stage):
        console.print(f"  理解为：{state.expanded_query}", style="dim italic")


def render_meme_details(meme: ResultEntity) -> None:
    """Render detailed info for a single meme."""
    console.print(meme.description or meme.id, style="bold")
    console.print(meme.url, style="dim")

    meta = [f"id: {meme.id}"] + _meta_parts(meme)
    if meme.score is not None:
        meta.append(f"score: {meme.score:.2f}")
    console.print(" | ".join(meta), style="dim")

    if meme.tags:
        console.print()
        console.print(f"tags: {', '.join(meme.tags)}")
    console.print()


def render_categories(categories: list[str]) -> None:
    if not categories:
        console.print("[yellow]No categories found.[/yellow]")
        return

    console.print(f"Found {len(categories)} categories")
    console.print()
    for name in categories:
        console.print(f"  {name}")
        console.print(f"  > Use `memesearch list --category {name}` to browse", style="dim italic")
