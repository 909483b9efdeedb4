"""Command-line interface for pmflow."""

import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import structlog
import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from pmflow.engine import DependencyGraphResolver, RecommendationEngine, StatusDigestBuilder
from pmflow.engine.recommender import Recommendation
from pmflow.models import Settings, WorkItem, WorkItemStatus
from pmflow.sources import (
    AzureDevOpsSource,
    CandidateFilter,
    GitHubSource,
    LocalMarkdownSource,
    WorkItemCache,
    WorkItemSource,
)

app = typer.Typer(
    name="pmflow",
    help="Task readiness and prioritization for markdown and remote work items",
    add_completion=False,
)
azure_app = typer.Typer(help="Azure DevOps work items", add_completion=False)
github_app = typer.Typer(help="GitHub issues", add_completion=False)
app.add_typer(azure_app, name="azure")
app.add_typer(github_app, name="github")

console = Console()


def configure_logging(level: str) -> None:
    """Route structlog output to stderr at the given level."""
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.WARNING)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        cache_logger_on_first_use=False,
    )


def _settings(ctx: typer.Context) -> Settings:
    if isinstance(ctx.obj, Settings):
        return ctx.obj
    return Settings()


def _engine(settings: Settings) -> RecommendationEngine:
    return RecommendationEngine(
        resolver=DependencyGraphResolver(check_status=settings.strict_dependencies),
        max_alternatives=settings.max_alternatives,
    )


def _local_source(settings: Settings) -> LocalMarkdownSource:
    return LocalMarkdownSource(settings.local_store())


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _label(item: WorkItem) -> str:
    return f"#{item.id}"


def _priority(item: WorkItem) -> str:
    return f"P{item.priority}" if item.priority is not None else "-"


def _hours(item: WorkItem) -> str:
    return f"{item.remaining_work:g}h" if item.remaining_work is not None else "-"


@app.callback()
def main_callback(
    ctx: typer.Context,
    store_dir: Optional[Path] = typer.Option(None, "--store-dir", "-s", help="Markdown store root (defaults to .claude)"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level for stderr diagnostics"),
) -> None:
    """Task readiness and prioritization for markdown and remote work items."""
    settings = Settings()
    if store_dir is not None:
        settings.store_dir = str(store_dir)
    if log_level is not None:
        settings.log_level = log_level
    configure_logging(settings.log_level)
    ctx.obj = settings


def _print_no_tasks() -> None:
    console.print("\n[yellow]No available tasks found[/yellow]\n")
    console.print("[bold]Possible reasons:[/bold]")
    console.print("  • All open tasks are waiting on dependencies")
    console.print("  • All tasks are in progress or closed")
    console.print("  • No epics have been decomposed into tasks yet")
    console.print("\n[bold]Suggestions:[/bold]")
    console.print("  • Run [cyan]pmflow blocked[/cyan] to see what is holding work up")
    console.print("  • Run [cyan]pmflow status[/cyan] for an overview")


def _print_recommendation(rec: Recommendation) -> None:
    best = rec.best
    console.print("\n[bold green]Recommended next task[/bold green]")
    console.print(f"  [cyan]{_label(best)}[/cyan] {best.title}")
    console.print(
        f"  [dim]{best.type} · {_priority(best)} · {_hours(best)} · score {rec.best_score:g}[/dim]"
    )
    if best.path:
        console.print(f"  [dim]{best.path}[/dim]")
    if best.url:
        console.print(f"  [dim]{best.url}[/dim]")

    console.print("\n[bold]Why this task:[/bold]")
    for reason in rec.reasoning:
        console.print(f"  • {reason}")

    if rec.skipped:
        skipped = ", ".join(f"#{i}" for i in rec.skipped)
        console.print(f"\n[yellow]Skipped (dependency links):[/yellow] {skipped}")

    if rec.alternatives:
        console.print("\n[bold]Alternative Tasks:[/bold]")
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("ID", style="cyan")
        table.add_column("Title", style="white")
        table.add_column("Type", style="green")
        table.add_column("Priority", justify="right", style="yellow")
        table.add_column("Remaining", justify="right", style="blue")
        table.add_column("Score", justify="right")
        for candidate in rec.alternatives:
            item = candidate.work_item
            table.add_row(
                _label(item), item.title[:60], item.type, _priority(item), _hours(item), f"{candidate.score:g}"
            )
        console.print(table)


@app.command(name="next")
def next_task(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Print the recommendation as JSON"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Number of alternatives to show"),
) -> None:
    """Recommend the next ready task from the local store."""
    try:
        settings = _settings(ctx)
        if limit is not None:
            settings.max_alternatives = limit
        engine = _engine(settings)
        items = _local_source(settings).load_items()
        rec = engine.recommend_next(items)

        if json_output:
            typer.echo(rec.model_dump_json(indent=2))
            return

        if rec.is_empty:
            _print_no_tasks()
            return

        _print_recommendation(rec)
        if rec.best.path:
            console.print(f"\n[dim]Start it with:[/dim] pmflow start {rec.best.id}")

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def blocked(ctx: typer.Context) -> None:
    """List tasks blocked by dependencies or tagged blocked."""
    try:
        settings = _settings(ctx)
        digest = StatusDigestBuilder(_engine(settings))
        items = _local_source(settings).load_items()
        blockers = digest.blockers(items, _now())

        if not blockers:
            console.print("[bold green]✓[/bold green] No blocked tasks")
            return

        table = Table(show_header=True, header_style="bold red")
        table.add_column("ID", style="cyan")
        table.add_column("Title", style="white")
        table.add_column("Reason", style="yellow")
        table.add_column("Days", justify="right")
        for blocker in blockers:
            table.add_row(
                _label(blocker.item),
                blocker.item.title[:60],
                blocker.reason,
                str(blocker.days_blocked) if blocker.days_blocked is not None else "-",
            )
        console.print(table)

        counts = digest.resolver.blocking_counts(items)
        if counts:
            console.print("\n[bold]Blockers to clear first:[/bold]")
            for dep, count in list(counts.items())[:5]:
                console.print(f"  • #{dep} blocks {count} task(s)")

        console.print(f"\n[bold]Total blocked:[/bold] {len(blockers)}")

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def standup(
    ctx: typer.Context,
    days: int = typer.Option(1, "--days", "-d", help="Days of completed work to include"),
) -> None:
    """Print a daily standup report."""
    try:
        settings = _settings(ctx)
        source = _local_source(settings)
        digest = StatusDigestBuilder(_engine(settings))
        now = _now()
        report = digest.standup(source.load_items(), now, days=days)

        console.print(f"\n[bold]Daily Standup - {report.report_date.isoformat()}[/bold]")

        activity = source.recent_activity(now, days=days)
        if any(activity.values()):
            console.print("\n[bold]Recent activity:[/bold]")
            for name, count in activity.items():
                if count:
                    console.print(f"  • {count} {name} updated")

        console.print("\n[bold green]Completed:[/bold green]")
        if not report.completed:
            console.print("  [dim]Nothing closed in this window[/dim]")
        for item in report.completed:
            console.print(f"  • {_label(item)} {item.title}")

        console.print("\n[bold blue]In progress:[/bold blue]")
        if not report.in_progress:
            console.print("  [dim]No active work[/dim]")
        for active in report.in_progress:
            stale = " [yellow](stale)[/yellow]" if active.stale else ""
            console.print(f"  • {_label(active.item)} {active.item.title}{stale}")

        progress = source.progress_entries()
        if progress:
            console.print("\n[bold]Progress updates:[/bold]")
            for entry in progress:
                console.print(f"  • {entry.epic}/{entry.issue}: {entry.completion:g}%")

        console.print("\n[bold red]Blockers:[/bold red]")
        if not report.blockers:
            console.print("  [dim]None[/dim]")
        for blocker in report.blockers:
            console.print(f"  • {_label(blocker.item)} {blocker.item.title} ({blocker.reason})")

        console.print("\n[bold]Next up:[/bold]")
        if not report.next_tasks:
            console.print("  [dim]No available tasks found[/dim]")
        for candidate in report.next_tasks:
            console.print(f"  • {_label(candidate.work_item)} {candidate.work_item.title}")

        stats = report.stats
        console.print(
            f"\n[dim]{stats['total']} tasks · {stats['ready']} ready · "
            f"{stats['in_progress']} in progress · {stats['blocked']} blocked[/dim]"
        )

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show a project status overview."""
    try:
        settings = _settings(ctx)
        digest = StatusDigestBuilder(_engine(settings))
        items = _local_source(settings).load_items()
        overview = digest.project_status(items)

        if not overview.total:
            console.print("[yellow]No tasks found in[/yellow] " + str(settings.local_store().epics_dir))
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Status", style="cyan")
        table.add_column("Count", justify="right", style="yellow")
        for name, count in overview.counts.items():
            table.add_row(name, str(count))
        table.add_row("Ready", str(overview.ready))
        table.add_row("Blocked", str(overview.blocked))
        console.print(table)

        health_style = "green" if overview.health == "ON_TRACK" else "red"
        console.print(f"\n[bold]Completion:[/bold] {overview.completion_percent:g}%")
        console.print(f"[bold]Health:[/bold] [{health_style}]{overview.health}[/{health_style}]")

        if overview.recommendations:
            console.print("\n[bold]Recommendations:[/bold]")
            for recommendation in overview.recommendations:
                console.print(f"  • {recommendation}")

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command(name="in-progress")
def in_progress(ctx: typer.Context) -> None:
    """List tasks currently in progress."""
    try:
        settings = _settings(ctx)
        digest = StatusDigestBuilder(_engine(settings))
        active = digest.in_progress(_local_source(settings).load_items(), _now())

        if not active:
            console.print("[dim]No tasks in progress[/dim]")
            return

        table = Table(show_header=True, header_style="bold blue")
        table.add_column("ID", style="cyan")
        table.add_column("Title", style="white")
        table.add_column("Days", justify="right")
        table.add_column("", style="yellow")
        for entry in active:
            table.add_row(
                _label(entry.item),
                entry.item.title[:60],
                str(entry.days_active) if entry.days_active is not None else "-",
                "stale" if entry.stale else "",
            )
        console.print(table)

        stale = sum(1 for entry in active if entry.stale)
        if stale:
            console.print(f"\n[yellow]{stale} task(s) in progress for more than {digest.stale_after_days} days[/yellow]")

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _transition(ctx: typer.Context, task_id: str, target: WorkItemStatus, verb: str) -> None:
    settings = _settings(ctx)
    item = _local_source(settings).update_status(task_id, target)
    console.print(f"[bold green]✓[/bold green] {verb} {_label(item)} {item.title}")
    if item.path:
        console.print(f"  [dim]{item.path}[/dim]")


@app.command()
def start(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id, e.g. auth/3"),
) -> None:
    """Mark a task as in progress."""
    try:
        _transition(ctx, task_id, WorkItemStatus.IN_PROGRESS, "Started")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def close(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id, e.g. auth/3"),
) -> None:
    """Mark a task as closed."""
    try:
        _transition(ctx, task_id, WorkItemStatus.CLOSED, "Closed")

        settings = _settings(ctx)
        unblocked = _engine(settings).resolver.resolve_readiness(
            _local_source(settings).load_items()
        ).ready
        if unblocked:
            console.print(f"\n[dim]{len(unblocked)} task(s) ready. Run 'pmflow next' to pick one.[/dim]")

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _cache(settings: Settings) -> WorkItemCache:
    return WorkItemCache(settings.cache_path, ttl_seconds=settings.cache_ttl)


def _azure_source(settings: Settings) -> AzureDevOpsSource:
    return AzureDevOpsSource(settings.azure_devops(), cache=_cache(settings))


async def _with_source(source: WorkItemSource, work):
    try:
        return await work(source)
    finally:
        await source.aclose()


@azure_app.command(name="next-task")
def azure_next_task(
    ctx: typer.Context,
    user: str = typer.Option("me", "--user", "-u", help="'me' or a user name"),
    output_format: str = typer.Option("table", "--format", "-f", help="table, json or brief"),
    include_blocked: bool = typer.Option(False, "--include-blocked", help="Skip dependency-link checks"),
    sprint: bool = typer.Option(True, "--sprint/--all-sprints", help="Restrict to the current sprint"),
) -> None:
    """Recommend the next Azure DevOps task."""
    try:
        settings = _settings(ctx)
        engine = _engine(settings)
        digest = StatusDigestBuilder(engine)

        async def work(source: AzureDevOpsSource):
            current = await source.get_current_sprint() if sprint else None
            items = await source.list_candidates(
                CandidateFilter(assigned_to=user, iteration_path=current["path"] if current else None)
            )
            if include_blocked:
                return current, items, engine.recommend_next(items)
            return current, items, await engine.recommend_next_checked(items, source)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task("Querying Azure DevOps...", total=None)
            current, items, rec = asyncio.run(_with_source(_azure_source(settings), work))

        if output_format == "json":
            typer.echo(rec.model_dump_json(indent=2))
            return

        if rec.is_empty:
            _print_no_tasks()
            return

        if output_format == "brief":
            typer.echo(f"{_label(rec.best)} {rec.best.title}")
            return

        if current:
            console.print(f"[bold blue]Sprint:[/bold blue] {current['name']}")
        _print_recommendation(rec)

        pool = digest.analyze_task_pool([item for item in items if item.is_open])
        console.print(
            f"\n[dim]Pool: {pool.total_tasks} tasks · {pool.total_hours:g}h · "
            f"{pool.p1_count} P1 · {pool.p2_count} P2 · {pool.bug_count} bugs[/dim]"
        )

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@azure_app.command(name="blocked")
def azure_blocked(ctx: typer.Context) -> None:
    """List Azure DevOps items tagged blocked, grouped by priority."""
    try:
        settings = _settings(ctx)
        digest = StatusDigestBuilder(_engine(settings))

        async def work(source: AzureDevOpsSource):
            return await source.list_blocked()

        items = asyncio.run(_with_source(_azure_source(settings), work))
        groups = digest.group_blocked_by_priority(items)

        if not groups.total:
            console.print("[bold green]✓[/bold green] No blocked items")
            return

        sections = (
            ("Critical (P1)", "bold red", groups.critical),
            ("High (P2)", "bold yellow", groups.high),
            ("Normal", "bold", groups.normal),
        )
        for title, style, group in sections:
            if not group:
                continue
            console.print(f"\n[{style}]{title}[/{style}]")
            for item in group:
                assignee = f" [dim]({item.assignee})[/dim]" if item.assignee else ""
                console.print(f"  • {_label(item)} {item.title}{assignee}")

        console.print(f"\n[bold]Total blocked:[/bold] {groups.total}")

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@azure_app.command(name="daily")
def azure_daily(
    ctx: typer.Context,
    user: str = typer.Option("me", "--user", "-u", help="'me' or a user name"),
) -> None:
    """Daily workflow: active work, blockers and the next task."""
    try:
        settings = _settings(ctx)
        digest = StatusDigestBuilder(_engine(settings))

        async def work(source: AzureDevOpsSource):
            active = await source.list_in_progress(user)
            blocked_items = await source.list_blocked()
            candidates = await source.list_candidates(CandidateFilter(assigned_to=user))
            items = _dedupe(active + blocked_items + candidates)
            return await digest.daily_checked(items, _now(), source)

        report = asyncio.run(_with_source(_azure_source(settings), work))

        console.print(f"\n[bold]Daily Workflow - {report.report_date.isoformat()}[/bold]")

        console.print("\n[bold blue]In progress:[/bold blue]")
        if not report.in_progress:
            console.print("  [dim]No active work[/dim]")
        for active in report.in_progress:
            stale = " [yellow](stale)[/yellow]" if active.stale else ""
            console.print(f"  • {_label(active.item)} {active.item.title}{stale}")

        console.print("\n[bold red]Blocked:[/bold red]")
        if not report.blocked:
            console.print("  [dim]None[/dim]")
        for item in report.blocked:
            console.print(f"  • {_label(item)} {item.title} ({_priority(item)})")

        console.print("\n[bold green]Next task:[/bold green]")
        rec = report.recommendation
        if rec.is_empty:
            console.print("  [dim]No available tasks found[/dim]")
        else:
            console.print(f"  {_label(rec.best)} {rec.best.title}")
            for reason in rec.reasoning:
                console.print(f"    • {reason}")

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _dedupe(items: List[WorkItem]) -> List[WorkItem]:
    seen = set()
    unique = []
    for item in items:
        if item.key not in seen:
            seen.add(item.key)
            unique.append(item)
    return unique


@github_app.command(name="next")
def github_next(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Print the recommendation as JSON"),
) -> None:
    """Recommend the next GitHub issue to work on."""
    try:
        settings = _settings(ctx)
        engine = _engine(settings)

        async def work(source: GitHubSource):
            items = await source.list_candidates()
            return engine.recommend_next(items)

        rec = asyncio.run(_with_source(GitHubSource(settings.github()), work))

        if json_output:
            typer.echo(rec.model_dump_json(indent=2))
            return
        if rec.is_empty:
            _print_no_tasks()
            return
        _print_recommendation(rec)

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command(name="cache-stats")
def cache_stats(ctx: typer.Context) -> None:
    """Show remote response cache statistics."""
    try:
        settings = _settings(ctx)
        stats = _cache(settings).get_stats()
        console.print(f"[bold]Cache:[/bold] {settings.cache_path}")
        console.print(f"  Entries: {stats['cached_items']}")
        console.print(f"  TTL: {stats['ttl_seconds']}s")

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command(name="clear-cache")
def clear_cache(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
) -> None:
    """Clear the remote response cache."""
    try:
        settings = _settings(ctx)
        if not settings.cache_path.exists():
            console.print(f"[yellow]Cache directory does not exist:[/yellow] {settings.cache_path}")
            return

        cache = _cache(settings)
        if not force:
            confirm = typer.confirm("Are you sure you want to clear the cache?")
            if not confirm:
                console.print("[yellow]Cancelled[/yellow]")
                return

        removed = cache.clear()
        console.print(f"[bold green]✓[/bold green] Cache cleared ({removed} entries)")

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    from pmflow import __version__

    console.print(f"[bold]pmflow[/bold] version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
