"""Typer CLI application for the rank tracking engine.

Provides commands to check rankings, run batches, build monthly and weekly
reports, maintain the rank history and schedule recurring tracking.
"""

import asyncio
import json
import logging
import os
import time
from datetime import datetime
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from rank_engine.modules.rank_tracker.errors import RankCheckError

console = Console()
app = typer.Typer(
    name="rank-engine",
    help="SEO rank tracking -- progressive SERP checks, rank history & trend reports.",
    add_completion=False,
    no_args_is_help=True,
)

CONFIG_OPTION = typer.Option("config/settings.yaml", "--config", "-c", help="Path to settings.yaml.")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging level and format."""
    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _run_async(coro):
    """Run an async coroutine from synchronous CLI context."""
    return asyncio.run(coro)


def _get_engine(config: str):
    """Lazy-import and return an initialised RankEngine."""
    from rank_engine.app import RankEngine
    engine = RankEngine(config_path=config)
    engine.initialize()
    return engine


def _split_keywords(raw: str) -> list[str]:
    return [k.strip() for k in raw.split(",") if k.strip()]


def _fail(message: str, suggestion: Optional[str] = None) -> None:
    console.print("[red]✘[/red] " + message)
    if suggestion:
        console.print("  [dim]" + suggestion + "[/dim]")
    raise typer.Exit(code=1)


def _fmt_rank(rank: Optional[int]) -> str:
    return "#" + str(rank) if rank is not None else "[dim]not ranked[/dim]"


def _fmt_change(change: Optional[int]) -> str:
    if change is None:
        return "-"
    if change > 0:
        return "[green]+" + str(change) + "[/green]"
    if change < 0:
        return "[red]" + str(change) + "[/red]"
    return "0"


def _print_report(report: dict[str, Any], as_json: bool) -> None:
    if as_json:
        console.print_json(json.dumps(report, default=str))
        return

    stats_key = "monthlyStats" if report["periodType"] == "monthly" else "weeklyStats"
    stats_table = Table(title="Period Stats", show_header=True, header_style="bold magenta")
    stats_table.add_column("Period", style="cyan", min_width=18)
    for col in ("Keywords", "Avg Rank", "Top 10", "Top 30", "Top 100", "Not Ranking", "Checks"):
        stats_table.add_column(col, justify="right")
    for row in report[stats_key]:
        stats_table.add_row(
            row["label"],
            str(row["totalKeywords"]),
            str(row["averageRank"] if row["averageRank"] is not None else "-"),
            str(row["top10"]),
            str(row["top30"]),
            str(row["top100"]),
            str(row["notRankingCount"]),
            str(row["totalChecks"]),
        )
    console.print(stats_table)

    kw_table = Table(title="Keyword Trends", show_header=True, header_style="bold magenta")
    kw_table.add_column("Keyword", style="cyan", max_width=40)
    kw_table.add_column("Current", justify="right")
    kw_table.add_column("Best", justify="right")
    kw_table.add_column("Worst", justify="right")
    kw_table.add_column("Trend")
    trend_styles = {"improved": "green", "declined": "red", "stable": "white", "new": "blue"}
    for entry in report["keywordTimeline"]:
        style = trend_styles.get(entry["trend"], "white")
        kw_table.add_row(
            entry["keyword"],
            _fmt_rank(entry["currentRank"]),
            str(entry["bestRank"] or "-"),
            str(entry["worstRank"] or "-"),
            f"[{style}]{entry['trend']}[/{style}]",
        )
    console.print(kw_table)

    summary = report["summary"]
    comparison = report["comparison"]["summary"]
    console.print(
        f"\n[bold]{summary['totalKeywords']}[/bold] keywords: "
        f"[green]{summary['improved']} improved[/green], "
        f"[red]{summary['declined']} declined[/red], "
        f"{summary['stable']} stable, "
        f"[blue]{summary['new']} new[/blue]. "
        f"Average rank: {summary['averageRank'] if summary['averageRank'] is not None else '-'}"
    )
    if report["comparison"]["previousPeriod"]:
        console.print(
            "Since " + report["comparison"]["previousPeriod"] + ": "
            + ", ".join(f"{k}={v}" for k, v in comparison.items() if v)
        )


# ------------------------------------------------------------------
# check
# ------------------------------------------------------------------
@app.command()
def check(
    domain: str = typer.Argument(..., help="Domain to look for (e.g. example.com)."),
    keyword: str = typer.Argument(..., help="Keyword to check."),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Search location."),
    client: Optional[str] = typer.Option(None, "--client", help="Client id to tag the result with."),
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Check one keyword's rank and store the observation."""
    _setup_logging(verbose)
    console.print(Panel(f"[bold cyan]Rank Check: {keyword} → {domain}[/bold cyan]"))
    engine = _get_engine(config)

    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console) as progress:
        progress.add_task(description="Querying SERP provider...", total=None)
        try:
            result = _run_async(engine.check_keyword(keyword, domain, location=location, client_id=client))
        except RankCheckError as exc:
            progress.stop()
            _fail(f"[{exc.code}] {exc.message}", exc.suggestion)

    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Rank", _fmt_rank(result["rank"]))
    table.add_row("Previous", _fmt_rank(result["previousRank"]))
    table.add_row("Change", _fmt_change(result["rankChange"]))
    table.add_row("URL", result["matchedUrl"] or "-")
    table.add_row("Location", f"{result['location']} ({result['locationCode']})")
    table.add_row("Mode", f"{result['mode']} (tiers {result['tiersQueried']})")
    table.add_row("Cost", f"{result['cost']:.4f}")
    console.print(table)


# ------------------------------------------------------------------
# batch
# ------------------------------------------------------------------
@app.command()
def batch(
    domain: str = typer.Argument(..., help="Domain to track."),
    kw: str = typer.Option(..., "--keywords", "-k", help="Comma-separated keywords (max 50)."),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Search location."),
    client: Optional[str] = typer.Option(None, "--client", help="Client id to tag results with."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Abandon the batch after N seconds."),
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Check a list of keywords sequentially, continuing past failures."""
    _setup_logging(verbose)
    kw_list = _split_keywords(kw)
    console.print(Panel(f"[bold cyan]Batch Rank Check: {domain} ({len(kw_list)} keywords)[/bold cyan]"))
    engine = _get_engine(config)

    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console) as progress:
        progress.add_task(description="Checking keywords (paced)...", total=None)
        try:
            result = _run_async(engine.run_batch(
                {"domain": domain, "keywords": kw_list, "location": location, "clientId": client},
                timeout=timeout,
            ))
        except (RankCheckError, ValueError) as exc:
            progress.stop()
            _fail(str(exc), getattr(exc, "suggestion", None))

    table = Table(title="Batch Results", show_header=True, header_style="bold magenta")
    table.add_column("Keyword", style="cyan", max_width=40)
    table.add_column("Rank", justify="right")
    table.add_column("Previous", justify="right")
    table.add_column("Change", justify="right")
    table.add_column("Status")
    for row in result["results"]:
        if row["status"] == "success":
            status_display = "[green]✔ success[/green]"
        else:
            status_display = "[red]✘ " + row.get("errorCode", "error") + "[/red]"
        table.add_row(
            row["keyword"],
            _fmt_rank(row["rank"]),
            _fmt_rank(row["previousRank"]),
            _fmt_change(row["rankChange"]),
            status_display,
        )
    console.print(table)
    console.print(
        f"\n[bold]{result['successful']}/{result['total']}[/bold] succeeded, "
        f"cost {result['totalCost']:.4f}"
    )
    if result.get("warning"):
        console.print("[yellow]⚠[/yellow] " + result["warning"])


# ------------------------------------------------------------------
# monthly / weekly
# ------------------------------------------------------------------
@app.command()
def monthly(
    domain: Optional[str] = typer.Option(None, "--domain", "-d", help="Domain filter."),
    client: Optional[str] = typer.Option(None, "--client", help="Client id filter."),
    months: int = typer.Option(6, "--months", "-m", help="Number of calendar months."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw report as JSON."),
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Monthly rank report with trends and period comparison."""
    _setup_logging(verbose)
    engine = _get_engine(config)
    try:
        report = engine.monthly_report(domain=domain, client_id=client, months=months)
    except ValueError as exc:
        _fail(str(exc))
    if not as_json:
        console.print(Panel(f"[bold cyan]Monthly Report: {domain or client}[/bold cyan]"))
    _print_report(report, as_json)


@app.command()
def weekly(
    domain: Optional[str] = typer.Option(None, "--domain", "-d", help="Domain filter."),
    client: Optional[str] = typer.Option(None, "--client", help="Client id filter."),
    weeks: int = typer.Option(4, "--weeks", "-w", help="Number of rolling 7-day windows."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw report as JSON."),
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Weekly rank report over rolling 7-day windows."""
    _setup_logging(verbose)
    engine = _get_engine(config)
    try:
        report = engine.weekly_report(domain=domain, client_id=client, weeks=weeks)
    except ValueError as exc:
        _fail(str(exc))
    if not as_json:
        console.print(Panel(f"[bold cyan]Weekly Report: {domain or client}[/bold cyan]"))
    _print_report(report, as_json)


# ------------------------------------------------------------------
# history maintenance
# ------------------------------------------------------------------
@app.command()
def dedupe(
    domain: Optional[str] = typer.Option(None, "--domain", "-d", help="Limit the sweep to one domain."),
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Keep only the latest observation per domain, keyword and day."""
    _setup_logging(verbose)
    engine = _get_engine(config)
    removed = engine.dedupe(domain)
    console.print(f"[green]✔[/green] Removed [bold]{removed}[/bold] duplicate observation(s).")


@app.command()
def record(
    domain: str = typer.Argument(..., help="Domain the rank belongs to."),
    keyword: str = typer.Argument(..., help="Keyword."),
    rank: Optional[int] = typer.Option(None, "--rank", "-r", help="Rank 1-100; omit when not ranking."),
    date: Optional[str] = typer.Option(None, "--date", help="Check date (YYYY-MM-DD), default now."),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Search location."),
    client: Optional[str] = typer.Option(None, "--client", help="Client id."),
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Store a manually observed rank."""
    _setup_logging(verbose)
    engine = _get_engine(config)
    checked_at = None
    if date:
        try:
            checked_at = datetime.strptime(date, "%Y-%m-%d")
        except ValueError:
            _fail(f"Invalid date {date!r}; expected YYYY-MM-DD.")
    try:
        saved = engine.record_manual(
            domain, keyword, rank, checked_at=checked_at, location=location, client_id=client
        )
    except ValueError as exc:
        _fail(str(exc))
    console.print(
        f"[green]✔[/green] Recorded {keyword!r} for {saved['domain']}: "
        f"{_fmt_rank(saved['rank'])} (change {_fmt_change(saved['rankChange'])})"
    )


# ------------------------------------------------------------------
# schedule
# ------------------------------------------------------------------
@app.command()
def schedule(
    domain: str = typer.Argument(..., help="Domain to track."),
    kw: str = typer.Option(..., "--keywords", "-k", help="Comma-separated keywords."),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Search location."),
    client: Optional[str] = typer.Option(None, "--client", help="Client id."),
    cron: Optional[str] = typer.Option(None, "--cron", help="Cron expression (default weekly, Monday 06:00)."),
    foreground: bool = typer.Option(False, "--foreground", help="Keep running and execute jobs."),
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Register recurring rank tracking for a domain."""
    _setup_logging(verbose)
    engine = _get_engine(config)
    scheduler = engine.get_scheduler()
    cron = cron or engine.config.get("scheduler", {}).get("weekly_cron")
    kwargs = {"location": location, "client_id": client}
    if cron:
        kwargs["cron"] = cron
    try:
        job_id = scheduler.schedule_weekly_tracking(domain, _split_keywords(kw), **kwargs)
    except ValueError as exc:
        _fail(str(exc))
    console.print(f"[green]✔[/green] Scheduled job [bold]{job_id}[/bold].")

    # Starting (paused) flushes the job to the store and computes next run times.
    scheduler.start(paused=not foreground)
    table = Table(title="Scheduled Jobs", show_header=True, header_style="bold magenta")
    table.add_column("Job", style="cyan")
    table.add_column("Trigger")
    table.add_column("Next Run")
    for job in scheduler.list_jobs():
        table.add_row(job["id"], job["trigger"], job["next_run_time"] or "-")
    console.print(table)

    if not foreground:
        scheduler.stop(wait=False)
        return

    console.print("Scheduler running. Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        scheduler.stop()
        console.print("Scheduler stopped.")


# ------------------------------------------------------------------
# providers / status / init-db
# ------------------------------------------------------------------
@app.command()
def providers(
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Show the active SERP provider and its configuration."""
    _setup_logging(verbose)
    engine = _get_engine(config)
    info = engine.get_provider_info()

    table = Table(title="SERP Provider", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in info.items():
        table.add_row(key, str(value))
    console.print(table)
    if not info.get("configured"):
        console.print("[yellow]⚠[/yellow] Provider credentials are not configured.")


@app.command()
def status(
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Show system status: database, provider, LLM and configuration."""
    _setup_logging(verbose)
    console.print(Panel("[bold cyan]System Status[/bold cyan]"))
    engine = _get_engine(config)

    table = Table(title="Component Status", show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan", min_width=15)
    table.add_column("Status", min_width=10)
    table.add_column("Details", max_width=50)
    badges = {
        "ok": "[green]✔ OK[/green]",
        "warning": "[yellow]⚠ Warning[/yellow]",
        "error": "[red]✘ Error[/red]",
    }
    for name, component in engine.get_status().items():
        table.add_row(name.title(), badges.get(component["status"], component["status"]), component["details"])
    console.print(table)


@app.command("init-db")
def init_db_command(
    database_url: Optional[str] = typer.Option(None, "--url", help="SQLAlchemy database URL."),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Create the rank history tables."""
    _setup_logging(verbose)
    from rank_engine.database import init_db
    try:
        init_db(database_url=database_url)
    except Exception as exc:
        _fail("Database error: " + str(exc))
    console.print("[green]✔[/green] Database tables created.")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
