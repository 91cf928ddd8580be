"""
Command-line interface for ADO Insights.
"""

import asyncio
import json
import re
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from ado_insights.config import set_verify_ssl
from ado_insights.core import MetricsEngine
from ado_insights.errors import AuthorizationError
from ado_insights.http_client import close_http_client
from ado_insights.models import (
    CodeGraphData,
    CommitAnalysis,
    CommitMetrics,
    DeveloperRanking,
    GeneralStats,
)

load_dotenv()

# --- Typer App ---
app = typer.Typer(help="Commit, ranking, collaboration and delivery metrics for Azure DevOps.")
console = Console()

ORGANIZATION_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,50}$")

T = TypeVar("T")

# --- Helper Functions ---


def validate_organization(organization: str) -> str:
    """Typer callback rejecting organization names the service cannot have."""
    if not ORGANIZATION_PATTERN.match(organization or ""):
        raise typer.BadParameter(
            "Organization may only contain letters, digits, '-' and '_' "
            "(at most 50 characters)."
        )
    return organization


def validate_period(year: int | None, month: int | None) -> None:
    """Reject a month without a year and a year without a month."""
    if (year is None) != (month is None):
        raise typer.BadParameter(
            "--month and --year must be given together.",
            param_hint="'--year' / '--month'",
        )


def to_jsonable(value: Any) -> Any:
    """Convert result objects (dataclasses, NamedTuples, enums, dates) to JSON types."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))
    if isinstance(value, tuple) and hasattr(value, "_asdict"):
        return to_jsonable(value._asdict())
    if isinstance(value, dict):
        return {str(to_jsonable(key)): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value


def _print_json(value: Any) -> None:
    typer.echo(json.dumps(to_jsonable(value), indent=2, ensure_ascii=False))


def _require_token(token: str | None) -> str:
    if not token:
        console.print(
            "[red]Error: an access token is required. Pass --token or set "
            "AZURE_DEVOPS_PAT (environment or .env file).[/red]"
        )
        raise typer.Exit(code=1)
    return token


def _run(operation: Callable[[], Awaitable[T]]) -> T:
    """Run an engine coroutine, closing the shared HTTP client afterwards."""

    async def runner() -> T:
        try:
            return await operation()
        finally:
            await close_http_client()

    try:
        return asyncio.run(runner())
    except AuthorizationError as e:
        console.print(f"[red]Authorization failed: {e}[/red]")
        console.print(
            "[dim]Check that the token is valid and has read access to "
            "Code, Build and Work Items.[/dim]"
        )
        raise typer.Exit(code=1) from None


# --- Renderers ---


def display_commit_metrics(metrics: CommitMetrics) -> None:
    console.print(f"[bold cyan]Total commits:[/bold cyan] {metrics.total_commits}")
    for title, counts in (
        ("Commits by author", metrics.commits_by_author),
        ("Commits by project", metrics.commits_by_project),
        ("Commits by repository", metrics.commits_by_repository),
    ):
        if not counts:
            continue
        table = Table(title=title, show_header=True, header_style="bold magenta")
        table.add_column("Name", style="cyan")
        table.add_column("Commits", justify="right")
        for name, count in counts.items():
            table.add_row(name, str(count))
        console.print(table)


def display_ranking(ranking: list[DeveloperRanking]) -> None:
    if not ranking:
        console.print("[yellow]No commits found for the selected period.[/yellow]")
        return
    table = Table(title="Developer Ranking", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Developer", style="cyan", no_wrap=True)
    table.add_column("Score", justify="right", style="magenta")
    table.add_column("Commits", justify="right")
    table.add_column("Projects", justify="right")
    table.add_column("Repositories", justify="right")
    table.add_column("Last commit")
    for position, entry in enumerate(ranking, start=1):
        table.add_row(
            str(position),
            entry.developer_name,
            f"{entry.score:.2f}",
            str(entry.commit_count),
            str(entry.projects_contributed),
            str(entry.repositories_contributed),
            entry.last_commit_date.strftime("%Y-%m-%d") if entry.last_commit_date else "-",
        )
    console.print(table)


def display_code_graph(graph: CodeGraphData) -> None:
    files = [node for node in graph.nodes if node.type == "file"]
    authors = [node for node in graph.nodes if node.type == "author"]
    console.print(
        f"[bold cyan]Graph:[/bold cyan] {len(files)} files, "
        f"{len(authors)} authors, {len(graph.links)} links"
    )
    if not graph.links:
        return
    table = Table(title="Strongest links", show_header=True, header_style="bold magenta")
    table.add_column("Author", style="cyan")
    table.add_column("File")
    table.add_column("Commits", justify="right")
    table.add_column("Project")
    for link in sorted(graph.links, key=lambda link: link.weight, reverse=True)[:20]:
        table.add_row(link.source, link.target, str(link.weight), link.project_name)
    console.print(table)


def display_general_stats(stats: GeneralStats) -> None:
    table = Table(
        title=f"General Stats (last {stats.days_analyzed} days)",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Builds", f"{stats.successful_builds}/{stats.total_builds}")
    table.add_row("Build success rate", stats.build_success_rate_formatted)
    table.add_row("Average build duration", stats.average_build_duration_formatted)
    table.add_row(
        "Pull requests merged",
        f"{stats.merged_pull_requests}/{stats.total_pull_requests}",
    )
    table.add_row("PR merge rate", stats.pr_merge_rate_formatted)
    table.add_row("Average PR time", stats.average_pr_time_formatted)
    table.add_row(
        "Work items completed",
        f"{stats.completed_work_items}/{stats.total_work_items}",
    )
    table.add_row("Work item completion", stats.work_item_completion_rate_formatted)
    table.add_row(
        "Active repositories",
        f"{stats.active_repositories}/{stats.total_repositories}",
    )
    table.add_row("Code coverage", stats.code_coverage_formatted)
    table.add_row("Commits per day", f"{stats.commits_per_day:.2f}")
    table.add_row("Active developers", str(stats.active_developers))
    console.print(table)


def display_commit_analysis(analysis: CommitAnalysis) -> None:
    size = analysis.size_metrics
    quality = analysis.quality_metrics
    console.print(f"[bold cyan]Analyzed commits:[/bold cyan] {analysis.total_commits}")
    console.print(
        f"  Lines: [green]+{size.total_lines_added}[/green] "
        f"[red]-{size.total_lines_deleted}[/red] "
        f"(net {size.net_lines_changed}, avg {size.average_lines_per_commit}/commit)"
    )
    console.print(
        f"  Sizes: small {size.commits_small}, medium {size.commits_medium}, "
        f"large {size.commits_large}, huge {size.commits_huge}"
    )
    console.print(
        f"  Quality: {quality.bug_fix_commits} fixes, {quality.feature_commits} features, "
        f"{quality.refactoring_commits} refactorings, {quality.commits_with_tests} with tests, "
        f"{quality.commits_with_documentation} with docs"
    )

    if analysis.author_stats:
        table = Table(title="Authors", show_header=True, header_style="bold magenta")
        table.add_column("Author", style="cyan")
        table.add_column("Commits", justify="right")
        table.add_column("Added", justify="right", style="green")
        table.add_column("Deleted", justify="right", style="red")
        table.add_column("Avg lines", justify="right")
        table.add_column("Largest", justify="right")
        for stats in sorted(
            analysis.author_stats.values(), key=lambda s: s.total_commits, reverse=True
        ):
            table.add_row(
                stats.author_name,
                str(stats.total_commits),
                str(stats.total_lines_added),
                str(stats.total_lines_deleted),
                f"{stats.average_lines_per_commit:.2f}",
                str(stats.largest_commit),
            )
        console.print(table)

    if analysis.file_type_distribution:
        types = ", ".join(
            f"{extension} ({count})"
            for extension, count in list(analysis.file_type_distribution.items())[:10]
        )
        console.print(f"  File types: {types}")


# --- Commands ---

ORG_OPTION = typer.Option(
    ...,
    "--org",
    "-o",
    help="Azure DevOps organization name.",
    callback=validate_organization,
)
PROJECT_OPTION = typer.Option(
    None, "--project", "-p", help="Project name (default: whole organization)."
)
YEAR_OPTION = typer.Option(None, "--year", help="Year of the month to analyze.")
MONTH_OPTION = typer.Option(
    None, "--month", min=1, max=12, help="Month to analyze (requires --year)."
)
TOKEN_OPTION = typer.Option(
    None,
    "--token",
    envvar="AZURE_DEVOPS_PAT",
    help="Personal Access Token (default: AZURE_DEVOPS_PAT).",
    show_default=False,
)
JSON_OPTION = typer.Option(False, "--json", help="Print the result as JSON.")
INSECURE_OPTION = typer.Option(
    False, "--insecure", help="Disable SSL certificate verification for HTTPS requests."
)


@app.command()
def commits(
    org: str = ORG_OPTION,
    project: str | None = PROJECT_OPTION,
    year: int | None = YEAR_OPTION,
    month: int | None = MONTH_OPTION,
    author: str | None = typer.Option(None, "--author", "-a", help="Only this author."),
    token: str | None = TOKEN_OPTION,
    as_json: bool = JSON_OPTION,
    insecure: bool = INSECURE_OPTION,
):
    """Commit counts by author, day, project and repository."""
    validate_period(year, month)
    set_verify_ssl(not insecure)
    token = _require_token(token)
    engine = MetricsEngine()
    result = _run(
        lambda: engine.get_commit_metrics(org, token, project, year, month, author)
    )
    if as_json:
        _print_json(result)
    else:
        display_commit_metrics(result)


@app.command()
def ranking(
    org: str = ORG_OPTION,
    project: str | None = PROJECT_OPTION,
    year: int | None = YEAR_OPTION,
    month: int | None = MONTH_OPTION,
    token: str | None = TOKEN_OPTION,
    as_json: bool = JSON_OPTION,
    insecure: bool = INSECURE_OPTION,
):
    """Top developers by commit volume and recency."""
    validate_period(year, month)
    set_verify_ssl(not insecure)
    token = _require_token(token)
    engine = MetricsEngine()
    result = _run(lambda: engine.get_developer_ranking(org, token, project, year, month))
    if as_json:
        _print_json(result)
    else:
        display_ranking(result)


@app.command()
def graph(
    org: str = ORG_OPTION,
    project: str | None = PROJECT_OPTION,
    repository_id: str | None = typer.Option(
        None, "--repository-id", "-r", help="Restrict the graph to one repository."
    ),
    token: str | None = TOKEN_OPTION,
    as_json: bool = JSON_OPTION,
    insecure: bool = INSECURE_OPTION,
):
    """Author/file collaboration graph of the current month."""
    set_verify_ssl(not insecure)
    token = _require_token(token)
    engine = MetricsEngine()
    result = _run(lambda: engine.get_code_graph(org, token, project, repository_id))
    if as_json:
        _print_json(result)
    else:
        display_code_graph(result)


@app.command()
def stats(
    org: str = ORG_OPTION,
    project: str | None = PROJECT_OPTION,
    days: int = typer.Option(30, "--days", "-d", min=1, help="Days to analyze."),
    token: str | None = TOKEN_OPTION,
    as_json: bool = JSON_OPTION,
    insecure: bool = INSECURE_OPTION,
):
    """Build, pull request, work item and repository statistics."""
    set_verify_ssl(not insecure)
    token = _require_token(token)
    engine = MetricsEngine()
    result = _run(lambda: engine.get_general_stats(org, token, project, days))
    if as_json:
        _print_json(result)
    else:
        display_general_stats(result)


@app.command()
def analysis(
    org: str = ORG_OPTION,
    project: str | None = PROJECT_OPTION,
    year: int | None = YEAR_OPTION,
    month: int | None = MONTH_OPTION,
    author: str | None = typer.Option(None, "--author", "-a", help="Only this author."),
    repository_id: str | None = typer.Option(
        None, "--repository-id", "-r", help="Only commits of this repository."
    ),
    token: str | None = TOKEN_OPTION,
    as_json: bool = JSON_OPTION,
    insecure: bool = INSECURE_OPTION,
):
    """Size, quality and author analysis of recent commits."""
    validate_period(year, month)
    set_verify_ssl(not insecure)
    token = _require_token(token)
    engine = MetricsEngine()
    result = _run(
        lambda: engine.get_commit_analysis(
            org, token, project, year, month, author, repository_id
        )
    )
    if as_json:
        _print_json(result)
    else:
        display_commit_analysis(result)


if __name__ == "__main__":
    app()
