"""Command-line access to rankings, CSV import/export and the local cache."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from apps.evaluator.access import PAGE_RULES
from apps.evaluator.csv_io import student_template_csv
from apps.evaluator.service import EvaluatorService, LoadReport
from smarteval.core.errors import PermissionDenied, RemoteStoreError
from smarteval.core.validation import ValidationFailure
from smarteval.runtime import EvaluatorContext, bootstrap_evaluator

app = typer.Typer(help="Inspect rankings, import students, and export evaluator data.")
console = Console()

T = TypeVar("T")

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    show_default=False,
    help="Evaluator YAML (defaults to SMART_EVAL_CONFIG or config/evaluator.yaml).",
)
STORE_OPTION = typer.Option(
    None,
    "--store",
    show_default=False,
    help="Use a SQLite document store at this path instead of the configured backend.",
)
JSON_OPTION = typer.Option(False, "--json", help="Emit JSON instead of a table.")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


def _bootstrap(config: Path | None, store: Path | None) -> EvaluatorContext:
    try:
        return bootstrap_evaluator(config, store_path=store)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _run(
    config: Path | None,
    store: Path | None,
    action: Callable[[EvaluatorService], Awaitable[T]],
    *,
    load: bool = True,
) -> T:
    """Bootstrap, load every collection, run ``action`` and close the store in one event loop."""

    ctx = _bootstrap(config, store)

    async def _session() -> T:
        try:
            if load:
                _warn_failures(await ctx.service.load_initial_data())
            return await action(ctx.service)
        finally:
            await ctx.aclose()

    try:
        return asyncio.run(_session())
    except ValidationFailure as exc:
        for violation in exc.violations:
            console.print(f"[red]{escape(violation)}[/red]")
        raise typer.Exit(code=1) from exc
    except (RemoteStoreError, PermissionDenied) as exc:
        message = exc.user_message if isinstance(exc, RemoteStoreError) else str(exc)
        console.print(f"[red]{escape(message)}[/red]")
        raise typer.Exit(code=1) from exc


def _warn_failures(report: LoadReport) -> None:
    for collection, message in report.failed.items():
        console.print(f"[yellow]Could not load {collection}: {escape(message)}[/yellow]")


def _emit_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _print_table(headers: List[str], rows: List[Dict[str, Any]], keys: List[str]) -> None:
    table = Table(*headers)
    for row in rows:
        table.add_row(*(str(row.get(key, "")) for key in keys))
    console.print(table)


@app.command()
def summary(
    config: Path | None = CONFIG_OPTION,
    store: Path | None = STORE_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Show collection totals, role coverage and option usage."""

    async def action(service: EvaluatorService) -> Dict[str, Any]:
        dashboard = service.dashboard()
        return {
            "groups": dashboard.total_groups,
            "students": dashboard.total_students,
            "tasks": dashboard.total_tasks,
            "evaluations": dashboard.total_evaluations,
            "evaluated_tasks": dashboard.evaluated_tasks,
            "pending_tasks": dashboard.pending_tasks,
            "students_without_role": dashboard.students_without_role,
            "top_group": dashboard.top_group.group.name if dashboard.top_group else None,
            "gender": dashboard.gender_distribution,
            "academic_groups": dashboard.academic_group_distribution,
            "options": dashboard.option_stats.as_dict(),
        }

    payload = _run(config, store, action)
    if as_json:
        _emit_json(payload)
        return
    table = Table("Metric", "Value")
    for key in ("groups", "students", "tasks", "evaluations", "evaluated_tasks", "pending_tasks", "students_without_role"):
        table.add_row(key.replace("_", " ").title(), str(payload[key]))
    table.add_row("Top Group", payload["top_group"] or "-")
    console.print(table)
    options = Table("Option", "Selected")
    for option_id, count in payload["options"].items():
        options.add_row(option_id, str(count))
    console.print(options)


@app.command()
def students(
    config: Path | None = CONFIG_OPTION,
    store: Path | None = STORE_OPTION,
    limit: int = typer.Option(20, min=1, help="Maximum ranked students to show."),
    as_json: bool = JSON_OPTION,
) -> None:
    """Rank scored students by average score."""

    async def action(service: EvaluatorService) -> List[Dict[str, Any]]:
        return [
            {
                "rank": standing.rank,
                "id": standing.student.id,
                "name": standing.student.name,
                "roll": standing.student.roll,
                "total": standing.total,
                "evaluations": standing.count,
                "average": round(standing.average, 2),
            }
            for standing in service.student_rankings()[:limit]
        ]

    rows = _run(config, store, action)
    if as_json:
        _emit_json(rows)
        return
    if not rows:
        console.print("[yellow]No evaluated students yet.[/yellow]")
        return
    _print_table(
        ["Rank", "Name", "Roll", "Evaluations", "Average"],
        rows,
        ["rank", "name", "roll", "evaluations", "average"],
    )


@app.command()
def groups(
    config: Path | None = CONFIG_OPTION,
    store: Path | None = STORE_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Rank groups by the mean of their scored members' averages."""

    async def action(service: EvaluatorService) -> List[Dict[str, Any]]:
        return [
            {
                "rank": standing.rank,
                "id": standing.group.id,
                "name": standing.group.name,
                "members": standing.member_count,
                "scored_members": standing.scored_member_count,
                "average": round(standing.average, 2),
            }
            for standing in service.group_rankings()
        ]

    rows = _run(config, store, action)
    if as_json:
        _emit_json(rows)
        return
    if not rows:
        console.print("[yellow]No groups found.[/yellow]")
        return
    _print_table(["Rank", "Group", "Members", "Scored", "Average"], rows, ["rank", "name", "members", "scored_members", "average"])


@app.command()
def tasks(
    config: Path | None = CONFIG_OPTION,
    store: Path | None = STORE_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """List tasks with their average score per student submission."""

    async def action(service: EvaluatorService) -> List[Dict[str, Any]]:
        return [
            {"id": task.id, "name": task.name, "date": task.date, "max_score": task.max_score, "average": round(avg, 2)}
            for task, avg in service.task_averages()
        ]

    rows = _run(config, store, action)
    if as_json:
        _emit_json(rows)
        return
    if not rows:
        console.print("[yellow]No tasks found.[/yellow]")
        return
    _print_table(["Task", "Date", "Max", "Average"], rows, ["name", "date", "max_score", "average"])


@app.command("import-students")
def import_students(
    csv_file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Student CSV to import."),
    config: Path | None = CONFIG_OPTION,
    store: Path | None = STORE_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Import students from CSV; invalid rows are skipped and reported."""

    text = csv_file.read_text(encoding="utf-8-sig")

    async def action(service: EvaluatorService):
        return await service.import_students_csv(text)

    report = _run(config, store, action)
    if as_json:
        _emit_json({"succeeded": report.succeeded, "failed": report.failed, "errors": report.errors})
        return
    colour = "green" if report.succeeded else "yellow"
    console.print(f"[{colour}]{report.succeeded} imported, {report.failed} failed[/{colour}]")
    for error in report.errors:
        console.print(f"[dim]{escape(error)}[/dim]")


@app.command()
def export(
    directory: Path = typer.Argument(..., file_okay=False, help="Directory for students/groups/evaluations CSV files."),
    config: Path | None = CONFIG_OPTION,
    store: Path | None = STORE_OPTION,
) -> None:
    """Write students.csv, groups.csv and evaluations.csv."""

    async def action(service: EvaluatorService) -> Dict[str, Path]:
        return service.export_bundle(directory.expanduser().resolve())

    written = _run(config, store, action)
    for kind, path in written.items():
        console.print(f"[green]{kind}[/green] → {path}")


@app.command()
def template(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the template here instead of stdout."),
) -> None:
    """Print the student import template."""

    body = student_template_csv()
    if output is None:
        typer.echo(body, nl=False)
        return
    output.write_text(body, encoding="utf-8")
    console.print(f"[green]Template written to {output}[/green]")


@app.command("cache-clear")
def cache_clear(
    config: Path | None = CONFIG_OPTION,
    key: Optional[str] = typer.Option(None, "--key", help="Clear one entry (e.g. students_data) instead of all."),
) -> None:
    """Drop cached collection reads from the local cache."""

    ctx = _bootstrap(config, None)
    entries = ctx.cache.entries()
    if key:
        ctx.cache.clear(key)
        removed = 1 if key in entries else 0
    else:
        ctx.cache.clear_all()
        removed = len(entries)
    console.print(f"Removed {removed} cache entr{'y' if removed == 1 else 'ies'}.")


@app.command()
def pages(
    config: Path | None = CONFIG_OPTION,
    store: Path | None = STORE_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Show which pages are public and what private pages require."""

    async def action(service: EvaluatorService) -> List[Dict[str, Any]]:
        visibility = await service.load_page_visibility()
        rows = []
        for page, rule in PAGE_RULES.items():
            requirement = "super-admin" if rule.super_admin_only else rule.min_permission
            rows.append(
                {
                    "page": page.value,
                    "public": visibility.is_public(page),
                    "requires": "-" if visibility.is_public(page) else requirement,
                }
            )
        return rows

    rows = _run(config, store, action, load=False)
    if as_json:
        _emit_json(rows)
        return
    _print_table(["Page", "Public", "Requires"], rows, ["page", "public", "requires"])


if __name__ == "__main__":  # pragma: no cover
    app()
