"""
Root Typer application for the rotation-spine CLI.

Every command prints JSON.  Pipeline errors are rendered on stderr and
exit with status 1.
"""

from __future__ import annotations

from datetime import date

import typer
from typer import Typer

from rotation_spine import __version__
from rotation_spine.cli.utils import cli_errors, load_settings, make_runtime, open_store, output_json
from rotation_spine.core.errors import InputError
from rotation_spine.core.timestamps import parse_date

app = Typer(
    name="rotation-spine",
    help="rotation-spine: institutional ownership rotation pipeline.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
db_app = Typer(no_args_is_help=True)
app.add_typer(db_app, name="db", help="Database operations.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"rotation-spine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """rotation-spine CLI: backfill, poll, query and explain rotations."""


def _date_option(value: str, field_name: str) -> date:
    try:
        return parse_date(value)
    except ValueError as exc:
        raise InputError(f"Invalid {field_name} date: {value!r}", field_name=field_name, cause=exc) from exc


# ── db ───────────────────────────────────────────────────────────────────


@db_app.command("init")
def db_init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL or SQLite path"),
) -> None:
    """Create all tables."""
    settings = load_settings(database)
    store = open_store(settings)
    store.dispose()
    output_json({"database_url": settings.database_url, "initialized": True})


# ── runs ─────────────────────────────────────────────────────────────────


@app.command()
def run(
    ticker: str = typer.Argument(..., help="Issuer ticker"),
    start: str = typer.Option(..., "--from", help="First day (YYYY-MM-DD)"),
    end: str = typer.Option(..., "--to", help="Last day (YYYY-MM-DD)"),
    run_kind: str = typer.Option("backfill", "--run-kind", "-k", help="daily, backfill or query"),
    batch_size: int | None = typer.Option(None, "--batch-size", "-b", help="Quarters per execution"),
    cusips: list[str] = typer.Option([], "--cusip", help="Extra CUSIP to attach (repeatable)"),
    force: bool = typer.Option(False, "--force", help="Recompute committed quarters"),
    max_executions: int | None = typer.Option(None, "--max-executions", help="Stop after N executions"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dataset: str | None = typer.Option(None, "--dataset", help="Static dataset JSON"),
) -> None:
    """Start a fan-out run and drive it."""
    from rotation_spine.pipelines.runs import start_fanout_run

    with cli_errors():
        rt = make_runtime(database, dataset)
        handle = start_fanout_run(
            rt.substrate,
            ticker,
            start,
            end,
            run_kind=run_kind,
            batch_size=batch_size or rt.settings.fanout.quarter_batch_size,
            force=force,
            cusips=cusips,
        )
        outcome = rt.substrate.drive(handle.run_id, max_executions=max_executions)
    output_json(outcome)


@app.command()
def resume(
    run_id: str = typer.Argument(..., help="Run ID"),
    max_executions: int | None = typer.Option(None, "--max-executions"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dataset: str | None = typer.Option(None, "--dataset"),
) -> None:
    """Resume a run from its last checkpoint."""
    with cli_errors():
        rt = make_runtime(database, dataset)
        outcome = rt.substrate.resume(run_id, max_executions=max_executions)
    output_json(outcome)


@app.command()
def cancel(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Request cancellation; honoured at the next sub-range boundary."""
    with cli_errors():
        rt = make_runtime(database)
        rt.substrate.cancel(run_id)
    output_json({"run_id": run_id, "cancel_requested": True})


@app.command()
def status(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Show a run's checkpoint record."""
    with cli_errors():
        rt = make_runtime(database)
        with rt.store.unit_of_work() as repo:
            record = repo.get_run(run_id)
            if record is None:
                raise InputError(f"Unknown run: {run_id}", field_name="run_id")
            payload = {
                "run_id": record.run_id,
                "workflow": record.workflow,
                "status": record.status,
                "execution_id": record.execution_id,
                "sequence": record.sequence,
                "state": record.payload.get("state"),
                "error": record.error,
                "result": record.result,
            }
    output_json(payload)


@app.command()
def poll(
    cycles: int | None = typer.Option(None, "--cycles", "-n", help="Stop after N cycles (default: run forever)"),
    since: str | None = typer.Option(None, "--since", help="Reset the cursor to this timestamp"),
    cadence: int | None = typer.Option(None, "--cadence", help="Seconds between cycles"),
    forms: list[str] = typer.Option([], "--form", help="Form type to poll (repeatable)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    dataset: str | None = typer.Option(None, "--dataset"),
) -> None:
    """Run the submissions poller."""
    from rotation_spine.pipelines.poller import POLLER_WORKFLOW, poller_state

    with cli_errors():
        rt = make_runtime(database, dataset)
        state = poller_state(rt.services, since=since, cadence_seconds=cadence, forms=forms or None)
        outcome = rt.substrate.run(POLLER_WORKFLOW, state, max_executions=cycles)
    output_json(outcome)


# ── graph ────────────────────────────────────────────────────────────────


@app.command()
def graph(
    ticker_or_cik: str = typer.Argument(..., help="Ticker or CIK"),
    start: str = typer.Option(..., "--from"),
    end: str = typer.Option(..., "--to"),
    hops: int = typer.Option(1, "--hops"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Neighborhood and top paths of an issuer in the rotation graph."""
    from rotation_spine.graph.paths import resolve_neighborhood

    with cli_errors():
        rt = make_runtime(database)
        with rt.store.unit_of_work() as repo:
            result = resolve_neighborhood(
                repo,
                ticker_or_cik,
                _date_option(start, "from"),
                _date_option(end, "to"),
                hops,
                rt.settings.graph,
            )
    output_json(result)


@app.command()
def explain(
    edge_ids: list[str] = typer.Argument(..., help="Edge IDs"),
    question: str | None = typer.Option(None, "--question", "-q"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Explain one or more rotation edges."""
    from rotation_spine.graph.explain import create_synthesizer, explain_edges

    with cli_errors():
        rt = make_runtime(database)
        synthesizer = create_synthesizer(rt.settings.llm)
        with rt.store.unit_of_work() as repo:
            explanation = explain_edges(repo, edge_ids, question, synthesizer=synthesizer)
    output_json(explanation)


if __name__ == "__main__":
    app()
