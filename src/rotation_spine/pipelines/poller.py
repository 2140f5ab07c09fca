"""
CursorPoller - continuous ingestion of new regulatory submissions.

One execution polls one window and continues as new::

    window_start = since (operator reset) | carried cursor | stored cursor | now - lookback
    window_end   = now
    fetch SUBMISSIONS in [window_start, window_end), page by page → upsert into filings
    cursor       = window_end once the window is drained   (forward-only)
    sleep(cadence) → continue_as_new(cursor, iteration + 1)

The poller has no terminal state.  ``max_iterations`` only wraps the
iteration counter back to 0; every cycle already ends in a continuation.
A stored cursor never moves backward unless ``since`` is given, in which
case it is reset to ``since`` once and the override is dropped from the
next state.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from rotation_spine.core.errors import InputError
from rotation_spine.core.logging import get_logger
from rotation_spine.core.timestamps import format_cursor, parse_cursor
from rotation_spine.execution.substrate import WorkflowContext
from rotation_spine.pipelines.services import PipelineServices
from rotation_spine.signals.gateway import SignalRequest
from rotation_spine.signals.models import SignalKind, Submission, SubmissionWindow

logger = get_logger(__name__)

POLLER_WORKFLOW = "cursor_poller"
CURSOR_PIPELINE = "poller"
CURSOR_KEY = "edgar_submissions"


def poller_state(services: PipelineServices, **overrides: Any) -> dict[str, Any]:
    """Initial poller state from settings, with *overrides* applied."""
    settings = services.settings.poller
    state: dict[str, Any] = {
        "forms": list(settings.forms),
        "cadence_seconds": settings.cadence_seconds,
        "lookback_seconds": settings.lookback_seconds,
        "batch_size": settings.batch_size,
        "max_iterations": settings.max_iterations,
        "iteration": 0,
        "since": None,
        "cursor": None,
    }
    state.update({k: v for k, v in overrides.items() if v is not None})
    if state["since"] is not None:
        try:
            state["since"] = format_cursor(parse_cursor(state["since"]))
        except ValueError as exc:
            raise InputError(f"Invalid since cursor: {state['since']!r}", field_name="since", cause=exc) from exc
    return state


def fetch_window(
    ctx: WorkflowContext, services: PipelineServices, state: dict[str, Any], window_start: str, window_end: str
) -> tuple[list[Submission], int]:
    """Every submission in ``[window_start, window_end)``, one ``batch_size`` page at a time.

    A provider that truncates a page returns the ``filed_at`` of the first
    submission it left out; the next page starts there.  When more than
    ``batch_size`` submissions share one timestamp the cursor cannot move,
    and the remainder of the window is fetched in a single unbounded page.
    """
    submissions: list[Submission] = []
    page_cursor = window_start
    limit: int | None = int(state["batch_size"])
    pages = 0
    while True:
        request = SignalRequest(
            forms=tuple(state.get("forms") or ()),
            cursor=page_cursor,
            window_end=window_end,
            limit=limit,
        )
        window: SubmissionWindow = ctx.retryable_call(
            lambda: services.gateway.fetch(SignalKind.SUBMISSIONS, request)
        )
        submissions.extend(window.submissions)
        pages += 1
        next_cursor = window.next_cursor
        if next_cursor is None or next_cursor >= window_end:
            return submissions, pages
        if next_cursor <= page_cursor:
            logger.warning("poller.page_stalled", cursor=page_cursor, batch_size=limit)
            limit = None
            continue
        page_cursor = next_cursor


def poller_workflow(ctx: WorkflowContext, state: dict[str, Any], services: PipelineServices) -> None:
    now = ctx.now()
    since = state.get("since")

    with ctx.store.unit_of_work() as repo:
        if since:
            window_start = repo.reset_cursor(CURSOR_PIPELINE, CURSOR_KEY, since)
        else:
            known = [c for c in (state.get("cursor"), repo.get_cursor(CURSOR_PIPELINE, CURSOR_KEY)) if c]
            window_start = max(known) if known else format_cursor(
                now - timedelta(seconds=int(state["lookback_seconds"]))
            )
    window_end = max(format_cursor(now), window_start)

    submissions, pages = fetch_window(ctx, services, state, window_start, window_end)
    with ctx.store.unit_of_work() as repo:
        stored = repo.upsert_submissions(submissions)
        cursor = repo.advance_cursor(CURSOR_PIPELINE, CURSOR_KEY, window_end, {"last_window_start": window_start})

    iteration = int(state.get("iteration", 0)) + 1
    if iteration >= int(state["max_iterations"]):
        iteration = 0
    logger.info(
        "poller.cycle",
        window_start=window_start,
        window_end=window_end,
        pages=pages,
        submissions=len(submissions),
        stored=stored,
        cursor=cursor,
        iteration=iteration,
    )

    ctx.sleep(float(state["cadence_seconds"]))
    ctx.continue_as_new({**state, "since": None, "cursor": cursor, "iteration": iteration})


__all__ = [
    "POLLER_WORKFLOW",
    "CURSOR_PIPELINE",
    "CURSOR_KEY",
    "poller_state",
    "fetch_window",
    "poller_workflow",
]
