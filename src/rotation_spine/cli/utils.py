"""
CLI utility helpers: runtime construction and output formatting.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from sqlalchemy.engine import make_url

from rotation_spine.core.errors import RotationError
from rotation_spine.core.logging import configure_logging
from rotation_spine.core.settings import RotationSettings
from rotation_spine.core.store import RotationStore
from rotation_spine.execution.retry import RetryPolicy
from rotation_spine.execution.substrate import LocalSubstrate
from rotation_spine.pipelines.runs import build_registry
from rotation_spine.pipelines.services import PipelineServices

console = Console()
err_console = Console(stderr=True)


@dataclass
class Runtime:
    settings: RotationSettings
    store: RotationStore
    services: PipelineServices
    substrate: LocalSubstrate


def load_settings(database: str | None = None, dataset: str | None = None) -> RotationSettings:
    settings = RotationSettings()
    updates: dict[str, Any] = {}
    if database:
        updates["database_url"] = database if "://" in database else f"sqlite:///{database}"
    if dataset:
        updates["static_dataset_path"] = dataset
    return settings.model_copy(update=updates) if updates else settings


def open_store(settings: RotationSettings) -> RotationStore:
    """Open the store, creating the parent directory of a file-backed SQLite database."""
    url = make_url(settings.database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return RotationStore.from_url(settings.database_url, echo=settings.database_echo)


def make_runtime(database: str | None = None, dataset: str | None = None) -> Runtime:
    settings = load_settings(database, dataset)
    configure_logging(settings.log_level, settings.json_logs)
    store = open_store(settings)
    services = PipelineServices.from_settings(settings)
    substrate = LocalSubstrate(
        store, build_registry(services), retry_policy=RetryPolicy.from_settings(settings.retry)
    )
    return Runtime(settings=settings, store=store, services=services, substrate=substrate)


def _to_jsonable(obj: Any) -> Any:
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    return obj


def output_json(payload: Any) -> None:
    console.print_json(json.dumps(_to_jsonable(payload), default=str))


@contextmanager
def cli_errors() -> Iterator[None]:
    """Render pipeline errors on stderr and exit 1."""
    try:
        yield
    except RotationError as exc:
        err_console.print(f"[bold red]Error[/bold red] ({type(exc).__name__}): {exc.message}")
        err_console.print_json(json.dumps(exc.to_dict(), default=str))
        raise typer.Exit(code=1) from exc
