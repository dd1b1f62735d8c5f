# ruff: noqa: I001
"""CLI for the ``statement_ingest`` package.

A thin Typer front end over :mod:`statement_ingest.api`. The root callback
loads a local ``.env`` (without overriding variables already set) and
configures package logging before any command runs. Commands print JSON to
stdout; logs go to stderr.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv

from . import api
from .errors import IngestError
from .logging_setup import configure_logging
from .models import AmountConvention, UploadFile
from .settings import IngestSettings


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Import credit card statements (CSV/XLSX) into the ledger database.",
)


# ---- Helpers -----------------------------------------------------------------


def _read_file(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        typer.echo(f"Cannot read {path}: {exc}", err=True)
        raise typer.Exit(2) from exc


def _echo_json(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


# ---- Commands ----------------------------------------------------------------


@app.command("upload")
def upload(
    paths: Annotated[list[Path], typer.Argument(help="Statement files (.csv, .xlsx).")],
    user_id: str = typer.Option(..., "--user-id", help="Owner of the imported rows."),
    convention: AmountConvention | None = typer.Option(
        None, help="Force the sign convention for every file (negative|positive)."
    ),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Upload statement files and print the per-file results as JSON."""

    files = [
        UploadFile(
            filename=p.name,
            content=_read_file(p),
            convention=convention.value if convention else None,
        )
        for p in paths
    ]
    result = api.upload_statements(
        files,
        user_id=user_id,
        database_url=database_url,
        settings=IngestSettings.from_env(),
    )
    typer.echo(result.model_dump_json(indent=2))
    if not result.success:
        raise typer.Exit(1)


@app.command("suggest-convention")
def suggest_convention(
    path: Annotated[Path, typer.Argument(help="Statement file to inspect.")],
) -> None:
    """Print the sign convention an upload of PATH would use (nothing is written)."""

    try:
        decision = api.suggest_convention(
            path.name, _read_file(path), settings=IngestSettings.from_env()
        )
    except IngestError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(1) from exc
    _echo_json(
        {
            "convention": decision.convention.value,
            "source": decision.source,
            "suggested": decision.suggested.value,
        }
    )


@app.command("cleanup-orphans")
def cleanup_orphans(
    user_id: str = typer.Option(..., "--user-id"),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Delete the user's source files that have no transactions."""

    deleted = api.cleanup_orphaned_source_files(user_id=user_id, database_url=database_url)
    _echo_json({"deleted": deleted})


@app.command("preview-categories")
def preview_categories(
    user_id: str = typer.Option(..., "--user-id"),
    train_issuer: str = typer.Option(..., help="Issuer whose categorized rows train the vote."),
    target_issuer: str = typer.Option(..., help="Issuer whose uncategorized rows get predictions."),
    apply: bool = typer.Option(False, "--apply", help="Write the predictions after previewing."),
    include_low_confidence: bool = typer.Option(
        False, help="With --apply, also write predictions below the preview threshold."
    ),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Preview (and optionally apply) cross-institution category predictions."""

    settings = IngestSettings.from_env()
    preview = api.preview_cross_institution_categories(
        user_id=user_id,
        train_issuer=train_issuer,
        target_issuer=target_issuer,
        database_url=database_url,
        settings=settings,
    )
    payload: dict[str, object] = {
        "train_issuer": preview.train_issuer,
        "target_issuer": preview.target_issuer,
        "threshold": preview.threshold,
        "training_samples": preview.training_samples,
        "uncategorized": preview.uncategorized,
        "high_confidence": len(preview.high_confidence),
        "low_confidence": len(preview.low_confidence),
        "predictions": [asdict(p) for p in preview.predictions],
    }
    if apply:
        payload["applied"] = api.apply_category_preview(
            preview,
            user_id=user_id,
            include_low_confidence=include_low_confidence,
            database_url=database_url,
            settings=settings,
        )
    _echo_json(payload)


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m statement_ingest.cli`
    app()
