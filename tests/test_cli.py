import json

from typer.testing import CliRunner

from statement_ingest.cli import app
from tests.helpers.db import seed_categories

runner = CliRunner()

STATEMENT = (
    "Date,Description,Amount\n"
    "01/05/2024,STARBUCKS,-45.99\n"
    "01/07/2024,REFUND,25.00\n"
    "01/09/2024,WHOLE FOODS,-89.32\n"
)


def test_upload_prints_result_json(db_url, tmp_path):
    seed_categories(db_url)
    path = tmp_path / "statement.csv"
    path.write_text(STATEMENT)

    result = runner.invoke(
        app,
        [
            "upload",
            str(path),
            "--user-id",
            "u1",
            "--convention",
            "negative",
            "--database-url",
            db_url,
        ],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["success"] is True
    assert payload["total_transactions"] == 3
    assert payload["file_results"][0]["amount_convention"] == "negative"


def test_suggest_convention(tmp_path):
    path = tmp_path / "chase_export.csv"
    path.write_text(STATEMENT)

    result = runner.invoke(app, ["suggest-convention", str(path)])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {
        "convention": "negative",
        "source": "filename",
        "suggested": "negative",
    }


def test_suggest_convention_reports_unusable_file(tmp_path):
    path = tmp_path / "notes.pdf"
    path.write_bytes(b"%PDF")

    result = runner.invoke(app, ["suggest-convention", str(path)])

    assert result.exit_code == 1


def test_preview_categories_without_data(db_url):
    result = runner.invoke(
        app,
        [
            "preview-categories",
            "--user-id",
            "u1",
            "--train-issuer",
            "chase",
            "--target-issuer",
            "amex",
            "--database-url",
            db_url,
        ],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["training_samples"] == 0
    assert payload["predictions"] == []
    assert "applied" not in payload
