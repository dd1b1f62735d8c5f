from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "libs" / "db" / "alembic.ini"


def test_upgrade_and_downgrade_on_sqlite(tmp_path, monkeypatch):
    url = f"sqlite+pysqlite:///{tmp_path / 'migrated.sqlite3'}"
    monkeypatch.setenv("DATABASE_URL", url)
    cfg = Config(str(ALEMBIC_INI))

    command.upgrade(cfg, "head")
    engine = create_engine(url)
    try:
        insp = inspect(engine)
        assert {
            "ingest_categories",
            "ingest_merchant_rules",
            "ingest_source_files",
            "ingest_transactions",
        } <= set(insp.get_table_names())
        fingerprint_indexes = {
            ix["name"]: ix["unique"] for ix in insp.get_indexes("ingest_source_files")
        }
        assert fingerprint_indexes["uq_ingest_sf_fingerprint"]
        checks = {c["name"] for c in insp.get_check_constraints("ingest_transactions")}
        assert "ck_ingest_tx_spending_derivation" in checks

        command.downgrade(cfg, "base")
        assert "ingest_transactions" not in set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
