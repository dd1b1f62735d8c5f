from ledger_db.client import session_scope
from ledger_db.models.ledger import IngestSourceFile
from sqlalchemy import select

from statement_ingest import cleanup_orphaned_source_files
from tests.helpers.db import add_source_file, add_transaction


def test_only_empty_source_files_of_the_user_are_removed(db_url):
    add_transaction(db_url, user_id="u1", filename="kept.csv", merchant="shop", amount_raw="-1.00")
    add_source_file(db_url, user_id="u1", filename="orphan.csv")
    add_source_file(db_url, user_id="u2", filename="orphan.csv")

    assert cleanup_orphaned_source_files(user_id="u1", database_url=db_url) == 1
    assert cleanup_orphaned_source_files(user_id="u1", database_url=db_url) == 0

    with session_scope(database_url=db_url) as s:
        remaining = s.execute(
            select(IngestSourceFile.user_id, IngestSourceFile.filename).order_by(
                IngestSourceFile.id
            )
        ).all()
    assert [tuple(r) for r in remaining] == [("u1", "kept.csv"), ("u2", "orphan.csv")]
