"""
Tests for migration file discovery in ``scripts.migrate``.
"""

from scripts.migrate import MIGRATIONS_DIR, discover_migrations, pending_migrations


def test_schema_migration_is_shipped():
    names = [p.name for p in discover_migrations()]
    assert "001_create_negotiations.sql" in names


def test_migrations_sorted_by_filename(tmp_path):
    for name in ("010_b.sql", "002_a.sql", "001_base.sql", "notes.txt"):
        (tmp_path / name).write_text("SELECT 1;")

    assert [p.name for p in discover_migrations(tmp_path)] == [
        "001_base.sql",
        "002_a.sql",
        "010_b.sql",
    ]


def test_pending_skips_applied(tmp_path):
    for name in ("001_base.sql", "002_next.sql"):
        (tmp_path / name).write_text("SELECT 1;")
    files = discover_migrations(tmp_path)

    pending = pending_migrations(files, applied={"001_base.sql"})
    assert [p.name for p in pending] == ["002_next.sql"]


def test_schema_creates_both_tables():
    sql = (MIGRATIONS_DIR / "001_create_negotiations.sql").read_text()
    assert "CREATE TABLE IF NOT EXISTS negotiations" in sql
    assert "CREATE TABLE IF NOT EXISTS negotiation_offer_history" in sql
