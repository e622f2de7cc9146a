from datetime import datetime
from decimal import Decimal

from sqlalchemy import Column, Integer, MetaData, String, Table, inspect, text
from sqlalchemy.types import UserDefinedType

from fieldops.services.repositories import LocalRepository
from fieldops.storage.database import Base, init_db, make_engine, make_session_factory
from fieldops.storage.reconciler import make_conditional, reconcile
from fieldops.storage.schema import DeclaredColumn, DeclaredSchema, classify_storage_type
from fieldops.sync.entities import get_entity


def _columns(engine, table):
    return {c["name"] for c in inspect(engine).get_columns(table)}


class BrokenType(UserDefinedType):
    cache_ok = True

    def get_col_spec(self, **kw):
        return "BROKEN((("


# ── Columns ───────────────────────────────────────────────────────────────────

def test_adds_missing_not_null_columns_and_keeps_rows(engine):
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE customers (id VARCHAR PRIMARY KEY, name VARCHAR NOT NULL)"))
        conn.execute(text("INSERT INTO customers (id, name) VALUES ('c1', 'Ann Smith')"))

    result = reconcile(Base.metadata, engine)

    assert result.connected
    assert result.changes_applied
    assert {"needs_review", "balance_owed", "customer_type", "notes"} <= _columns(engine, "customers")
    with engine.connect() as conn:
        row = conn.execute(text(
            "SELECT name, needs_review, balance_owed, customer_type, notes FROM customers WHERE id = 'c1'"
        )).one()
    assert row.name == "Ann Smith"
    assert row.needs_review == 0
    assert row.balance_owed == 0
    assert row.customer_type == "residential"
    assert row.notes is None


def test_second_run_changes_nothing(engine):
    first = reconcile(Base.metadata, engine)
    second = reconcile(Base.metadata, engine)

    assert first.changes_applied
    assert second.changes_applied is False
    assert second.warnings == []
    assert second.applied == []


def test_creates_missing_tables_and_indexes(engine):
    result = reconcile(Base.metadata, engine)

    tables = set(inspect(engine).get_table_names())
    assert set(Base.metadata.tables) <= tables
    index_names = {ix["name"] for ix in inspect(engine).get_indexes("jobs")}
    assert "ix_jobs_job_number" in index_names
    assert all(o.statement.upper().startswith(("CREATE TABLE IF NOT EXISTS", "CREATE INDEX IF NOT EXISTS",
                                                "CREATE UNIQUE INDEX IF NOT EXISTS"))
               for o in result.outcomes)


def test_recreates_a_dropped_index_only(engine):
    reconcile(Base.metadata, engine)
    with engine.begin() as conn:
        conn.execute(text("DROP INDEX ix_customers_name"))

    result = reconcile(Base.metadata, engine)

    assert result.changes_applied
    assert len(result.applied) == 1
    assert "ix_customers_name" in result.applied[0].statement


def test_failed_column_does_not_stop_the_run(engine):
    metadata = MetaData()
    Table(
        "widgets", metadata,
        Column("id", Integer, primary_key=True),
        Column("bad", BrokenType(), nullable=True),
        Column("size", Integer, nullable=False),
    )
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE widgets (id INTEGER PRIMARY KEY)"))
        conn.execute(text("INSERT INTO widgets (id) VALUES (1)"))

    result = reconcile(metadata, engine)

    assert result.changes_applied
    assert "size" in _columns(engine, "widgets")
    assert "bad" not in _columns(engine, "widgets")
    assert any("widgets.bad" in w for w in result.warnings)
    assert result.failed
    assert any("size" in o.statement for o in result.applied)
    with engine.connect() as conn:
        assert conn.execute(text("SELECT size FROM widgets WHERE id = 1")).scalar() == 0


def test_upgraded_rows_read_back_through_the_orm(engine):
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE customers (id VARCHAR PRIMARY KEY, name VARCHAR NOT NULL)"))
        conn.execute(text("INSERT INTO customers (id, name) VALUES ('c1', 'Ann Smith')"))
        conn.execute(text("CREATE TABLE time_entries (id VARCHAR PRIMARY KEY, notes TEXT)"))
        conn.execute(text("INSERT INTO time_entries (id, notes) VALUES ('t1', 'old')"))

    reconcile(Base.metadata, engine)
    factory = make_session_factory(engine)

    (customer,) = LocalRepository(get_entity("customers"), factory).list()
    assert customer["name"] == "Ann Smith"
    assert customer["customer_type"] == "residential"
    assert Decimal(customer["balance_owed"]) == 0

    (entry,) = LocalRepository(get_entity("time_entries"), factory).list()
    assert entry["start_time"].startswith("1970-01-01")
    assert entry["hours"] == 0.0


def test_repairs_empty_strings_left_by_older_upgrades(engine):
    reconcile(Base.metadata, engine)
    with engine.begin() as conn:
        conn.execute(text(
            "INSERT INTO customers (id, name, customer_type, balance_owed, needs_review, is_archived) "
            "VALUES ('c1', 'Ann', '', '', 0, 0)"
        ))
        conn.execute(text(
            "INSERT INTO time_entries (id, start_time, end_time, hours, is_billable) "
            "VALUES ('t1', '', '', '', 1)"
        ))

    result = reconcile(Base.metadata, engine)

    assert result.changes_applied
    assert all(o.phase == "repair" for o in result.applied)
    with engine.connect() as conn:
        customer = conn.execute(text("SELECT customer_type, balance_owed FROM customers")).one()
        entry = conn.execute(text("SELECT start_time, end_time, hours FROM time_entries")).one()
    assert customer.customer_type == "residential"
    assert customer.balance_owed == 0
    assert entry.start_time.startswith("1970-01-01")
    assert entry.end_time is None
    assert entry.hours == 0

    assert reconcile(Base.metadata, engine).changes_applied is False


def test_unreachable_database_is_reported_not_raised(tmp_path):
    missing = tmp_path / "no" / "such" / "dir" / "fieldops.db"
    engine = make_engine(f"sqlite:///{missing}")

    result = reconcile(Base.metadata, engine)

    assert result.connected is False
    assert result.changes_applied is False
    assert len(result.warnings) == 1
    assert "connect" in result.warnings[0].lower()
    engine.dispose()


def test_init_db_on_fresh_database(engine):
    result = init_db(engine)

    assert result.connected
    assert result.changes_applied
    assert "sync_offline_queue" in inspect(engine).get_table_names()


# ── Backfill defaults ─────────────────────────────────────────────────────────

def test_backfill_default_follows_the_column_type(engine):
    declared = DeclaredSchema.from_metadata(Base.metadata, engine.dialect)
    customers = {c.name: c for c in declared.get("customers").columns}

    assert customers["needs_review"].backfill_default == "0"
    assert customers["balance_owed"].backfill_default == "0"
    assert customers["name"].backfill_default == "''"

    lines = {c.name: c for c in declared.get("estimate_lines").columns}
    assert lines["quantity"].backfill_default == "0.0"

    jobs = {c.name: c for c in declared.get("jobs").columns}
    assert jobs["status"].backfill_default == "'scheduled'"
    assert jobs["priority"].backfill_default == "'normal'"

    entries = {c.name: c for c in declared.get("time_entries").columns}
    assert entries["start_time"].kind == "datetime"
    assert datetime.fromisoformat(entries["start_time"].backfill_default.strip("'")).year == 1970


def test_classify_falls_back_to_type_name():
    assert classify_storage_type(BrokenType(), "BIGINT") == "integer"
    assert classify_storage_type(BrokenType(), "DOUBLE PRECISION") == "real"
    assert classify_storage_type(BrokenType(), "MONEY") == "decimal"
    assert classify_storage_type(BrokenType(), "TIMESTAMP") == "datetime"
    assert classify_storage_type(BrokenType(), "DATE") == "date"
    assert classify_storage_type(BrokenType(), "CHARACTER VARYING") == "text"


def test_own_constant_server_default_is_used(engine):
    metadata = MetaData()
    Table(
        "tickets", metadata,
        Column("id", Integer, primary_key=True),
        Column("state", String, nullable=False, server_default="open"),
    )
    declared = DeclaredSchema.from_metadata(metadata, engine.dialect)
    state = declared.get("tickets").columns[1]

    assert state.add_column_sql("tickets", engine.dialect).endswith("NOT NULL DEFAULT 'open'")


def test_nullable_column_gets_no_default(engine):
    column = DeclaredColumn(name="notes", type_sql="TEXT", nullable=True)

    assert column.add_column_sql("jobs", engine.dialect) == 'ALTER TABLE jobs ADD COLUMN notes TEXT'


# ── make_conditional ──────────────────────────────────────────────────────────

def test_make_conditional_rewrites_creates():
    assert make_conditional("CREATE TABLE jobs (id VARCHAR)") == "CREATE TABLE IF NOT EXISTS jobs (id VARCHAR)"
    assert make_conditional("CREATE INDEX ix_a ON a (b)") == "CREATE INDEX IF NOT EXISTS ix_a ON a (b)"
    assert (make_conditional("create unique index ix_a ON a (b)")
            == "CREATE UNIQUE INDEX IF NOT EXISTS ix_a ON a (b)")


def test_make_conditional_leaves_other_statements():
    already = "CREATE TABLE IF NOT EXISTS jobs (id VARCHAR)"
    assert make_conditional(already) == already
    assert make_conditional("DROP TABLE jobs") is None
    assert make_conditional("CREATE VIEW v AS SELECT 1") is None
