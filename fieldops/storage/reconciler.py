"""
Non-destructive schema reconciler.

Runs once at startup, before any service touches the database, and applies
only additive changes:

  Phase 1 - columns: ALTER TABLE ... ADD COLUMN for every declared column an
            existing table lacks. NOT NULL columns get a type-appropriate
            default so the ALTER succeeds on tables that already hold rows.
  Phase 2 - tables:  the full creation script for the declared schema,
            rewritten to CREATE ... IF NOT EXISTS, one statement at a time.
  Phase 3 - repair:  empty strings left in numeric, date or enum columns
            (by older upgrades) are replaced with the column's backfill value.

Nothing is ever dropped or renamed. Every statement is attempted on its own;
a failure becomes a warning and the run carries on. reconcile() never raises.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import MetaData, text
from sqlalchemy.engine import Engine
from sqlalchemy.schema import CreateIndex, CreateTable

from fieldops.storage.schema import DeclaredSchema, ObservedSchema, SchemaDiff

logger = logging.getLogger(__name__)

PHASE_COLUMNS = "columns"
PHASE_TABLES = "tables"
PHASE_REPAIR = "repair"

APPLIED = "applied"
UNCHANGED = "unchanged"
FAILED = "failed"

_CREATE_RE = re.compile(r"^\s*CREATE\s+(UNIQUE\s+)?(TABLE|INDEX)\s+(?!IF\s+NOT\s+EXISTS)", re.IGNORECASE)


@dataclass
class StatementOutcome:
    phase: str
    statement: str
    outcome: str
    error: Optional[str] = None


@dataclass
class ReconcileResult:
    changes_applied: bool = False
    warnings: list[str] = field(default_factory=list)
    outcomes: list[StatementOutcome] = field(default_factory=list)
    connected: bool = True
    duration_seconds: float = 0.0

    @property
    def applied(self) -> list[StatementOutcome]:
        return [o for o in self.outcomes if o.outcome == APPLIED]

    @property
    def failed(self) -> list[StatementOutcome]:
        return [o for o in self.outcomes if o.outcome == FAILED]

    def to_dict(self) -> dict:
        return {
            "changes_applied": self.changes_applied,
            "connected": self.connected,
            "warnings": list(self.warnings),
            "applied": len(self.applied),
            "failed": len(self.failed),
            "duration_seconds": round(self.duration_seconds, 3),
            "outcomes": [
                {
                    "phase": o.phase,
                    "statement": o.statement,
                    "outcome": o.outcome,
                    "error": o.error,
                }
                for o in self.outcomes
            ],
        }


@dataclass
class _CreateStatement:
    kind: str           # "table" | "index"
    target: str
    sql: str


def make_conditional(statement: str) -> Optional[str]:
    """Rewrite CREATE TABLE / CREATE [UNIQUE] INDEX to its IF NOT EXISTS form.

    Returns None for anything that is not a table or index creation.
    """
    stmt = statement.strip()
    match = _CREATE_RE.match(stmt)
    if not match:
        if re.match(r"^\s*CREATE\s+(UNIQUE\s+)?(TABLE|INDEX)\s+IF\s+NOT\s+EXISTS", stmt, re.IGNORECASE):
            return stmt
        return None
    unique = "UNIQUE " if match.group(1) else ""
    kind = match.group(2).upper()
    return f"CREATE {unique}{kind} IF NOT EXISTS " + stmt[match.end():]


class SchemaReconciler:
    """Brings a live database up to date with a declared MetaData, additively."""

    def __init__(self, metadata: MetaData):
        self.metadata = metadata

    def reconcile(self, engine: Engine) -> ReconcileResult:
        started = time.monotonic()
        result = ReconcileResult()

        try:
            with engine.connect() as conn:
                observed = ObservedSchema.from_connection(conn)
        except Exception as e:
            # Nothing to reconcile yet; the caller creates the database from scratch
            result.connected = False
            result.warnings.append(f"Cannot connect to database: {e}")
            logger.warning("Schema reconcile skipped, database unreachable: %s", e)
            result.duration_seconds = time.monotonic() - started
            return result

        declared = DeclaredSchema.from_metadata(self.metadata, engine.dialect)
        diff = SchemaDiff.compute(declared, observed)

        self._add_missing_columns(engine, diff, result)
        self._create_missing_tables(engine, observed, result)
        self._repair_empty_values(engine, declared, result)

        result.changes_applied = bool(result.applied)
        result.duration_seconds = time.monotonic() - started
        if result.changes_applied:
            logger.info(
                "Non-destructive migration completed: %d change(s), %d warning(s). All data preserved.",
                len(result.applied), len(result.warnings),
            )
        else:
            logger.info("Schema up to date (%d warning(s)).", len(result.warnings))
        return result

    # ── Phase 1: columns ─────────────────────────────────────────────

    def _add_missing_columns(self, engine: Engine, diff: SchemaDiff, result: ReconcileResult) -> None:
        for table_name, columns in diff.missing_columns.items():
            for column in columns:
                sql = column.add_column_sql(table_name, engine.dialect)
                try:
                    with engine.begin() as conn:
                        conn.execute(text(sql))
                except Exception as e:
                    message = f"Could not add column {table_name}.{column.name}: {e}"
                    result.warnings.append(message)
                    result.outcomes.append(StatementOutcome(PHASE_COLUMNS, sql, FAILED, str(e)))
                    logger.warning("[schema] %s", message)
                    continue
                result.outcomes.append(StatementOutcome(PHASE_COLUMNS, sql, APPLIED))
                logger.info("[schema] Added column: %s.%s", table_name, column.name)

    # ── Phase 2: tables & indexes ────────────────────────────────────

    def creation_script(self, engine: Engine) -> list[_CreateStatement]:
        """The full creation script for the declared schema, in dependency order."""
        statements = []
        for table in self.metadata.sorted_tables:
            sql = str(CreateTable(table).compile(dialect=engine.dialect)).strip()
            statements.append(_CreateStatement("table", table.name, sql))
            for index in sorted(table.indexes, key=lambda ix: ix.name or ""):
                sql = str(CreateIndex(index).compile(dialect=engine.dialect)).strip()
                statements.append(_CreateStatement("index", index.name, sql))
        return statements

    def _create_missing_tables(self, engine: Engine, observed: ObservedSchema, result: ReconcileResult) -> None:
        for stmt in self.creation_script(engine):
            sql = make_conditional(stmt.sql)
            if sql is None:
                continue

            existed = (
                observed.has_table(stmt.target) if stmt.kind == "table"
                else observed.has_index(stmt.target)
            )
            try:
                with engine.begin() as conn:
                    conn.execute(text(sql))
            except Exception as e:
                message = f"Migration warning on {stmt.kind} {stmt.target}: {e}"
                result.warnings.append(message)
                result.outcomes.append(StatementOutcome(PHASE_TABLES, sql, FAILED, str(e)))
                logger.warning("[schema] %s", message)
                continue

            if existed:
                result.outcomes.append(StatementOutcome(PHASE_TABLES, sql, UNCHANGED))
            else:
                result.outcomes.append(StatementOutcome(PHASE_TABLES, sql, APPLIED))
                logger.info("[schema] Created %s: %s", stmt.kind, stmt.target)

    # ── Phase 3: repair ──────────────────────────────────────────────

    def _repair_empty_values(self, engine: Engine, declared: DeclaredSchema, result: ReconcileResult) -> None:
        try:
            with engine.connect() as conn:
                observed = ObservedSchema.from_connection(conn)
        except Exception as e:
            result.warnings.append(f"Repair skipped: {e}")
            logger.warning("[schema] Repair skipped: %s", e)
            return

        for table in declared.tables:
            for column in table.columns:
                if not observed.has_column(table.name, column.name):
                    continue
                sql = column.repair_sql(table.name, engine.dialect)
                if sql is None:
                    continue
                try:
                    with engine.begin() as conn:
                        affected = conn.execute(text(sql)).rowcount
                except Exception as e:
                    message = f"Could not repair {table.name}.{column.name}: {e}"
                    result.warnings.append(message)
                    result.outcomes.append(StatementOutcome(PHASE_REPAIR, sql, FAILED, str(e)))
                    logger.warning("[schema] %s", message)
                    continue
                if affected:
                    result.outcomes.append(StatementOutcome(PHASE_REPAIR, sql, APPLIED))
                    logger.info("[schema] Repaired %d empty value(s) in %s.%s", affected, table.name, column.name)


def reconcile(metadata: MetaData, engine: Engine) -> ReconcileResult:
    """Run the additive reconciler once. Never raises."""
    try:
        return SchemaReconciler(metadata).reconcile(engine)
    except Exception as e:
        logger.exception("Schema reconcile failed unexpectedly")
        return ReconcileResult(warnings=[f"Schema reconcile failed: {e}"])
