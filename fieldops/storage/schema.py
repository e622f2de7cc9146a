"""
Declared vs. observed schema.

DeclaredSchema  - what the compiled data model (SQLAlchemy MetaData) expects.
ObservedSchema  - what the live database actually has, via introspection.
SchemaDiff      - per-run comparison of the two. Never persisted.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import (
    Boolean, Date, DateTime, Enum as SAEnum, Float, Integer, MetaData, Numeric, Table,
    inspect,
)
from sqlalchemy.engine import Connection, Dialect
from sqlalchemy.schema import Column, DefaultClause
from sqlalchemy.sql.elements import TextClause

logger = logging.getLogger(__name__)


# ── Backfill defaults ─────────────────────────────────────────────────────────

INTEGER_DEFAULT = "0"
REAL_DEFAULT = "0.0"
DECIMAL_DEFAULT = "0"
TEXT_DEFAULT = "''"
# Must read back through the ORM's date processors
DATETIME_DEFAULT = "'1970-01-01 00:00:00.000000'"
DATE_DEFAULT = "'1970-01-01'"


def classify_storage_type(column_type, type_name: str) -> str:
    """Return "integer", "real", "decimal", "datetime", "date", "enum" or "text".

    SQLAlchemy type metadata decides first; the compiled type name is the
    fallback for custom or dialect-specific types.
    """
    if isinstance(column_type, SAEnum):
        return "enum"
    if isinstance(column_type, (Boolean, Integer)):
        return "integer"
    if isinstance(column_type, Float):
        return "real"
    if isinstance(column_type, Numeric):
        return "decimal"
    if isinstance(column_type, DateTime):
        return "datetime"
    if isinstance(column_type, Date):
        return "date"

    upper = type_name.upper()
    if "INT" in upper or "BOOL" in upper:
        return "integer"
    if "REAL" in upper or "FLOA" in upper or "DOUB" in upper:
        return "real"
    if "DEC" in upper or "NUMERIC" in upper or "MONEY" in upper:
        return "decimal"
    if "DATETIME" in upper or "TIMESTAMP" in upper:
        return "datetime"
    if upper.startswith("DATE"):
        return "date"
    return "text"


_DEFAULTS_BY_KIND = {
    "integer": INTEGER_DEFAULT,
    "real": REAL_DEFAULT,
    "decimal": DECIMAL_DEFAULT,
    "datetime": DATETIME_DEFAULT,
    "date": DATE_DEFAULT,
    "text": TEXT_DEFAULT,
}


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _constant_server_default(column: Column) -> Optional[str]:
    """The column's own server default, if it is a constant SQLite can backfill."""
    default = column.server_default
    if not isinstance(default, DefaultClause):
        return None
    arg = default.arg
    if isinstance(arg, str):
        return _quote(arg)
    if isinstance(arg, TextClause):
        text = arg.text.strip()
        # ADD COLUMN rejects non-constant defaults such as CURRENT_TIMESTAMP
        if text.upper().startswith("CURRENT_") or "(" in text:
            return None
        return text
    return None


def _enum_default(column: Column) -> str:
    """The stored label of the column's Python default, else its first label."""
    labels = list(column.type.enums)
    if not labels:
        return TEXT_DEFAULT

    default = column.default
    if default is not None and default.is_scalar:
        value = default.arg
        candidates = [value.name, value.value] if isinstance(value, enum.Enum) else [value]
        for candidate in candidates:
            if candidate in labels:
                return _quote(candidate)
    return _quote(labels[0])


def backfill_default(column: Column, kind: str) -> str:
    """A constant every existing row can take when a NOT NULL column is added."""
    default = _constant_server_default(column)
    if default is not None:
        return default
    if kind == "enum":
        return _enum_default(column)
    return _DEFAULTS_BY_KIND[kind]


# ── Declared ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DeclaredColumn:
    name: str
    type_sql: str
    nullable: bool
    primary_key: bool = False
    backfill_default: str = TEXT_DEFAULT
    kind: str = "text"

    def add_column_sql(self, table: str, dialect: Dialect) -> str:
        quote = dialect.identifier_preparer.quote
        sql = f"ALTER TABLE {quote(table)} ADD COLUMN {quote(self.name)} {self.type_sql}"
        if not self.nullable:
            sql += f" NOT NULL DEFAULT {self.backfill_default}"
        return sql

    def repair_sql(self, table: str, dialect: Dialect) -> Optional[str]:
        """UPDATE that replaces empty strings left in a non-text column, or None."""
        if self.kind == "text" or self.primary_key:
            return None
        quote = dialect.identifier_preparer.quote
        col = quote(self.name)
        value = "NULL" if self.nullable else self.backfill_default
        return f"UPDATE {quote(table)} SET {col} = {value} WHERE {col} = ''"


@dataclass
class DeclaredTable:
    name: str
    columns: list[DeclaredColumn]
    index_names: list[str] = field(default_factory=list)
    table: Optional[Table] = None

    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


@dataclass
class DeclaredSchema:
    tables: list[DeclaredTable]

    @classmethod
    def from_metadata(cls, metadata: MetaData, dialect: Dialect) -> "DeclaredSchema":
        tables = []
        for table in metadata.sorted_tables:
            columns = []
            for column in table.columns:
                type_sql = column.type.compile(dialect=dialect)
                kind = classify_storage_type(column.type, type_sql)
                columns.append(DeclaredColumn(
                    name=column.name,
                    type_sql=type_sql,
                    nullable=bool(column.nullable),
                    primary_key=column.primary_key,
                    backfill_default=backfill_default(column, kind),
                    kind=kind,
                ))
            tables.append(DeclaredTable(
                name=table.name,
                columns=columns,
                index_names=sorted(ix.name for ix in table.indexes if ix.name),
                table=table,
            ))
        return cls(tables=tables)

    def get(self, name: str) -> Optional[DeclaredTable]:
        for table in self.tables:
            if table.name == name:
                return table
        return None


# ── Observed ──────────────────────────────────────────────────────────────────

@dataclass
class ObservedSchema:
    # Keys and values are lower-cased: SQLite identifiers are case-insensitive.
    columns: dict[str, set[str]] = field(default_factory=dict)
    indexes: dict[str, set[str]] = field(default_factory=dict)

    @classmethod
    def from_connection(cls, conn: Connection) -> "ObservedSchema":
        insp = inspect(conn)
        observed = cls()
        for name in insp.get_table_names():
            key = name.lower()
            observed.columns[key] = {c["name"].lower() for c in insp.get_columns(name)}
            observed.indexes[key] = {
                ix["name"].lower() for ix in insp.get_indexes(name) if ix.get("name")
            }
        return observed

    def has_table(self, name: str) -> bool:
        return bool(self.columns.get(name.lower()))

    def has_column(self, table: str, column: str) -> bool:
        return column.lower() in self.columns.get(table.lower(), set())

    def has_index(self, name: str) -> bool:
        target = name.lower()
        return any(target in names for names in self.indexes.values())

    def column_count(self, table: str) -> int:
        return len(self.columns.get(table.lower(), ()))


# ── Diff ──────────────────────────────────────────────────────────────────────

@dataclass
class SchemaDiff:
    missing_columns: dict[str, list[DeclaredColumn]] = field(default_factory=dict)
    missing_tables: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.missing_columns and not self.missing_tables

    @classmethod
    def compute(cls, declared: DeclaredSchema, observed: ObservedSchema) -> "SchemaDiff":
        diff = cls()
        for table in declared.tables:
            if observed.column_count(table.name) == 0:
                # Entire table missing, created in the table phase
                diff.missing_tables.append(table.name)
                continue
            missing = [c for c in table.columns if not observed.has_column(table.name, c.name)]
            if missing:
                diff.missing_columns[table.name] = missing
        return diff
