import contextlib
import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


DOCUMENT_TABLES = ("quotation_documents", "order_documents")


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def executescript(self, sql: str):
        if self.backend != "postgres":
            return self._conn.executescript(sql)
        for statement in _split_sql_statements(sql):
            if statement.strip():
                self.execute(statement)

    def commit(self):
        self._conn.commit()

    def close(self):
        self._conn.close()


def _split_sql_statements(sql: str) -> List[str]:
    statements = []
    current = []
    in_single = False
    for ch in sql:
        if ch == "'":
            in_single = not in_single
        elif ch == ";" and not in_single:
            statements.append("".join(current))
            current = []
            continue
        current.append(ch)
    if current:
        statements.append("".join(current))
    return statements


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 nao instalado.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row
    return Database("sqlite", conn)


@contextlib.contextmanager
def open_database(db_path: str):
    """Conexao curta para componentes que vivem fora do ciclo de request (threads, listeners)."""
    db = connect_database(db_path)
    try:
        yield db
        db.commit()
    finally:
        db.close()


def get_db():
    if "db" not in g:
        g.db = connect_database(current_app.config["DB_PATH"])
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    create_schema(db)
    db.commit()


def create_schema(db: Database) -> None:
    timestamp_type = "TIMESTAMPTZ" if db.backend == "postgres" else "TEXT"
    statements = [
        f"""
        CREATE TABLE IF NOT EXISTS local_cache (
            cache_key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at {timestamp_type} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    ]
    for table in DOCUMENT_TABLES:
        statements.append(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                payload_json TEXT NOT NULL,
                updated_at {timestamp_type} NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        statements.append(f"CREATE INDEX IF NOT EXISTS ix_{table}_updated_at ON {table} (updated_at)")
    db.executescript(";\n".join(statements) + ";")
