from __future__ import annotations

import argparse
from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection

from finance_api.config import settings
from finance_api.logging_config import configure_logging, get_logger

logger = get_logger("finance_api.migrations")

MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "db" / "migrations"


def split_sql_statements(sql: str) -> list[str]:
    """Split a script on top-level semicolons.

    Semicolons inside quoted literals, dollar-quoted bodies and `--` comments
    do not end a statement. Comment-only chunks are dropped.
    """
    statements: list[str] = []
    buffer: list[str] = []
    quote: str | None = None
    i = 0
    while i < len(sql):
        ch = sql[i]
        if quote is None and sql.startswith("--", i):
            end = sql.find("\n", i)
            i = len(sql) if end == -1 else end + 1
            buffer.append("\n")
            continue
        if sql.startswith("$$", i):
            quote = None if quote == "$$" else (quote or "$$")
            buffer.append("$$")
            i += 2
            continue
        if ch == "'" and quote in (None, "'"):
            quote = None if quote == "'" else "'"
        if ch == ";" and quote is None:
            statements.append("".join(buffer).strip())
            buffer = []
        else:
            buffer.append(ch)
        i += 1
    statements.append("".join(buffer).strip())
    return [s for s in statements if s]


def pending_migrations(conn: Connection, files: list[Path]) -> list[Path]:
    conn.execute(
        text(
            """
            create table if not exists schema_migrations (
              filename text primary key,
              applied_at timestamptz not null default now()
            )
            """
        )
    )
    applied = set(conn.execute(text("select filename from schema_migrations")).scalars())
    return [f for f in files if f.name not in applied]


def apply_migration(conn: Connection, file: Path) -> int:
    statements = split_sql_statements(file.read_text(encoding="utf-8"))
    for stmt in statements:
        conn.execute(text(stmt))
    conn.execute(text("insert into schema_migrations (filename) values (:filename)"), {"filename": file.name})
    return len(statements)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Apply pending SQL migrations.")
    parser.add_argument("--dry-run", action="store_true", help="list pending files without applying them")
    args = parser.parse_args(argv)

    configure_logging(settings.log_level)
    files = sorted(MIGRATIONS_DIR.glob("*.sql"))
    if not files:
        logger.warning("migrations.none_found", directory=str(MIGRATIONS_DIR))
        return

    engine = create_engine(settings.database_url, future=True, pool_pre_ping=True)
    with engine.begin() as conn:
        pending = pending_migrations(conn, files)
        if args.dry_run:
            logger.info("migrations.pending", files=[f.name for f in pending])
            return
        for file in pending:
            count = apply_migration(conn, file)
            logger.info("migrations.applied", filename=file.name, statements=count)

    logger.info("migrations.finished", applied=len(pending), total=len(files))


if __name__ == "__main__":
    main()
