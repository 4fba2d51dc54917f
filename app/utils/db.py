import os
from urllib.parse import quote_plus

import psycopg2
from dotenv import load_dotenv

load_dotenv()

CONNECT_TIMEOUT = int(os.getenv("DB_CONNECT_TIMEOUT", "5"))


def database_url(driver: str = "postgresql") -> str:
    """DATABASE_URL if set, else built from DB_HOST, DB_NAME, DB_USER, DB_PASSWORD, DB_PORT."""
    url = os.getenv("DATABASE_URL")
    if url:
        if driver != "postgresql" and url.startswith("postgresql://"):
            url = driver + url[len("postgresql"):]
        return url
    user = os.getenv("DB_USER", "dev")
    pwd = quote_plus(os.getenv("DB_PASSWORD", "dev"))
    host = os.getenv("DB_HOST", "127.0.0.1")
    port = os.getenv("DB_PORT", "65432")
    name = os.getenv("DB_NAME", "ledger_dev")
    return f"{driver}://{user}:{pwd}@{host}:{port}/{name}"


def get_db_connection():
    """
    Connect to PostgreSQL.

    Use as `with get_db_connection() as conn, conn.cursor() as cur:` so a
    raised error rolls the transaction back. The connect timeout is kept short
    because the webhook has to answer within the processor's window.
    """
    return psycopg2.connect(database_url(), connect_timeout=CONNECT_TIMEOUT)


def rows_to_dicts(cur, rows) -> list[dict]:
    cols = [c[0] for c in cur.description]
    return [dict(zip(cols, row)) for row in rows]


def row_to_dict(cur, row) -> dict | None:
    if not row:
        return None
    return dict(zip([c[0] for c in cur.description], row))
