from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from urllib.parse import quote_plus, unquote_plus, urlparse, urlunparse
from pathlib import Path


def get_engine(url: str | None = None):
    """Create a SQLAlchemy engine. Defaults to in-memory SQLite when url is None."""
    url = normalize_db_url(url or "sqlite:///:memory:")
    engine = create_engine(url, echo=False, future=True, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores FOREIGN KEY clauses unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def normalize_db_url(value: str) -> str:
    """Turn the accepted database settings into a SQLAlchemy URL.

    - A value containing '://' is treated as a URL; credentials are
      percent-encoded so passwords with '@' or ':' survive.
    - A semicolon DSN (``Server=...;User=...;Database=...``) becomes a
      ``mysql+pymysql`` URL.
    - Anything that looks like a filesystem path becomes a SQLite URL.
    """
    if not value:
        return value

    if "://" in value:
        parsed = urlparse(value)
        if not (parsed.username or parsed.password):
            return value
        userinfo = quote_plus(unquote_plus(parsed.username or ""))
        if parsed.password is not None:
            userinfo = f"{userinfo}:{quote_plus(unquote_plus(parsed.password))}"
        hostport = parsed.hostname or ""
        if parsed.port:
            hostport = f"{hostport}:{parsed.port}"
        return urlunparse(parsed._replace(netloc=f"{userinfo}@{hostport}"))

    if "=" in value and ";" in value:
        kv = {}
        for part in value.split(";"):
            if "=" in part:
                k, v = part.split("=", 1)
                kv[k.strip().lower()] = v.strip()
        host = kv.get("server") or kv.get("host")
        user = kv.get("user") or kv.get("uid") or kv.get("username")
        password = kv.get("password") or kv.get("pwd") or ""
        database = kv.get("database") or kv.get("dbname")
        port = kv.get("port")
        if host and user and database:
            port_part = f":{port}" if port else ""
            return f"mysql+pymysql://{quote_plus(user)}:{quote_plus(password)}@{host}{port_part}/{database}"

    path = value.replace("\\", "/")
    if "/" in path or Path(path).suffix in (".db", ".sqlite", ".sqlite3"):
        return f"sqlite:///{path}"
    return value


def get_sessionmaker(engine: Engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine):
    """Create all tables using metadata from the models package."""
    # Import models lazily to avoid circular imports at package import time
    from tagexplorer.models import Base

    Base.metadata.create_all(engine)


class InMemoryAdapter:
    """Lightweight in-memory DB adapter for tests.

    Usage:
        adapter = InMemoryAdapter()
        session = adapter.session()
    """

    def __init__(self):
        self.engine = get_engine("sqlite:///:memory:")
        self.Session = get_sessionmaker(self.engine)
        init_db(self.engine)

    def session(self):
        return self.Session()
