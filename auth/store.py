"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Service and route
code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  The password hash is deliberately excluded from find_by_id(). The only
  way to read it is get_password_hash(), which returns the bare string for
  the login comparison. That keeps the hash out of any User object that
  could end up serialized into a response.

  The email is the primary key, so duplicate registration is caught by the
  database as an IntegrityError and re-raised as DuplicateUser.

DB path: auth/coinserver.db unless DATABASE_URL is set.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.errors import DuplicateUser
from auth.models import Bank, User

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'coinserver.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(255), primary_key=True),  # == email
    Column("email", String(255), nullable=False),
    Column("name", String(255), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("setup_complete", Integer, nullable=False, server_default="0"),
    Column("banks", Text, nullable=False, server_default="[]"),  # JSON list of Bank
)

# Columns every read returns. hashed_password is not among them.
_PUBLIC_COLUMNS = [c for c in _users.c if c.name != "hashed_password"]

# Fields update_by_id() accepts. Anything else is a programming error.
_UPDATABLE = {"name", "setup_complete", "banks"}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _banks_to_json(banks: list[Bank]) -> str:
    return json.dumps([{"id": b.id, "name": b.name, "type": b.type, "amount": b.amount} for b in banks])


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore()
        store.insert(User(email="a@example.com", name="A", hashed_password=hash_password("secret")))
        user = store.find_by_id("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str = "") -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_id(self, user_id: str) -> User | None:
        """Return the user with this id (email), without the password hash."""
        with self.engine.connect() as conn:
            row = conn.execute(select(*_PUBLIC_COLUMNS).where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_password_hash(self, user_id: str) -> str | None:
        """Return only the stored bcrypt hash, or None if the user does not exist."""
        with self.engine.connect() as conn:
            return conn.execute(select(_users.c.hashed_password).where(_users.c.id == user_id)).scalar()

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError:
            return False
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, user: User) -> str:
        """Insert a new user and return its id (the email).

        created_at is always stamped here; any value on the incoming User is
        ignored. Raises DuplicateUser if the email is already registered.
        """
        if not user.hashed_password:
            raise ValueError("insert() requires a hashed password")
        with self.engine.connect() as conn:
            try:
                conn.execute(
                    _users.insert().values(
                        id=user.email,
                        email=user.email,
                        name=user.name,
                        hashed_password=user.hashed_password,
                        created_at=_now_iso(),
                        setup_complete=1 if user.setup_complete else 0,
                        banks=_banks_to_json(user.banks),
                    )
                )
                conn.commit()
            except IntegrityError as exc:
                raise DuplicateUser(f"duplicate key for {user.email}") from exc
        return user.email

    def update_by_id(self, user_id: str, **fields) -> User | None:
        """Update mutable fields and return the fresh record.

        Accepted fields: name, setup_complete (bool), banks (list[Bank]).
        Returns None if user_id was not found.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        values = dict(fields)
        if "setup_complete" in values:
            values["setup_complete"] = 1 if values["setup_complete"] else 0
        if "banks" in values:
            values["banks"] = _banks_to_json(values["banks"])
        if values:
            with self.engine.connect() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
                conn.commit()
            if result.rowcount == 0:
                return None
        return self.find_by_id(user_id)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    banks = [Bank(**b) for b in json.loads(row.banks or "[]")]
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        created_at=row.created_at,
        setup_complete=bool(row.setup_complete),
        banks=banks,
    )
