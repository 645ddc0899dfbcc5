# =============================================================================
# intramail/offline/local_database.py
# Local Mirror Store (SQLite) for Offline Operations
# =============================================================================
"""
LocalMirrorStore - Last-known-good snapshot of the remote, kept in memory
and written through to SQLite.

Features:
- Automatic schema creation and first-run seeding
- bcrypt credential map (plaintext never stored)
- Local folder derivation (inbox, sent, archive, memo board)
- Append-only audit log
- Pending replay writes for offline mark-read / acknowledge
- Thread-safe: every read returns a copy taken under the lock
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union
import logging

import bcrypt
import pandas as pd

from intramail.models import (
    ALL_STAFF,
    Account,
    AuditEntry,
    DashboardStats,
    Department,
    FolderKind,
    Memo,
    Message,
    PendingWrite,
    Priority,
    RecipientStatus,
    UserRole,
    message_from_record,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)


SEED_ACCOUNTS = [
    Account(
        id="admin_shammah",
        name="Shammah Sawa",
        username="shammah",
        email="shammah@fmchong.local",
        role=UserRole.SUPER_ADMIN.value,
        department=Department.ICT.value,
        avatar="https://ui-avatars.com/api/?name=Shammah+Sawa&background=0D8ABC&color=fff",
        is_online=True,
    ),
    Account(
        id="u1",
        name="Dr. Ibrahim Musa",
        username="cmd",
        email="cmd@fmchong.local",
        role=UserRole.MANAGEMENT.value,
        department=Department.MANAGEMENT.value,
        avatar="https://ui-avatars.com/api/?name=Ibrahim+Musa&background=random",
        is_online=True,
    ),
    Account(
        id="u2",
        name="Sarah Okon",
        username="sarah",
        email="sarah@fmchong.local",
        role=UserRole.NURSE.value,
        department=Department.NURSING.value,
        avatar="https://ui-avatars.com/api/?name=Sarah+Okon&background=random",
        is_online=False,
    ),
]


def _seed_messages() -> List[Message]:
    now = utc_now()
    return [
        Message(
            id="m1",
            sender_id="u1",
            recipient_ids=("admin_shammah",),
            subject="Welcome to Intramail",
            body="Welcome to the new Hospital Intramail system. Please ensure all communications are professional.",
            priority=Priority.NORMAL,
            created_at=now - timedelta(days=1),
            thread_id="t1",
        ),
        Memo(
            id="memo1",
            sender_id="u1",
            recipient_ids=(ALL_STAFF,),
            subject="CIRCULAR: System Maintenance",
            body="The server will be down for maintenance this Saturday from 10 PM to 2 AM.",
            priority=Priority.URGENT,
            created_at=now - timedelta(days=2),
            thread_id="t_memo1",
            requires_acknowledgement=True,
        ),
    ]


def _newest_first(messages: Iterable[Message]) -> List[Message]:
    # sorted() is stable with reverse=True, so ties keep insertion order
    return sorted(messages, key=lambda m: m.created_at, reverse=True)


class LocalMirrorStore:
    """
    Durable local copy of accounts, credentials, messages, memos, audit
    entries and pending writes.

    Only the sync gateway writes to it. All mutators update the in-memory
    structures first and then write the affected rows back in one
    transaction.
    """

    DEFAULT_DB_PATH = Path("local_data") / "intramail.db"

    SCHEMA = {
        "accounts": """
            CREATE TABLE IF NOT EXISTS accounts (
                id TEXT PRIMARY KEY,
                username TEXT NOT NULL,
                data_json TEXT NOT NULL,
                removed INTEGER DEFAULT 0,
                updated_at TEXT
            )
        """,
        "credentials": """
            CREATE TABLE IF NOT EXISTS credentials (
                account_id TEXT PRIMARY KEY,
                password_hash TEXT NOT NULL,
                updated_at TEXT
            )
        """,
        "messages": """
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                created_at TEXT NOT NULL,
                data_json TEXT NOT NULL
            )
        """,
        "audit_log": """
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                actor_id TEXT NOT NULL,
                action TEXT NOT NULL,
                details TEXT,
                timestamp TEXT NOT NULL,
                origin TEXT
            )
        """,
        "pending_writes": """
            CREATE TABLE IF NOT EXISTS pending_writes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                operation TEXT NOT NULL,
                target_id TEXT NOT NULL,
                account_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE(operation, target_id, account_id)
            )
        """,
    }

    def __init__(
        self,
        db_path: Optional[Union[Path, str]] = None,
        default_credential: str = "12345678",
        bcrypt_rounds: int = 12,
    ):
        """
        Initialize the mirror.

        Args:
            db_path: SQLite file, or ":memory:" for a throwaway mirror
            default_credential: Secret given to accounts that have none
            bcrypt_rounds: bcrypt cost factor for new hashes
        """
        self.db_path = db_path if db_path is not None else self.DEFAULT_DB_PATH
        self._default_credential = default_credential
        self._bcrypt_rounds = bcrypt_rounds
        self._default_hash: Optional[str] = None

        self._lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None
        self._initialized = False

        self._accounts: Dict[str, Account] = {}
        self._credentials: Dict[str, str] = {}
        self._messages: Dict[str, Message] = {}

    # =========================================================================
    # CONNECTION / SCHEMA
    # =========================================================================

    def _get_connection(self) -> sqlite3.Connection:
        """Single shared connection, serialized by the store lock."""
        if self._connection is None:
            if str(self.db_path) != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
        return self._connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        with self._lock:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def initialize(self) -> LocalMirrorStore:
        """Create the schema, load persisted state and seed an empty mirror."""
        with self._lock:
            if self._initialized:
                return self

            with self.transaction() as conn:
                for table_name, schema in self.SCHEMA.items():
                    conn.execute(schema)
                    logger.debug(f"Created/verified table: {table_name}")

            self._load()
            if not self._accounts:
                self._seed()

            missing = [a for a in self._accounts if a not in self._credentials]
            if missing:
                for account_id in missing:
                    self._credentials[account_id] = self._get_default_hash()
                self.save()
                logger.info(f"Assigned default credential to {len(missing)} account(s)")

            self._initialized = True
            logger.info(f"Local mirror initialized at: {self.db_path}")
        return self

    def _load(self) -> None:
        conn = self._get_connection()
        for row in conn.execute("SELECT data_json, removed FROM accounts ORDER BY rowid"):
            record = json.loads(row["data_json"])
            record["removed"] = bool(row["removed"])
            account = Account.from_record(record)
            self._accounts[account.id] = account

        for row in conn.execute("SELECT account_id, password_hash FROM credentials"):
            self._credentials[row["account_id"]] = row["password_hash"]

        for row in conn.execute("SELECT data_json FROM messages ORDER BY rowid"):
            message = message_from_record(json.loads(row["data_json"]))
            self._messages[message.id] = message

    def _seed(self) -> None:
        logger.info("Empty mirror, seeding default accounts and messages")
        default_hash = self._get_default_hash()
        for account in SEED_ACCOUNTS:
            self._accounts[account.id] = account
            self._credentials[account.id] = default_hash
        self.save()
        with self.transaction() as conn:
            for message in _seed_messages():
                self._messages[message.id] = message
                self._write_message(conn, message)

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    # =========================================================================
    # CREDENTIALS
    # =========================================================================

    def _hash(self, secret: str) -> str:
        return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=self._bcrypt_rounds)).decode("utf-8")

    def _get_default_hash(self) -> str:
        if self._default_hash is None:
            self._default_hash = self._hash(self._default_credential)
        return self._default_hash

    def set_credential(self, account_id: str, secret: str) -> None:
        """Hash and store a new secret for an account."""
        with self._lock:
            self._credentials[account_id] = self._hash(secret)
            self.save()

    def verify_credential(self, account_id: str, secret: str) -> bool:
        with self._lock:
            stored = self._credentials.get(account_id)
        if stored is None:
            return False
        return bcrypt.checkpw(secret.encode("utf-8"), stored.encode("utf-8"))

    def save(self) -> None:
        """Persist the account list and credential map in one transaction."""
        now = datetime.now().isoformat()
        with self.transaction() as conn:
            conn.execute("DELETE FROM accounts")
            conn.executemany(
                "INSERT INTO accounts (id, username, data_json, removed, updated_at) VALUES (?, ?, ?, ?, ?)",
                [
                    (a.id, a.username, json.dumps(a.to_wire()), int(a.removed), now)
                    for a in self._accounts.values()
                ],
            )
            conn.execute("DELETE FROM credentials")
            conn.executemany(
                "INSERT INTO credentials (account_id, password_hash, updated_at) VALUES (?, ?, ?)",
                [(account_id, pw_hash, now) for account_id, pw_hash in self._credentials.items()],
            )

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            return self._accounts.get(account_id)

    def find_account_by_username(self, username: str) -> Optional[Account]:
        """Case-insensitive lookup among accounts that are not removed."""
        wanted = username.strip().lower()
        with self._lock:
            for account in self._accounts.values():
                if account.username.lower() == wanted and not account.removed:
                    return account
        return None

    def list_accounts(self, include_removed: bool = False) -> List[Account]:
        with self._lock:
            return [a for a in self._accounts.values() if include_removed or not a.removed]

    def upsert_account(self, account: Account, secret: Optional[str] = None) -> Account:
        """
        Insert or replace an account, optionally with a new secret.

        The account and its credential are updated together in memory
        before the single write-back.
        """
        with self._lock:
            self._accounts[account.id] = account
            if secret is not None:
                self._credentials[account.id] = self._hash(secret)
            elif account.id not in self._credentials:
                self._credentials[account.id] = self._get_default_hash()
            self.save()
        return account

    def replace_accounts(self, accounts: Iterable[Account]) -> None:
        """Replace the account list with a pulled one. Local soft removals survive."""
        with self._lock:
            removed = {a.id for a in self._accounts.values() if a.removed}
            fresh: Dict[str, Account] = {}
            for account in accounts:
                if account.id in removed and not account.removed:
                    account = replace(account, removed=True)
                fresh[account.id] = account
                if account.id not in self._credentials:
                    self._credentials[account.id] = self._get_default_hash()
            self._accounts = fresh
            self.save()

    def soft_remove_account(self, account_id: str) -> Optional[Account]:
        """Hide an account from the directory. Its data and credential are kept."""
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            removed = replace(account, removed=True)
            self._accounts[account_id] = removed
            self.save()
            return removed

    # =========================================================================
    # MESSAGES
    # =========================================================================

    def _write_message(self, conn: sqlite3.Connection, message: Message) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO messages (id, kind, created_at, data_json) VALUES (?, ?, ?, ?)",
            [message.id, message.kind, message.created_at.isoformat(), json.dumps(message.to_wire())],
        )

    def _in_folder(self, message: Message, account: Account, kind: FolderKind) -> bool:
        if kind == FolderKind.MEMO:
            return isinstance(message, Memo)
        if isinstance(message, Memo):
            return False
        if kind == FolderKind.SENT:
            return message.sender_id == account.id
        if not message.is_addressed_to(account.id, account.department):
            return False
        archived = message.is_archived_by(account.id)
        return archived if kind == FolderKind.ARCHIVE else not archived

    def folder(self, account_id: str, kind: FolderKind) -> List[Message]:
        """Derive a folder from the mirror, newest first."""
        kind = FolderKind(kind)
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return [] if kind != FolderKind.MEMO else _newest_first(
                    m for m in self._messages.values() if isinstance(m, Memo)
                )
            return _newest_first(m for m in self._messages.values() if self._in_folder(m, account, kind))

    def replace_folder(self, account_id: str, kind: FolderKind, messages: Iterable[Message]) -> List[Message]:
        """
        Replace the mirror's slice for (account, folder) with a pulled list.

        The slice currently derived for the folder is dropped and the pulled
        messages are stored. A message the remote lists more than once (one row
        per matching recipient alias) is kept once, at its first position.
        Pending offline writes that have not been replayed yet are re-applied
        on top so they are not lost.
        """
        kind = FolderKind(kind)
        pulled: List[Message] = []
        seen = set()
        for message in messages:
            if message.id not in seen:
                seen.add(message.id)
                pulled.append(message)
        with self._lock:
            account = self._accounts.get(account_id)
            stale = [
                m.id for m in self._messages.values()
                if (kind == FolderKind.MEMO and isinstance(m, Memo))
                or (account is not None and self._in_folder(m, account, kind))
            ]
            pulled = [self._apply_pending(m) for m in pulled]

            with self.transaction() as conn:
                for message_id in stale:
                    self._messages.pop(message_id, None)
                    conn.execute("DELETE FROM messages WHERE id = ?", [message_id])
                for message in pulled:
                    self._messages[message.id] = message
                    self._write_message(conn, message)

            logger.debug(f"Replaced {kind.value} slice for {account_id}: -{len(stale)} +{len(pulled)}")
        return _newest_first(pulled)

    def _apply_pending(self, message: Message) -> Message:
        for write in self.pending_writes():
            if write.target_id != message.id:
                continue
            if write.operation == "acknowledge" and isinstance(message, Memo):
                message = message.with_acknowledgement(write.account_id)
            elif write.operation == "mark_read" and not message.is_read_by(write.account_id):
                status = message.status_for(write.account_id)
                message = message.with_status(
                    write.account_id,
                    RecipientStatus(is_read=True, read_at=write.created_at, is_archived=status.is_archived),
                )
        return message

    def add_message(self, message: Message) -> Message:
        message = message.without_previews()
        with self.transaction() as conn:
            self._messages[message.id] = message
            self._write_message(conn, message)
        return message

    def get_message(self, message_id: str) -> Optional[Message]:
        with self._lock:
            return self._messages.get(message_id)

    def _store(self, message: Message) -> Message:
        with self.transaction() as conn:
            self._messages[message.id] = message
            self._write_message(conn, message)
        return message

    def set_read(self, message_id: str, account_id: str, at: Optional[datetime] = None) -> Optional[Message]:
        """Mark read for one account. ``read_at`` keeps its first value."""
        with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                return None
            status = message.status_for(account_id)
            if status.is_read:
                return message
            return self._store(message.with_status(
                account_id,
                RecipientStatus(is_read=True, read_at=at or utc_now(), is_archived=status.is_archived),
            ))

    def set_all_read(self, account_id: str) -> int:
        """Mark every inbox message of the account read. Returns how many changed."""
        now = utc_now()
        changed = 0
        with self._lock:
            for message in self.folder(account_id, FolderKind.INBOX):
                if not message.is_read_by(account_id):
                    self.set_read(message.id, account_id, now)
                    changed += 1
        return changed

    def set_archived(self, message_id: str, account_id: str, archived: bool) -> Optional[Message]:
        with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                return None
            status = message.status_for(account_id)
            if status.is_archived == archived:
                return message
            return self._store(message.with_status(
                account_id,
                RecipientStatus(is_read=status.is_read, read_at=status.read_at, is_archived=archived),
            ))

    def acknowledge(self, memo_id: str, account_id: str) -> Optional[Memo]:
        """Add the account to a memo's acknowledgment set (set semantics)."""
        with self._lock:
            memo = self._messages.get(memo_id)
            if not isinstance(memo, Memo):
                return None
            if memo.is_acknowledged_by(account_id):
                return memo
            return self._store(memo.with_acknowledgement(account_id))

    # =========================================================================
    # AUDIT LOG
    # =========================================================================

    def append_audit(self, entry: AuditEntry) -> AuditEntry:
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO audit_log (actor_id, action, details, timestamp, origin)
                VALUES (?, ?, ?, ?, ?)
                """,
                [entry.actor_id, entry.action, entry.details, entry.timestamp.isoformat(), entry.origin],
            )
            entry_id = cursor.lastrowid
        return AuditEntry(
            actor_id=entry.actor_id,
            action=entry.action,
            details=entry.details,
            timestamp=entry.timestamp,
            origin=entry.origin,
            id=entry_id,
        )

    def audit_entries(self, actor_id: Optional[str] = None, limit: Optional[int] = None) -> List[AuditEntry]:
        """Audit entries, newest first."""
        query = "SELECT * FROM audit_log"
        params: List = []
        if actor_id:
            query += " WHERE actor_id = ?"
            params.append(actor_id)
        query += " ORDER BY id DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self._lock:
            rows = self._get_connection().execute(query, params).fetchall()
        return [
            AuditEntry(
                id=row["id"],
                actor_id=row["actor_id"],
                action=row["action"],
                details=row["details"] or "",
                timestamp=parse_timestamp(row["timestamp"]),
                origin=row["origin"] or "",
            )
            for row in rows
        ]

    # =========================================================================
    # PENDING WRITES
    # =========================================================================

    def enqueue_pending(self, operation: str, target_id: str, account_id: str) -> None:
        """Record an offline write for replay. Duplicates collapse into one."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO pending_writes (operation, target_id, account_id, created_at)
                VALUES (?, ?, ?, ?)
                """,
                [operation, target_id, account_id, utc_now().isoformat()],
            )

    def pending_writes(self) -> List[PendingWrite]:
        """Pending writes, oldest first."""
        with self._lock:
            rows = self._get_connection().execute("SELECT * FROM pending_writes ORDER BY id ASC").fetchall()
        return [
            PendingWrite(
                id=row["id"],
                operation=row["operation"],
                target_id=row["target_id"],
                account_id=row["account_id"],
                created_at=parse_timestamp(row["created_at"]),
            )
            for row in rows
        ]

    def discard_pending(self, pending_id: int) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM pending_writes WHERE id = ?", [pending_id])

    @property
    def pending_count(self) -> int:
        with self._lock:
            row = self._get_connection().execute("SELECT COUNT(*) AS count FROM pending_writes").fetchone()
        return row["count"] if row else 0

    # =========================================================================
    # STATS
    # =========================================================================

    def stats(self) -> DashboardStats:
        """Dashboard figures computed from the mirror."""
        with self._lock:
            accounts = pd.DataFrame(
                [{"role": a.role} for a in self._accounts.values() if not a.removed],
                columns=["role"],
            )
            messages = pd.Series([m.kind for m in self._messages.values()], dtype="object")

        roles = accounts["role"].value_counts()
        kinds = messages.value_counts()
        return DashboardStats(
            active_accounts=len(accounts),
            total_messages=int(kinds.get("email", 0)),
            total_memos=int(kinds.get("memo", 0)),
            health="Offline",
            role_distribution=[{"name": str(name), "value": int(count)} for name, count in roles.items()],
        )
