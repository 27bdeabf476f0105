"""Summary: SQLite storage implementation for InboxLedger.

Importance: Provides the keyed store for messages, classifications, bills, and audit rows.
Alternatives: Use an ORM or an external database immediately.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Iterator

from inboxledger.models import (
    AiRequest,
    AiResponse,
    Bill,
    ClassifiedMessage,
    Message,
    PaymentVerification,
    Sender,
)


@dataclass(frozen=True)
class StoredAiRequest:
    """Summary: AI request record with database identifier.

    Importance: Backs the AI audit listing.
    Alternatives: Return raw rows.
    """

    id: int
    provider: str
    model: str
    prompt: str
    purpose: str
    timestamp: str


@dataclass(frozen=True)
class StoredAiResponse:
    id: int
    request_id: int
    response_text: str
    latency_ms: int
    token_estimate: int


_MESSAGE_COLUMNS = (
    "message_id, subject, sender_name, sender_address, recipients, timestamp, snippet, body, read"
)


class SqliteStore:
    """Summary: SQLite-backed keyed store for InboxLedger.

    Importance: Enables local-first persistence with minimal dependencies.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready for ingestion and queries.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    message_id TEXT PRIMARY KEY,
                    subject TEXT NOT NULL,
                    sender_name TEXT NOT NULL,
                    sender_address TEXT NOT NULL,
                    recipients TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    snippet TEXT NOT NULL,
                    body TEXT NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS classifications (
                    message_id TEXT PRIMARY KEY,
                    category TEXT NOT NULL,
                    confidence_source TEXT NOT NULL,
                    score INTEGER NOT NULL,
                    rule_set_version TEXT NOT NULL,
                    matched_rules TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS bills (
                    bill_id TEXT PRIMARY KEY,
                    merge_key TEXT NOT NULL,
                    status TEXT NOT NULL,
                    due_date TEXT NOT NULL,
                    data TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS dismissals (
                    bill_id TEXT NOT NULL,
                    due_date TEXT NOT NULL,
                    PRIMARY KEY (bill_id, due_date)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS payment_verifications (
                    message_id TEXT PRIMARY KEY,
                    bill_id TEXT NOT NULL,
                    verified_at TEXT NOT NULL,
                    amount TEXT,
                    method TEXT NOT NULL,
                    confirmation_number TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    provider TEXT NOT NULL,
                    model TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    purpose TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_responses (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    request_id INTEGER NOT NULL,
                    response_text TEXT NOT NULL,
                    latency_ms INTEGER NOT NULL,
                    token_estimate INTEGER NOT NULL
                )
                """
            )
            connection.commit()

    def save_messages(self, messages: Iterable[Message]) -> int:
        """Summary: Persist messages, ignoring redelivered IDs.

        Importance: Keeps ingestion idempotent for duplicate deliveries.
        Alternatives: Upsert and overwrite the stored copy.
        """

        inserted = 0
        with self._connection() as connection:
            cursor = connection.cursor()
            for message in messages:
                cursor.execute(
                    f"INSERT OR IGNORE INTO messages ({_MESSAGE_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        message.message_id,
                        message.subject,
                        message.sender.name,
                        message.sender.address,
                        json.dumps(list(message.recipients)),
                        message.timestamp.isoformat(),
                        message.snippet,
                        message.body,
                        int(message.read),
                    ),
                )
                inserted += cursor.rowcount
            connection.commit()
        return inserted

    def get_message(self, message_id: str) -> Message | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE message_id = ?", (message_id,)
            )
            row = cursor.fetchone()
        return _message_from_row(row) if row else None

    def list_messages(self, limit: int | None = None) -> list[Message]:
        """Summary: Retrieve messages, newest first.

        Importance: Supplies the CLI listing and search corpus.
        Alternatives: Stream messages from the provider directly.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages "
                "ORDER BY timestamp DESC, message_id DESC LIMIT ?",
                (-1 if limit is None else limit,),
            )
            rows = cursor.fetchall()
        return [_message_from_row(row) for row in rows]

    def all_messages(self) -> list[Message]:
        """Summary: Return the full history in processing order.

        Importance: Reclassification replays messages oldest first, ties by ID.
        Alternatives: Sort in the caller.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages ORDER BY timestamp ASC, message_id ASC"
            )
            rows = cursor.fetchall()
        return [_message_from_row(row) for row in rows]

    def save_classifications(self, results: Iterable[ClassifiedMessage]) -> None:
        with self._connection() as connection:
            _insert_classifications(connection.cursor(), results)
            connection.commit()

    def list_classified(
        self, category: str | None = None, limit: int | None = None
    ) -> list[ClassifiedMessage]:
        """Summary: Return classified messages, newest first.

        Importance: Serves category views and search.
        Alternatives: Store the category on the message row.
        """

        query = (
            "SELECT m.message_id, m.subject, m.sender_name, m.sender_address, m.recipients, "
            "m.timestamp, m.snippet, m.body, m.read, c.category, c.confidence_source, c.score, "
            "c.rule_set_version, c.matched_rules "
            "FROM classifications c JOIN messages m ON m.message_id = c.message_id"
        )
        params: list[Any] = []
        if category:
            query += " WHERE c.category = ?"
            params.append(category)
        query += " ORDER BY m.timestamp DESC, m.message_id DESC LIMIT ?"
        params.append(-1 if limit is None else limit)
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [
            ClassifiedMessage(
                message=_message_from_row(row[:9]),
                category=row[9],
                confidence_source=row[10],
                score=int(row[11]),
                rule_set_version=row[12],
                matched_rules=tuple(json.loads(row[13])),
            )
            for row in rows
        ]

    def save_bills(self, bills: Iterable[Bill]) -> None:
        with self._connection() as connection:
            _insert_bills(connection.cursor(), bills)
            connection.commit()

    def list_bills(self, status: str | None = None) -> list[Bill]:
        with self._connection() as connection:
            cursor = connection.cursor()
            if status:
                cursor.execute(
                    "SELECT data FROM bills WHERE status = ? ORDER BY due_date, bill_id", (status,)
                )
            else:
                cursor.execute("SELECT data FROM bills ORDER BY due_date, bill_id")
            rows = cursor.fetchall()
        return [bill_from_dict(json.loads(row[0])) for row in rows]

    def add_dismissal(self, bill_id: str, due_date: date) -> None:
        """Summary: Remember a user dismissal for one billing cycle.

        Importance: Dismissals survive reclassification and duplicate notices.
        Alternatives: Rely on the bill status alone.
        """

        with self._connection() as connection:
            connection.execute(
                "INSERT OR IGNORE INTO dismissals (bill_id, due_date) VALUES (?, ?)",
                (bill_id, due_date.isoformat()),
            )
            connection.commit()

    def list_dismissals(self) -> set[tuple[str, date]]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("SELECT bill_id, due_date FROM dismissals")
            rows = cursor.fetchall()
        return {(row[0], date.fromisoformat(row[1])) for row in rows}

    def save_verifications(self, verifications: Iterable[PaymentVerification]) -> None:
        with self._connection() as connection:
            _insert_verifications(connection.cursor(), verifications)
            connection.commit()

    def list_verifications(self) -> list[PaymentVerification]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT bill_id, message_id, verified_at, amount, method, confirmation_number "
                "FROM payment_verifications ORDER BY verified_at, message_id"
            )
            rows = cursor.fetchall()
        return [
            PaymentVerification(
                bill_id=row[0],
                message_id=row[1],
                verified_at=datetime.fromisoformat(row[2]),
                amount=Decimal(row[3]) if row[3] is not None else None,
                method=row[4],
                confirmation_number=row[5],
            )
            for row in rows
        ]

    def replace_derived_state(
        self,
        classified: Iterable[ClassifiedMessage],
        bills: Iterable[Bill],
        verifications: Iterable[PaymentVerification],
    ) -> None:
        """Summary: Swap in a freshly derived state in one transaction.

        Importance: Readers see either the old state or the new one, never a mix.
        Alternatives: Delete and reinsert in separate commits.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            try:
                cursor.execute("BEGIN")
                cursor.execute("DELETE FROM classifications")
                cursor.execute("DELETE FROM bills")
                cursor.execute("DELETE FROM payment_verifications")
                _insert_classifications(cursor, classified)
                _insert_bills(cursor, bills)
                _insert_verifications(cursor, verifications)
                connection.commit()
            except sqlite3.Error:
                connection.rollback()
                raise

    def counts(self) -> dict[str, int]:
        """Summary: Return row counts for the main tables.

        Importance: Backs the stats command.
        Alternatives: Count rows in the caller.
        """

        tables = ("messages", "classifications", "bills", "payment_verifications", "ai_requests")
        with self._connection() as connection:
            cursor = connection.cursor()
            result: dict[str, int] = {}
            for table in tables:
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                result[table] = int(cursor.fetchone()[0])
        return result

    def log_ai_request(self, request: AiRequest) -> int:
        """Summary: Persist an AI request for auditing.

        Importance: Tracks prompts and providers used by the fallback.
        Alternatives: Use structured logs instead of database storage.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO ai_requests (provider, model, prompt, purpose, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    request.provider,
                    request.model,
                    request.prompt,
                    request.purpose,
                    request.timestamp.isoformat(),
                ),
            )
            request_id = cursor.lastrowid
            connection.commit()
        return int(request_id)

    def log_ai_response(self, response: AiResponse) -> int:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO ai_responses (request_id, response_text, latency_ms, token_estimate)
                VALUES (?, ?, ?, ?)
                """,
                (
                    response.request_id,
                    response.response_text,
                    response.latency_ms,
                    response.token_estimate,
                ),
            )
            response_id = cursor.lastrowid
            connection.commit()
        return int(response_id)

    def list_ai_requests(self, limit: int) -> list[StoredAiRequest]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, provider, model, prompt, purpose, timestamp FROM ai_requests "
                "ORDER BY id DESC LIMIT ?",
                (limit,),
            )
            rows = cursor.fetchall()
        return [StoredAiRequest(*row) for row in rows]

    def list_ai_responses(self, limit: int) -> list[StoredAiResponse]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, request_id, response_text, latency_ms, token_estimate "
                "FROM ai_responses ORDER BY id DESC LIMIT ?",
                (limit,),
            )
            rows = cursor.fetchall()
        return [StoredAiResponse(*row) for row in rows]

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Ensures connections are closed cleanly after use.
        Alternatives: Keep a single long-lived connection.
        """

        connection = sqlite3.connect(self._db_path, isolation_level=None)
        try:
            yield connection
        finally:
            connection.close()


def bill_to_dict(bill: Bill) -> dict[str, Any]:
    """Summary: Serialize a bill to JSON-safe types.

    Importance: Amounts stay exact as strings and dates as ISO text.
    Alternatives: Store one column per field.
    """

    return {
        "bill_id": bill.bill_id,
        "merge_key": bill.merge_key,
        "bill_name": bill.bill_name,
        "provider": bill.provider,
        "account_number": bill.account_number,
        "amount": str(bill.amount),
        "currency": bill.currency,
        "due_date": bill.due_date.isoformat(),
        "category": bill.category,
        "priority": bill.priority,
        "status": bill.status,
        "payment_link": bill.payment_link,
        "source_message_ids": list(bill.source_message_ids),
        "created_at": bill.created_at.isoformat(),
        "last_updated": bill.last_updated.isoformat(),
        "last_notice_at": bill.last_notice_at.isoformat(),
        "last_notice_id": bill.last_notice_id,
        "cycle": bill.cycle,
        "low_confidence_key": bill.low_confidence_key,
        "paid_at": bill.paid_at.isoformat() if bill.paid_at else None,
        "payment_message_id": bill.payment_message_id,
        "dismissed_by": bill.dismissed_by,
    }


def bill_from_dict(data: dict[str, Any]) -> Bill:
    return Bill(
        bill_id=data["bill_id"],
        merge_key=data["merge_key"],
        bill_name=data["bill_name"],
        provider=data["provider"],
        account_number=data.get("account_number"),
        amount=Decimal(data["amount"]),
        currency=data["currency"],
        due_date=date.fromisoformat(data["due_date"]),
        category=data["category"],
        priority=data["priority"],
        status=data["status"],
        payment_link=data.get("payment_link"),
        source_message_ids=tuple(data.get("source_message_ids", [])),
        created_at=datetime.fromisoformat(data["created_at"]),
        last_updated=datetime.fromisoformat(data["last_updated"]),
        last_notice_at=datetime.fromisoformat(data["last_notice_at"]),
        last_notice_id=data["last_notice_id"],
        cycle=int(data.get("cycle", 1)),
        low_confidence_key=bool(data.get("low_confidence_key", False)),
        paid_at=datetime.fromisoformat(data["paid_at"]) if data.get("paid_at") else None,
        payment_message_id=data.get("payment_message_id"),
        dismissed_by=data.get("dismissed_by"),
    )


def _message_from_row(row: tuple[Any, ...]) -> Message:
    return Message(
        message_id=row[0],
        subject=row[1],
        sender=Sender(name=row[2], address=row[3]),
        recipients=tuple(json.loads(row[4])),
        timestamp=datetime.fromisoformat(row[5]),
        snippet=row[6],
        body=row[7],
        read=bool(row[8]),
    )


def _insert_classifications(cursor: sqlite3.Cursor, results: Iterable[ClassifiedMessage]) -> None:
    for result in results:
        cursor.execute(
            """
            INSERT OR REPLACE INTO classifications (
                message_id, category, confidence_source, score, rule_set_version, matched_rules
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                result.message_id,
                result.category,
                result.confidence_source,
                result.score,
                result.rule_set_version,
                json.dumps(list(result.matched_rules)),
            ),
        )


def _insert_bills(cursor: sqlite3.Cursor, bills: Iterable[Bill]) -> None:
    for bill in bills:
        cursor.execute(
            """
            INSERT OR REPLACE INTO bills (bill_id, merge_key, status, due_date, data)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                bill.bill_id,
                bill.merge_key,
                bill.status,
                bill.due_date.isoformat(),
                json.dumps(bill_to_dict(bill)),
            ),
        )


def _insert_verifications(
    cursor: sqlite3.Cursor, verifications: Iterable[PaymentVerification]
) -> None:
    for verification in verifications:
        cursor.execute(
            """
            INSERT OR REPLACE INTO payment_verifications (
                message_id, bill_id, verified_at, amount, method, confirmation_number
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                verification.message_id,
                verification.bill_id,
                verification.verified_at.isoformat(),
                str(verification.amount) if verification.amount is not None else None,
                verification.method,
                verification.confirmation_number,
            ),
        )
