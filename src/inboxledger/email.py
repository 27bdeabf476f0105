"""Summary: Message feed interfaces and implementations.

Importance: Encapsulates read-only ingestion so the core never handles mail transport.
Alternatives: Rely solely on provider SDKs with vendor lock-in.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email import message_from_bytes
from email.header import decode_header
from email.utils import parseaddr, parsedate_to_datetime
from pathlib import Path
from typing import Any

from inboxledger.models import Message, Sender


class EmailProvider(ABC):
    """Summary: Abstract interface for message feeds.

    Importance: Standardizes retrieval across fixtures and exported mail.
    Alternatives: Use provider-specific classes directly in ingestion flows.
    """

    @abstractmethod
    def fetch_recent(self, limit: int) -> list[Message]:
        """Summary: Fetch recent messages from the provider.

        Importance: Drives ingestion workflows across providers.
        Alternatives: Fetch messages by cursor or date range instead.
        """


class MockEmailProvider(EmailProvider):
    """Summary: Loads messages from a local JSON fixture.

    Importance: Supports offline testing and demos.
    Alternatives: Use SQLite fixtures or generate synthetic messages.
    """

    def __init__(self, fixture_path: Path) -> None:
        self._fixture_path = fixture_path

    def fetch_recent(self, limit: int) -> list[Message]:
        """Summary: Load recent messages from the fixture file.

        Importance: Provides predictable data for tests and demos.
        Alternatives: Return an empty list when no fixture is present.
        """

        data = json.loads(self._fixture_path.read_text(encoding="utf-8"))
        return [message_from_dict(item) for item in data][:limit]


class EmlEmailProvider(EmailProvider):
    """Summary: Loads messages from exported .eml files.

    Importance: Supports local ingestion without provider APIs.
    Alternatives: Use IMAP or provider-specific APIs only.
    """

    def __init__(self, eml_paths: list[Path]) -> None:
        self._eml_paths = eml_paths

    def fetch_recent(self, limit: int) -> list[Message]:
        """Summary: Parse .eml files into Message objects.

        Importance: Allows local-first ingestion of exported mail.
        Alternatives: Skip body parsing for faster ingestion.
        """

        messages: list[Message] = []
        for path in self._eml_paths[:limit]:
            parsed = message_from_bytes(path.read_bytes())
            body = _extract_body(parsed)
            recipients = _decode_header_value(parsed.get("To", ""))
            messages.append(
                Message(
                    message_id=parsed.get("Message-Id", path.name).strip(),
                    subject=_decode_header_value(parsed.get("Subject", "")),
                    sender=parse_sender(_decode_header_value(parsed.get("From", ""))),
                    recipients=tuple(item.strip() for item in recipients.split(",") if item.strip()),
                    timestamp=_parse_date(parsed.get("Date", "")),
                    snippet=_snippet(body),
                    body=body,
                )
            )
        return messages


def message_from_dict(item: dict[str, Any]) -> Message:
    """Summary: Build a Message from a JSON mapping.

    Importance: Shared by the fixture provider, the API ingest route, and storage.
    Alternatives: Parse each source with its own code path.
    """

    sender = item.get("sender") or {}
    if isinstance(sender, str):
        parsed_sender = parse_sender(sender)
    else:
        parsed_sender = Sender(name=sender.get("name", ""), address=sender.get("address", ""))
    recipients = item.get("recipients") or []
    if isinstance(recipients, str):
        recipients = [part.strip() for part in recipients.split(",") if part.strip()]
    body = item.get("body", "")
    return Message(
        message_id=item["message_id"],
        subject=item.get("subject", ""),
        sender=parsed_sender,
        recipients=tuple(recipients),
        timestamp=parse_timestamp(item["timestamp"]),
        snippet=item.get("snippet") or _snippet(body),
        body=body,
        read=bool(item.get("read", False)),
    )


def message_to_dict(message: Message) -> dict[str, Any]:
    return {
        "message_id": message.message_id,
        "subject": message.subject,
        "sender": {"name": message.sender.name, "address": message.sender.address},
        "recipients": list(message.recipients),
        "timestamp": message.timestamp.isoformat(),
        "snippet": message.snippet,
        "body": message.body,
        "read": message.read,
    }


def parse_timestamp(value: str | datetime) -> datetime:
    """Summary: Parse an ISO timestamp into naive UTC.

    Importance: Every stored timestamp compares against every other one.
    Alternatives: Keep timezone-aware datetimes throughout.
    """

    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_sender(raw: str) -> Sender:
    """Summary: Split a From header into display name and address.

    Importance: Provider detection needs both parts.
    Alternatives: Keep the raw header string.
    """

    name, address = parseaddr(raw)
    if not address and "@" not in raw:
        return Sender(name=raw.strip(), address="")
    return Sender(name=name.strip(), address=(address or raw).strip().lower())


def _snippet(body: str) -> str:
    return body[:200].replace("\n", " ")


def _decode_header_value(value: str) -> str:
    """Summary: Decode encoded email header values.

    Importance: Ensures metadata is readable in storage and rule matching.
    Alternatives: Store raw header values and decode at display time.
    """

    decoded_parts = decode_header(value)
    fragments: list[str] = []
    for part, encoding in decoded_parts:
        if isinstance(part, bytes):
            fragments.append(part.decode(encoding or "utf-8", errors="ignore"))
        else:
            fragments.append(part)
    return "".join(fragments).strip()


def _extract_body(message: Any) -> str:
    """Summary: Extract a text body, preferring plain text over HTML.

    Importance: HTML parts are kept when no plain part exists so payment links survive.
    Alternatives: Store raw MIME without parsing.
    """

    if message.is_multipart():
        plain: list[str] = []
        html: list[str] = []
        for part in message.walk():
            content_type = part.get_content_type()
            if content_type not in {"text/plain", "text/html"}:
                continue
            payload = part.get_payload(decode=True) or b""
            text = payload.decode(part.get_content_charset() or "utf-8", errors="ignore")
            (plain if content_type == "text/plain" else html).append(text)
        return "\n".join(plain or html).strip()
    payload = message.get_payload(decode=True) or b""
    return payload.decode(message.get_content_charset() or "utf-8", errors="ignore").strip()


def _parse_date(raw_date: str) -> datetime:
    """Summary: Parse an email date into a naive datetime.

    Importance: Normalizes timestamps for ordering and due-date reasoning.
    Alternatives: Store raw strings and parse on demand.
    """

    cleaned = re.sub(r"\(.*?\)", "", raw_date).strip()
    try:
        return parse_timestamp(parsedate_to_datetime(cleaned))
    except (TypeError, ValueError):
        return datetime.utcnow()
