"""
Data model - webhook records, pagination cursor and tunnel session state
"""
import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import DEFAULT_PORT, DEFAULT_TIMEOUT_MINUTES, PAGE_SIZE

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)

# Formats written by earlier versions of the store, tried after fromisoformat().
LEGACY_TIMESTAMP_FORMATS = (
    '%Y-%m-%dT%H:%M:%S%z',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%dT%H:%M:%S',
)


@dataclass(frozen=True)
class WebhookRecord:
    """A received HTTP call. Never mutated after creation."""

    id: int
    timestamp: datetime
    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ''
    body_json: Any = None

    @property
    def has_json(self) -> bool:
        return self.body_json is not None


def parse_body_json(body: str) -> Any:
    """Return the structured form of body, or None when it is not JSON."""
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        return None


def format_timestamp(value: datetime) -> str:
    """Canonical RFC 3339 form used for persistence."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()


def parse_timestamp(text: Optional[str]) -> datetime:
    """Parse a stored timestamp.

    Accepts the canonical form plus the legacy layouts; anything else maps to
    the Unix epoch so a single bad row never breaks a page load.
    """
    if not text:
        return EPOCH
    text = text.strip()
    candidate = text[:-1] + '+00:00' if text.endswith('Z') else text
    try:
        return _as_aware(datetime.fromisoformat(candidate))
    except ValueError:
        pass
    for fmt in LEGACY_TIMESTAMP_FORMATS:
        try:
            return _as_aware(datetime.strptime(candidate, fmt))
        except ValueError:
            continue
    return EPOCH


def _as_aware(value: datetime) -> datetime:
    # Legacy rows carry no offset; they were written in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_port(text: Optional[str]) -> int:
    """Parse the port field. Empty means the default; invalid raises ValueError."""
    text = (text or '').strip()
    if not text:
        return DEFAULT_PORT
    port = int(text)
    if not 1 <= port <= 65535:
        raise ValueError(f"Port out of range: {port}")
    return port


def parse_timeout_minutes(text: Optional[str]) -> int:
    """Parse the timeout field; unset, unparseable or non-positive means 30."""
    try:
        minutes = int((text or '').strip())
    except ValueError:
        return DEFAULT_TIMEOUT_MINUTES
    if minutes <= 0:
        return DEFAULT_TIMEOUT_MINUTES
    return minutes


@dataclass(frozen=True)
class PageCursor:
    """Pagination over the persisted records, newest first."""

    current_page: int = 0
    total_count: int = 0
    page_size: int = PAGE_SIZE

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total_count / self.page_size))

    @property
    def offset(self) -> int:
        return self.current_page * self.page_size

    def has_next(self) -> bool:
        return self.current_page < self.total_pages - 1

    def has_previous(self) -> bool:
        return self.current_page > 0

    def loaded(self, page: int, total_count: int) -> 'PageCursor':
        """Cursor after a page query, clamped so current_page stays valid."""
        cursor = PageCursor(current_page=0, total_count=max(0, total_count), page_size=self.page_size)
        page = min(max(0, page), cursor.total_pages - 1)
        return PageCursor(current_page=page, total_count=cursor.total_count, page_size=self.page_size)


@dataclass
class TunnelSession:
    """State of one tunnel run. Owned by TunnelSessionManager."""

    port: int
    subdomain: str
    timeout: float
    generation: int
    url: str = ''
    running: bool = False
    expired: bool = False
    error: str = ''
    started_at: Optional[datetime] = None
    process: Any = None

    def mark_active(self, url: str, started_at: datetime):
        self.url = url
        self.running = True
        self.expired = False
        self.error = ''
        self.started_at = started_at

    def mark_expired(self):
        self.running = False
        self.expired = True

    def mark_failed(self, message: str):
        self.running = False
        self.error = message

