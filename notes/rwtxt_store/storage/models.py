"""
Records exchanged between the store and its callers.

Timestamps are timezone-aware UTC datetimes in memory and ISO-8601 strings
with microsecond precision on disk, so string order equals time order.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict, ValidationError

from ..history import VersionedText

logger = logging.getLogger(__name__)

PUBLIC_DOMAIN = "public"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(dt: datetime) -> str:
    """Serialize a timestamp for storage."""
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(raw: str) -> datetime:
    """Parse a stored timestamp."""
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def read_history(raw: str | bytes | None, file_id: str) -> VersionedText:
    """Decode a stored history for reading; undecodable rows read as empty."""
    try:
        return VersionedText.from_json(raw)
    except ValueError as e:
        logger.warning(f"Ignoring undecodable history: {e}", extra={"file_id": file_id})
        return VersionedText()


def formatted_date(dt: datetime, utc_offset: int) -> str:
    """Render like ``3:04pm Jan 2 2006`` in a fixed UTC offset (hours)."""
    local = dt.astimezone(timezone(timedelta(hours=utc_offset)))
    hour = local.hour % 12 or 12
    meridiem = "am" if local.hour < 12 else "pm"
    return f"{hour}:{local:%M}{meridiem} {local:%b} {local.day} {local.year}"


class DomainOptions(BaseModel):
    """Per-domain display customization.

    Decoded leniently: unknown keys are ignored and missing keys default,
    so options written by older or newer versions still load.

    Attributes:
        most_edited: Number of most-viewed files to show on the domain page
        most_recent: Number of recently modified files to show
        last_created: Number of recently created files to show
        css: Custom stylesheet
        custom_intro: Intro text replacing the default
        custom_title: Title replacing the domain name
        show_search: Whether to show the search box
    """

    model_config = ConfigDict(extra="ignore")

    most_edited: int = 0
    most_recent: int = 0
    last_created: int = 0
    css: str = ""
    custom_intro: str = ""
    custom_title: str = ""
    show_search: bool = False

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | bytes | None) -> DomainOptions:
        if not raw:
            return cls()
        try:
            return cls.model_validate_json(raw)
        except (ValidationError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring undecodable domain options: {e}")
            return cls()


@dataclass
class Domain:
    """A tenant namespace.

    Attributes:
        id: Store-assigned numeric id
        name: Lower-cased unique name
        is_public: Whether the domain is readable without a key
        options: Display customization
    """

    id: int
    name: str
    is_public: bool
    options: DomainOptions = field(default_factory=DomainOptions)


@dataclass
class File:
    """A document.

    Attributes:
        id: Opaque, globally unique id
        slug: Human-readable, non-unique path segment
        domain: Owning domain name ("" means public on save)
        created: Creation time (UTC)
        modified: Last modification time (UTC)
        data: Current text, or a highlighted snippet for search results
        history: Version history of the text
        views: View counter
    """

    id: str
    slug: str
    domain: str
    created: datetime
    modified: datetime
    data: str = ""
    history: VersionedText = field(default_factory=VersionedText)
    views: int = 0

    def created_date(self, utc_offset: int = 0) -> str:
        return formatted_date(self.created, utc_offset)

    def modified_date(self, utc_offset: int = 0) -> str:
        return formatted_date(self.modified, utc_offset)

    def without_content(self) -> File:
        """Copy with the text stripped, for listing views."""
        return dataclasses.replace(self, data="")


@dataclass
class Blob:
    """A binary payload (upload or resized image).

    Attributes:
        id: Opaque id
        name: Display name
        data: Raw bytes
        views: Fetch counter (value before the fetch that returned it)
    """

    id: str
    name: str
    data: bytes
    views: int = 0
