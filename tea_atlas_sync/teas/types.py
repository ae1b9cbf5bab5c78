"""
Tea record types.

Defines the user-owned tea record, the per-user starter deletion marker,
and the conversions between the local cache format (camelCase, as written
by the offline app) and the remote row format (snake_case columns).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..exceptions import ValidationError

# Text fields shared by both formats: (attribute, cache key, row column)
_TEXT_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("name", "name", "name"),
    ("chinese_name", "chineseName", "chinese_name"),
    ("province", "province", "province"),
    ("region", "region", "region"),
    ("flavor", "flavor", "flavor"),
    ("description", "description", "description"),
    ("notes", "notes", "notes"),
)


class TeaType(Enum):
    """Tea families accepted by the remote ``teas.type`` check constraint."""

    GREEN = "green"
    BLACK = "black"
    OOLONG = "oolong"
    WHITE = "white"
    PUERH = "puerh"
    YELLOW = "yellow"

    @classmethod
    def parse(cls, value: Any) -> TeaType | None:
        """Return the matching member, or None for unknown values."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return None
        return None


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO string or epoch milliseconds into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, int | float) and not isinstance(value, bool):
        # The offline app stored Date.now() values
        return datetime.fromtimestamp(value / 1000, UTC)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _coerce_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class Tea:
    """A tea record owned by the authenticated user.

    Starter records come from the built-in catalogue; a starter the user has
    edited is stored as a regular record with ``starter=True, edited=True``.

    Attributes:
        id: Stable identifier, shared namespace with starter ids
        tea_type: Tea family (``type`` in both storage formats)
        lat, lng: Map position in decimal degrees
        elevation: Optional growing elevation in metres
        starter: Derived from the built-in catalogue
        edited: A starter whose fields were overridden by the user
        created_at, updated_at: UTC timestamps, set by the coordinator
    """

    id: str
    name: str
    tea_type: TeaType | str | None
    lat: float | None
    lng: float | None
    chinese_name: str = ""
    province: str = ""
    region: str = ""
    flavor: str = ""
    description: str = ""
    notes: str = ""
    elevation: float | None = None
    starter: bool = False
    edited: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        parsed = TeaType.parse(self.tea_type)
        if parsed is not None:
            self.tea_type = parsed

    def validate(self) -> None:
        """Check required fields and the type enum.

        Raises:
            ValidationError: On the first offending field
        """
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValidationError("id", "must be a non-empty string")
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("name", "is required")
        if self.tea_type is None:
            raise ValidationError("type", "is required")
        if not isinstance(self.tea_type, TeaType):
            allowed = ", ".join(t.value for t in TeaType)
            raise ValidationError("type", f"must be one of {allowed}", str(self.tea_type))
        for name, limit in (("lat", 90.0), ("lng", 180.0)):
            value = getattr(self, name)
            if value is None:
                raise ValidationError(name, "is required")
            if isinstance(value, bool) or not isinstance(value, int | float):
                raise ValidationError(name, "must be a number", str(value))
            if not math.isfinite(value) or abs(value) > limit:
                raise ValidationError(name, f"must be within +/-{limit:g}", str(value))
        if self.elevation is not None and (
            isinstance(self.elevation, bool)
            or not isinstance(self.elevation, int | float)
            or not math.isfinite(self.elevation)
        ):
            raise ValidationError("elevation", "must be a number", str(self.elevation))

    def copy(self, **changes: Any) -> Tea:
        return replace(self, **changes)

    @property
    def type_value(self) -> str | None:
        if isinstance(self.tea_type, TeaType):
            return self.tea_type.value
        return self.tea_type

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the local cache format."""
        data: dict[str, Any] = {"id": self.id, "type": self.type_value}
        for attr, key, _ in _TEXT_FIELDS:
            data[key] = getattr(self, attr)
        data.update(
            {
                "lat": self.lat,
                "lng": self.lng,
                "elevation": self.elevation,
                "starter": self.starter,
                "edited": self.edited,
                "createdAt": _format_timestamp(self.created_at),
                "updatedAt": _format_timestamp(self.updated_at),
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tea:
        """Deserialize from the local cache format.

        Tolerates records written by the pre-authentication app: numeric
        fields stored as strings, epoch-millisecond timestamps and missing
        text fields.
        """
        text = {attr: str(data.get(key) or "") for attr, key, _ in _TEXT_FIELDS}
        return cls(
            id=str(data.get("id") or ""),
            tea_type=data.get("type"),
            lat=_coerce_float(data.get("lat")),
            lng=_coerce_float(data.get("lng")),
            elevation=_coerce_float(data.get("elevation")),
            starter=bool(data.get("starter", False)),
            edited=bool(data.get("edited", False)),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
            **text,
        )

    def to_row(self) -> dict[str, Any]:
        """Serialize to a remote ``teas`` row.

        The owner column is never included: the remote store fills it from
        the caller's authenticated identity.
        """
        row: dict[str, Any] = {"id": self.id, "type": self.type_value}
        for attr, _, column in _TEXT_FIELDS:
            row[column] = getattr(self, attr)
        row.update(
            {
                "lat": self.lat,
                "lng": self.lng,
                "elevation": self.elevation,
                "starter": self.starter,
                "edited": self.edited,
            }
        )
        if self.created_at:
            row["created_at"] = self.created_at.isoformat()
        if self.updated_at:
            row["updated_at"] = self.updated_at.isoformat()
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Tea:
        """Deserialize from a remote ``teas`` row."""
        text = {attr: str(row.get(column) or "") for attr, _, column in _TEXT_FIELDS}
        return cls(
            id=str(row["id"]),
            tea_type=row.get("type"),
            lat=_coerce_float(row.get("lat")),
            lng=_coerce_float(row.get("lng")),
            elevation=_coerce_float(row.get("elevation")),
            starter=bool(row.get("starter") or False),
            edited=bool(row.get("edited") or False),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
            **text,
        )


@dataclass(frozen=True)
class DeletionMarker:
    """Records that ``owner`` has hidden the starter ``starter_id``."""

    owner: str | None
    starter_id: str

    def to_row(self) -> dict[str, Any]:
        return {"starter_id": self.starter_id}

    @classmethod
    def from_row(cls, row: dict[str, Any], owner: str | None = None) -> DeletionMarker:
        return cls(owner=row.get("user_id", owner), starter_id=str(row["starter_id"]))


@dataclass
class TeaCollection:
    """Raw per-user sources fed to the merge: saved records and hidden starters."""

    saved: list[Tea] = field(default_factory=list)
    deletions: set[str] = field(default_factory=set)

    def find(self, tea_id: str) -> Tea | None:
        for tea in self.saved:
            if tea.id == tea_id:
                return tea
        return None

    def put(self, tea: Tea) -> None:
        """Insert or replace by id, keeping the existing storage position."""
        for index, existing in enumerate(self.saved):
            if existing.id == tea.id:
                self.saved[index] = tea
                return
        self.saved.append(tea)

    def remove(self, tea_id: str) -> bool:
        before = len(self.saved)
        self.saved = [t for t in self.saved if t.id != tea_id]
        return len(self.saved) != before
