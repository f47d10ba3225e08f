from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Optional

from .shared import log_msg, new_id

RECURRENCE_TYPES = ("daily", "weekdays", "weekly", "custom", "monthly")


def _as_int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value == value:  # reject NaN
        return int(value)
    return None


@dataclass
class RecurrencePattern:
    """
    A rule, not a schedule: it is evaluated against "now" every time the next
    wake time is needed.

    days_of_week uses 0 = Sunday ... 6 = Saturday.
    """

    type: str
    time: str = "09:00"
    days_of_week: list[int] = field(default_factory=list)
    day_of_month: Optional[int] = None
    end_date: Optional[int] = None

    def to_dict(self) -> dict:
        data = {"type": self.type, "time": self.time}
        if self.days_of_week:
            data["days_of_week"] = list(self.days_of_week)
        if self.day_of_month is not None:
            data["day_of_month"] = self.day_of_month
        if self.end_date is not None:
            data["end_date"] = self.end_date
        return data

    @classmethod
    def from_dict(cls, data) -> Optional["RecurrencePattern"]:
        if not isinstance(data, Mapping):
            return None
        kind = data.get("type")
        if not isinstance(kind, str):
            return None
        days = data.get("days_of_week") or []
        if not isinstance(days, (list, tuple)):
            days = []
        return cls(
            type=kind,
            time=data.get("time") if isinstance(data.get("time"), str) else "",
            days_of_week=[d for d in (_as_int(x) for x in days) if d is not None],
            day_of_month=_as_int(data.get("day_of_month")),
            end_date=_as_int(data.get("end_date")),
        )


@dataclass
class ScheduledItem:
    id: str
    wake_time: int
    url: Optional[str] = None
    title: str = ""
    favicon: Optional[str] = None
    window_session_id: Optional[str] = None
    window_index: Optional[int] = None
    is_recurring: bool = False
    recurrence_pattern: Optional[RecurrencePattern] = None
    created: Optional[int] = None

    @property
    def is_grouped(self) -> bool:
        # an empty session id is treated as "no window"
        return bool(self.window_session_id)

    @property
    def group_key(self) -> str:
        if self.is_grouped:
            return f"{self.window_session_id}-{self.wake_time}"
        return self.id

    @property
    def sort_index(self) -> int:
        return self.window_index if isinstance(self.window_index, int) else 0

    @property
    def repeats(self) -> bool:
        return self.is_recurring and self.recurrence_pattern is not None

    def same_window(self, other: "ScheduledItem") -> bool:
        return (
            self.window_session_id == other.window_session_id
            and self.wake_time == other.wake_time
        )

    def derive(self, **changes) -> "ScheduledItem":
        """Copy of this item with a fresh id."""
        changes.setdefault("id", new_id())
        return replace(self, **changes)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "wake_time": self.wake_time,
            "url": self.url,
            "title": self.title,
            "favicon": self.favicon,
            "window_session_id": self.window_session_id,
            "window_index": self.window_index,
            "is_recurring": self.is_recurring,
            "recurrence_pattern": (
                self.recurrence_pattern.to_dict() if self.recurrence_pattern else None
            ),
            "created": self.created,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Mapping) -> "ScheduledItem":
        wake_time = _as_int(data.get("wake_time"))
        if wake_time is None:
            raise ValueError(f"missing or invalid wake_time: {data.get('wake_time')!r}")
        url = data.get("url")
        session = data.get("window_session_id")
        return cls(
            id=str(data.get("id") or ""),
            wake_time=wake_time,
            url=url if isinstance(url, str) and url else None,
            title=str(data.get("title") or ""),
            favicon=data.get("favicon") or None,
            window_session_id=str(session) if session is not None else None,
            window_index=_as_int(data.get("window_index")),
            is_recurring=bool(data.get("is_recurring")),
            recurrence_pattern=RecurrencePattern.from_dict(
                data.get("recurrence_pattern")
            ),
            created=_as_int(data.get("created")),
        )


def normalize_items(raw) -> list[ScheduledItem]:
    """
    Turn whatever was read from the store into a clean item list.

    Entries that are not mappings or lack a usable wake_time are dropped.
    Missing or duplicate ids are replaced with fresh ones so ids stay unique
    within the collection.
    """
    if not isinstance(raw, (list, tuple)):
        if raw is not None:
            log_msg(f"expected a list of items, got {type(raw).__name__}; ignoring")
        return []

    items: list[ScheduledItem] = []
    seen: set[str] = set()
    for entry in raw:
        if isinstance(entry, ScheduledItem):
            item = entry
        elif isinstance(entry, Mapping):
            try:
                item = ScheduledItem.from_dict(entry)
            except ValueError as e:
                log_msg(f"dropping malformed item {entry!r}: {e}")
                continue
        else:
            log_msg(f"dropping malformed item {entry!r}")
            continue
        if not item.id or item.id in seen:
            item = replace(item, id=new_id())
        seen.add(item.id)
        items.append(item)
    return items


def serialize_items(items: Iterable[ScheduledItem]) -> list[dict]:
    return [item.to_dict() for item in items]


@dataclass
class ItemGroup:
    id: str
    wake_time: int
    is_window_group: bool
    items: list[ScheduledItem] = field(default_factory=list)

    @property
    def primary(self) -> ScheduledItem:
        return self.items[0]

    @property
    def item_ids(self) -> list[str]:
        return [item.id for item in self.items]

    @property
    def is_recurring(self) -> bool:
        return any(item.repeats for item in self.items)


def group_items(items: Iterable[ScheduledItem]) -> list[ItemGroup]:
    """
    Rebuild the groups from (window_session_id, wake_time).

    Groups keep the order in which their first member appears; members of a
    window group are sorted by window_index.
    """
    groups: dict[str, ItemGroup] = {}
    for item in items:
        key = item.group_key
        group = groups.get(key)
        if group is None:
            group = ItemGroup(
                id=key, wake_time=item.wake_time, is_window_group=item.is_grouped
            )
            groups[key] = group
        group.items.append(item)

    for group in groups.values():
        if group.is_window_group:
            group.items.sort(key=lambda item: item.sort_index)
    return list(groups.values())


def window_members(
    item: ScheduledItem, collection: Iterable[ScheduledItem]
) -> list[ScheduledItem]:
    """All collection members in item's window group, in window order."""
    if not item.is_grouped:
        return [other for other in collection if other.id == item.id]
    members = [other for other in collection if other.same_window(item)]
    members.sort(key=lambda other: other.sort_index)
    return members
