"""LINE WORKS message formatting for changed calendar events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from relay.models import ChangedItem, EventTime, Person

# ---------- Labels ----------


LABELS: dict[str, dict[str, str]] = {
    "en": {
        "cancelled": "cancelled",
        "updated": "created/updated",
        "none": "none",
        "time": "Time",
        "details": "Details",
        "editor": "Editor",
        "headline": "“{name}” was {status}",
    },
    "ja": {
        "cancelled": "キャンセル",
        "updated": "作成/更新",
        "none": "無し",
        "time": "時間",
        "details": "詳細",
        "editor": "編集者",
        "headline": "「{name}」が{status}されました",
    },
}

TIME_FORMAT = "%Y/%m/%d %H:%M:%S"


def resolve_timezone(name: str) -> tzinfo:
    """Look up an IANA zone name; raises ValueError for unknown or malformed names."""

    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"unknown time zone: {name!r}") from e


@dataclass(frozen=True)
class EventCard:
    name: str
    status: str
    start: str
    end: str
    description: str
    editor: str
    locale: str = "en"

    @property
    def span(self) -> str:
        return f"{self.start} 〜 {self.end}"


def _format_time(t: EventTime | None, *, tz: tzinfo, end: bool, none: str) -> str:
    if t is None:
        return none
    if t.date is not None:
        # all-day ends are exclusive: the event is over at the start of that day
        d = t.date - timedelta(days=1) if end else t.date
        return d.isoformat()
    if t.date_time is not None:
        return t.date_time.astimezone(tz).strftime(TIME_FORMAT)
    return none


def _editor(person: Person | None, none: str) -> str:
    if person is None:
        return none
    return person.display_name or person.email or none


def format_event(
    item: ChangedItem, *, timezone: str | tzinfo = "Asia/Tokyo", locale: str = "en"
) -> EventCard:
    labels = LABELS[locale]
    none = labels["none"]
    tz = resolve_timezone(timezone) if isinstance(timezone, str) else timezone
    return EventCard(
        name=item.summary or none,
        status=labels["cancelled"] if item.cancelled else labels["updated"],
        start=_format_time(item.start, tz=tz, end=False, none=none),
        end=_format_time(item.end, tz=tz, end=True, none=none),
        description=item.description if item.description is not None else none,
        editor=_editor(item.creator, none),
        locale=locale,
    )


# ---------- Rendering ----------


def render_text(card: EventCard) -> str:
    labels = LABELS[card.locale]
    headline = labels["headline"].format(name=card.name, status=card.status)
    return (
        f"{headline}\n"
        f"{labels['time']}: {card.span}\n"
        f"{labels['details']}: {card.description}\n"
        f"{labels['editor']}: {card.editor}"
    )


def _row(label: str, value: str, *, color: str = "#222222", layout: str = "baseline") -> dict:
    return {
        "type": "box",
        "layout": layout,
        "contents": [
            {"type": "text", "text": label, "wrap": True, "flex": 3, "size": "xs", "color": "#989898"},
            {
                "type": "text",
                "text": value,
                "wrap": True,
                "size": "xs",
                "margin": "md",
                "flex": 7,
                "color": color,
            },
        ],
        "margin": "md",
    }


def render_flex(card: EventCard) -> dict[str, Any]:
    """Bubble card: title with status, then time, details and editor rows."""

    labels = LABELS[card.locale]
    time_row = _row(labels["time"], card.span, layout="horizontal")
    time_row["margin"] = "xxl"
    return {
        "type": "flex",
        "altText": render_text(card),
        "contents": {
            "type": "bubble",
            "size": "giga",
            "body": {
                "type": "box",
                "layout": "vertical",
                "contents": [
                    {
                        "type": "text",
                        "text": f"{card.name} ({card.status})",
                        "wrap": True,
                        "weight": "bold",
                        "size": "xl",
                        "color": "#222222",
                        "margin": "none",
                    },
                    time_row,
                    _row(labels["details"], card.description, color="#0E71EB"),
                    _row(labels["editor"], card.editor),
                ],
                "spacing": "sm",
            },
        },
    }
