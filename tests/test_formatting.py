from __future__ import annotations

from relay.lineworks_bot.formatting import format_event, render_flex, render_text
from relay.models import ChangedItem


def _item(**payload):
    return ChangedItem.parse({"id": "evt", **payload})


def test_all_day_end_is_converted_to_inclusive_date():
    item = _item(
        status="confirmed",
        summary="Offsite",
        start={"date": "2024-05-01"},
        end={"date": "2024-05-03"},
    )
    card = format_event(item)
    assert card.start == "2024-05-01"
    assert card.end == "2024-05-02"


def test_cancelled_status_text():
    card = format_event(_item(status="cancelled", summary="Standup"))
    assert card.status == "cancelled"
    assert "created/updated" not in render_text(card)


def test_confirmed_and_tentative_render_as_created_updated():
    assert format_event(_item(status="confirmed")).status == "created/updated"
    assert format_event(_item(status="tentative")).status == "created/updated"


def test_timed_event_rendered_in_display_timezone():
    item = _item(
        summary="Review",
        start={"dateTime": "2024-05-01T01:30:00Z"},
        end={"dateTime": "2024-05-01T02:00:00+00:00"},
    )
    card = format_event(item, timezone="Asia/Tokyo")
    assert card.start == "2024/05/01 10:30:00"
    assert card.end == "2024/05/01 11:00:00"


def test_missing_description_renders_placeholder():
    card = format_event(_item(summary="No notes", description=""))
    assert card.description == "none"
    assert "Details: none" in render_text(card)


def test_editor_prefers_display_name_then_email():
    named = format_event(_item(creator={"displayName": "Aiko", "email": "aiko@example.com"}))
    mailed = format_event(_item(creator={"email": "ken@example.com"}))
    anonymous = format_event(_item())
    assert named.editor == "Aiko"
    assert mailed.editor == "ken@example.com"
    assert anonymous.editor == "none"


def test_cancelled_item_without_times_still_renders():
    # incremental listings return cancelled events with only id and status
    card = format_event(_item(status="cancelled"))
    assert card.name == "none"
    assert card.span == "none 〜 none"


def test_japanese_labels():
    item = _item(
        status="cancelled",
        summary="定例",
        start={"date": "2024-05-01"},
        end={"date": "2024-05-02"},
    )
    text = render_text(format_event(item, locale="ja"))
    assert text.splitlines() == [
        "「定例」がキャンセルされました",
        "時間: 2024-05-01 〜 2024-05-01",
        "詳細: 無し",
        "編集者: 無し",
    ]


def test_flex_card_layout():
    item = _item(summary="Launch", description="Room A", creator={"displayName": "Mio"})
    content = render_flex(format_event(item))
    assert content["type"] == "flex"
    body = content["contents"]["body"]["contents"]
    assert body[0]["text"] == "Launch (created/updated)"
    assert [row["contents"][0]["text"] for row in body[1:]] == ["Time", "Details", "Editor"]
    assert body[2]["contents"][1]["text"] == "Room A"
    assert body[3]["contents"][1]["text"] == "Mio"
