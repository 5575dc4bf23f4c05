from datetime import datetime, timedelta, timezone

import pytest

from cruso.intervals import Interval
from cruso.rules import (
    MeetingType,
    SchedulingRules,
    busy_from_events,
    classify_event,
)


def at(hour, minute=0):
    return datetime(2024, 1, 1, hour, minute, tzinfo=timezone.utc)


def event(start, end, **extra):
    return {
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": end.isoformat()},
        **extra,
    }


class TestMeetingType:
    def test_aliases(self):
        assert MeetingType.from_string("Video") is MeetingType.VIRTUAL
        assert MeetingType.from_string("in-person") is MeetingType.IN_PERSON
        assert MeetingType.from_string("flight") is MeetingType.TRAVEL

    def test_invalid(self):
        with pytest.raises(ValueError, match="Invalid meeting type"):
            MeetingType.from_string("carrier pigeon")


def test_classify_event():
    assert classify_event({"summary": "Flight to SFO"}) is MeetingType.TRAVEL
    assert classify_event({"summary": "Offsite", "eventType": "travel"}) is MeetingType.TRAVEL
    assert classify_event({"summary": "Standup", "eventType": "default"}) is MeetingType.VIRTUAL
    assert classify_event({"hangoutLink": "https://meet.google.com/x"}) is MeetingType.VIRTUAL
    assert classify_event({"location": "Cafe Nero"}) is MeetingType.IN_PERSON
    assert classify_event({"location": "https://zoom.us/j/1"}) is MeetingType.VIRTUAL
    assert classify_event({}) is MeetingType.VIRTUAL


def test_from_preferences_fills_defaults():
    rules = SchedulingRules.from_preferences(
        {"min_notice_minutes": 30, "buffer_after_minutes": None}, "Europe/Berlin"
    )
    assert rules.min_notice_minutes == 30
    assert rules.buffer_after_minutes == 0
    assert rules.in_person_buffer_before_minutes == 15
    assert rules.timezone == "Europe/Berlin"


def test_buffers_for():
    rules = SchedulingRules(
        buffer_before_minutes=5,
        buffer_after_minutes=10,
        in_person_buffer_before_minutes=15,
        in_person_buffer_after_minutes=20,
        travel_buffer_minutes=18,
    )
    assert rules.buffers_for(None) == (5, 10)
    assert rules.buffers_for(MeetingType.VIRTUAL) == (5, 10)
    assert rules.buffers_for(MeetingType.IN_PERSON) == (15, 20)
    assert rules.buffers_for(MeetingType.TRAVEL) == (18, 20)


def test_within_notice():
    rules = SchedulingRules(min_notice_minutes=120, max_days_ahead=10)
    now = at(8)
    assert not rules.within_notice(at(9), now)
    assert rules.within_notice(at(10), now)
    assert not rules.within_notice(now + timedelta(days=11), now)


def test_slot_is_free_applies_buffers():
    rules = SchedulingRules(in_person_buffer_before_minutes=15, in_person_buffer_after_minutes=15)
    busy = [Interval(at(10), at(11))]
    slot = Interval(at(11), at(11, 30))
    assert rules.slot_is_free(slot, busy)
    assert rules.slot_is_free(slot, busy, MeetingType.VIRTUAL)
    assert not rules.slot_is_free(slot, busy, MeetingType.IN_PERSON)


def test_back_to_back_limit():
    rules = SchedulingRules(back_to_back_limit_minutes=90, back_to_back_buffer_minutes=10)
    busy = [Interval(at(9), at(10))]
    assert rules.violates_back_to_back(Interval(at(10), at(11)), busy)
    assert not rules.violates_back_to_back(Interval(at(10), at(10, 30)), busy)
    assert not rules.violates_back_to_back(Interval(at(10, 15), at(11, 15)), busy)


def test_back_to_back_disabled_without_limit():
    rules = SchedulingRules()
    assert not rules.violates_back_to_back(Interval(at(10), at(14)), [Interval(at(9), at(10))])


def test_busy_from_events_pads_by_type_and_skips_free_events():
    rules = SchedulingRules(in_person_buffer_before_minutes=15, in_person_buffer_after_minutes=15)
    events = [
        event(at(10), at(11), location="Office 4B"),
        event(at(13), at(14), transparency="transparent"),
        event(at(15), at(16)),
    ]
    assert busy_from_events(events, rules, "UTC") == [
        Interval(at(9, 45), at(11, 15)),
        Interval(at(15), at(16)),
    ]
