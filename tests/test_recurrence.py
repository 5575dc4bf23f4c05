from datetime import date, datetime, timezone

import pytest

from cruso.errors import ValidationError
from cruso.recurrence import (
    RecurrenceRule,
    daily,
    monthly,
    next_occurrence,
    occurrences_between,
    parse_rrule,
    split_recurrence,
    to_recurrence_strings,
    weekly,
    yearly,
)


def utc(day, hour=10, month=1):
    return datetime(2024, month, day, hour, tzinfo=timezone.utc)


class TestRecurrenceRule:
    def test_to_rrule(self):
        rule = weekly(byweekday=["MO", "WE"], interval=2)
        assert rule.to_rrule() == "RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE"

    def test_until_renders_utc(self):
        rule = daily(until=datetime(2024, 2, 1, 12, tzinfo=timezone.utc))
        assert rule.to_rrule() == "RRULE:FREQ=DAILY;UNTIL=20240201T120000Z"
        assert daily(until=date(2024, 2, 1)).to_rrule() == "RRULE:FREQ=DAILY;UNTIL=20240201"

    def test_yearly_anniversary(self):
        rule = yearly(bymonth=[3], bymonthday=[14], count=2)
        assert rule.to_rrule() == "RRULE:FREQ=YEARLY;COUNT=2;BYMONTH=3;BYMONTHDAY=14"

    def test_from_dict_accepts_byday_alias(self):
        rule = RecurrenceRule.from_dict({"FREQ": "monthly", "BYDAY": "1mo"})
        assert rule.freq == "MONTHLY"
        assert rule.byweekday == ["1MO"]
        rule.validate()

    def test_from_dict_requires_freq(self):
        with pytest.raises(ValidationError, match="freq is required"):
            RecurrenceRule.from_dict({"count": 3})

    @pytest.mark.parametrize(
        "rule, message",
        [
            (RecurrenceRule(freq="FORTNIGHTLY"), "Invalid recurrence frequency"),
            (RecurrenceRule(freq="DAILY", interval=0), "interval"),
            (RecurrenceRule(freq="DAILY", count=0), "count"),
            (
                RecurrenceRule(freq="DAILY", count=2, until=date(2024, 2, 1)),
                "cannot have both count and until",
            ),
            (RecurrenceRule(freq="WEEKLY", wkst="XX"), "week start"),
            (RecurrenceRule(freq="WEEKLY", byweekday=["MONDAY"]), "Invalid weekday"),
        ],
    )
    def test_validate_rejects(self, rule, message):
        with pytest.raises(ValidationError, match=message):
            rule.validate()


def test_parse_rrule():
    rule = parse_rrule("RRULE:FREQ=WEEKLY;COUNT=5;BYDAY=TU,TH;X-CUSTOM=1")
    assert rule.freq == "WEEKLY"
    assert rule.count == 5
    assert rule.byweekday == ["TU", "TH"]

    with pytest.raises(ValidationError, match="Malformed"):
        parse_rrule("RRULE:FREQ=DAILY;COUNT")


def test_parse_rrule_until():
    rule = parse_rrule("FREQ=DAILY;UNTIL=20240131T235959Z")
    assert rule.until == datetime(2024, 1, 31, 23, 59, 59, tzinfo=timezone.utc)


def test_to_recurrence_strings():
    lines = to_recurrence_strings(
        [
            "FREQ=DAILY;COUNT=3",
            {"freq": "weekly", "byday": ["FR"]},
            monthly(bymonthday=[15]),
            "EXDATE:20240105T100000Z",
        ]
    )
    assert lines == [
        "RRULE:FREQ=DAILY;COUNT=3",
        "RRULE:FREQ=WEEKLY;BYDAY=FR",
        "RRULE:FREQ=MONTHLY;BYMONTHDAY=15",
        "EXDATE:20240105T100000Z",
    ]


def test_to_recurrence_strings_rejects_unknown_lines():
    with pytest.raises(ValidationError, match="Invalid recurrence line"):
        to_recurrence_strings(["every other day"])


def test_occurrences():
    rule = weekly(byweekday=["MO"])
    # 2024-01-01 is a Monday
    found = occurrences_between(rule, utc(1), utc(1), utc(22))
    assert found == [utc(1), utc(8), utc(15), utc(22)]
    assert next_occurrence(rule, utc(1), utc(8)) == utc(15)


def test_split_counted_series():
    head, tail = split_recurrence(["RRULE:FREQ=WEEKLY;COUNT=10"], utc(1), utc(15))
    assert head == ["RRULE:FREQ=WEEKLY;COUNT=2"]
    assert tail == ["RRULE:FREQ=WEEKLY;COUNT=8"]


def test_split_open_series_sets_until():
    head, tail = split_recurrence(["RRULE:FREQ=WEEKLY"], utc(1), utc(15))
    assert head == ["RRULE:FREQ=WEEKLY;UNTIL=20240115T095959Z"]
    assert tail == ["RRULE:FREQ=WEEKLY"]


def test_split_all_day_series_ends_day_before():
    head, tail = split_recurrence(["RRULE:FREQ=DAILY"], date(2024, 1, 1), date(2024, 1, 10))
    assert head == ["RRULE:FREQ=DAILY;UNTIL=20240109"]
    assert tail == ["RRULE:FREQ=DAILY"]


def test_split_filters_exdates_for_tail():
    recurrence = [
        "RRULE:FREQ=DAILY",
        "EXDATE:20240103T100000Z,20240120T100000Z",
    ]
    head, tail = split_recurrence(recurrence, utc(1), utc(15))
    assert head[1] == "EXDATE:20240103T100000Z,20240120T100000Z"
    assert tail == ["RRULE:FREQ=DAILY", "EXDATE:20240120T100000Z"]


def test_split_after_series_end_keeps_until():
    head, tail = split_recurrence(
        ["RRULE:FREQ=DAILY;UNTIL=20240110T090000Z"],
        datetime(2024, 1, 1, 9, tzinfo=timezone.utc),
        datetime(2024, 1, 20, 9, tzinfo=timezone.utc),
    )
    assert head == ["RRULE:FREQ=DAILY;UNTIL=20240110T090000Z"]
    assert tail == []


def test_split_inside_bounded_series_moves_until_earlier():
    head, tail = split_recurrence(
        ["RRULE:FREQ=DAILY;UNTIL=20240110T090000Z", "EXDATE:20240103T090000Z"],
        datetime(2024, 1, 1, 9, tzinfo=timezone.utc),
        datetime(2024, 1, 5, 9, tzinfo=timezone.utc),
    )
    assert head[0] == "RRULE:FREQ=DAILY;UNTIL=20240105T085959Z"
    assert tail == ["RRULE:FREQ=DAILY;UNTIL=20240110T090000Z"]


def test_split_after_counted_series_leaves_no_tail():
    head, tail = split_recurrence(["RRULE:FREQ=WEEKLY;COUNT=2"], utc(1), utc(29))
    assert head == ["RRULE:FREQ=WEEKLY;COUNT=2"]
    assert tail == []
