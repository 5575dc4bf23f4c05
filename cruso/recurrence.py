"""RRULE handling for recurring events.

Rules travel to and from Google as RFC 5545 lines (``RRULE:FREQ=WEEKLY;...``).
Occurrence math is delegated to ``dateutil.rrule``.
"""

import re
from dataclasses import asdict, dataclass, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable, Optional, Union

from dateutil import rrule as dateutil_rrule

from cruso.errors import ValidationError
from cruso.intervals import parse_datetime

FREQUENCIES = ("YEARLY", "MONTHLY", "WEEKLY", "DAILY", "HOURLY", "MINUTELY", "SECONDLY")
WEEKDAYS = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

_FREQ_MAP = {
    "YEARLY": dateutil_rrule.YEARLY,
    "MONTHLY": dateutil_rrule.MONTHLY,
    "WEEKLY": dateutil_rrule.WEEKLY,
    "DAILY": dateutil_rrule.DAILY,
    "HOURLY": dateutil_rrule.HOURLY,
    "MINUTELY": dateutil_rrule.MINUTELY,
    "SECONDLY": dateutil_rrule.SECONDLY,
}
_WEEKDAY_MAP = dict(zip(WEEKDAYS, dateutil_rrule.weekdays))
_WEEKDAY_RE = re.compile(r"^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")

_INT_LIST_FIELDS = (
    "bysetpos",
    "bymonth",
    "bymonthday",
    "byyearday",
    "byweekno",
    "byhour",
    "byminute",
    "bysecond",
)
_RRULE_KEYS = {
    "FREQ": "freq",
    "INTERVAL": "interval",
    "WKST": "wkst",
    "COUNT": "count",
    "UNTIL": "until",
    "BYSETPOS": "bysetpos",
    "BYMONTH": "bymonth",
    "BYMONTHDAY": "bymonthday",
    "BYYEARDAY": "byyearday",
    "BYWEEKNO": "byweekno",
    "BYDAY": "byweekday",
    "BYHOUR": "byhour",
    "BYMINUTE": "byminute",
    "BYSECOND": "bysecond",
}

DateOrDatetime = Union[date, datetime]


def _format_until(until: DateOrDatetime) -> str:
    if isinstance(until, datetime):
        if until.tzinfo is None:
            until = until.replace(tzinfo=timezone.utc)
        return until.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return until.strftime("%Y%m%d")


def _parse_ical_value(value: str, tz: Any = None) -> DateOrDatetime:
    """Parse an iCalendar DATE or DATE-TIME value."""
    value = value.strip()
    try:
        if len(value) == 8:
            return datetime.strptime(value, "%Y%m%d").date()
        if value.endswith("Z"):
            return datetime.strptime(value, "%Y%m%dT%H%M%SZ").replace(
                tzinfo=timezone.utc
            )
        parsed = datetime.strptime(value, "%Y%m%dT%H%M%S")
    except ValueError:
        raise ValidationError(f"Invalid iCalendar date value '{value}'")
    return parse_datetime(parsed, tz)


def _coerce_until(value: Any) -> Optional[DateOrDatetime]:
    if value is None or isinstance(value, (date, datetime)):
        return value
    text = str(value).strip()
    if re.fullmatch(r"\d{8}(T\d{6}Z?)?", text):
        return _parse_ical_value(text)
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", text):
        return date.fromisoformat(text)
    return parse_datetime(text)


def _as_list(value: Any) -> Optional[list]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


@dataclass
class RecurrenceRule:
    freq: str
    interval: Optional[int] = None
    wkst: Optional[str] = None
    count: Optional[int] = None
    until: Optional[DateOrDatetime] = None
    bysetpos: Optional[list[int]] = None
    bymonth: Optional[list[int]] = None
    bymonthday: Optional[list[int]] = None
    byyearday: Optional[list[int]] = None
    byweekno: Optional[list[int]] = None
    byweekday: Optional[list[str]] = None
    byhour: Optional[list[int]] = None
    byminute: Optional[list[int]] = None
    bysecond: Optional[list[int]] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecurrenceRule":
        values = {key.lower(): value for key, value in data.items()}
        if "byday" in values and "byweekday" not in values:
            values["byweekday"] = values.pop("byday")
        if not values.get("freq"):
            raise ValidationError(f"Invalid recurrence rule: {data} (freq is required)")

        byweekday = _as_list(values.get("byweekday"))
        return cls(
            freq=str(values["freq"]).upper(),
            interval=values.get("interval"),
            wkst=values["wkst"].upper() if values.get("wkst") else None,
            count=values.get("count"),
            until=_coerce_until(values.get("until")),
            byweekday=[str(day).upper() for day in byweekday] if byweekday else None,
            **{name: _as_list(values.get(name)) for name in _INT_LIST_FIELDS},
        )

    def validate(self) -> "RecurrenceRule":
        if self.freq not in FREQUENCIES:
            raise ValidationError(
                f"Invalid recurrence frequency '{self.freq}'. Must be one of {', '.join(FREQUENCIES)}"
            )
        if self.interval is not None and (
            not isinstance(self.interval, int) or self.interval < 1
        ):
            raise ValidationError("Recurrence interval must be a positive integer")
        if self.count is not None and (not isinstance(self.count, int) or self.count < 1):
            raise ValidationError("Recurrence count must be a positive integer")
        if self.count is not None and self.until is not None:
            raise ValidationError("Recurrence rule cannot have both count and until")
        if self.wkst is not None and self.wkst not in WEEKDAYS:
            raise ValidationError(f"Invalid week start '{self.wkst}'")
        for day in self.byweekday or []:
            if not _WEEKDAY_RE.match(day):
                raise ValidationError(f"Invalid weekday '{day}' in recurrence rule")
        for name in _INT_LIST_FIELDS:
            for value in getattr(self, name) or []:
                if isinstance(value, bool) or not isinstance(value, int):
                    raise ValidationError(f"Invalid {name} value '{value}'")
        try:
            self.to_dateutil(datetime.now(timezone.utc))
        except ValueError as e:
            raise ValidationError(f"Invalid recurrence rule: {e}")
        return self

    def to_dict(self) -> dict[str, Any]:
        data = {key: value for key, value in asdict(self).items() if value is not None}
        if self.until is not None:
            data["until"] = self.until.isoformat()
        return data

    def to_rrule(self) -> str:
        parts = [f"FREQ={self.freq}"]
        for key, name in _RRULE_KEYS.items():
            if name == "freq":
                continue
            value = getattr(self, name)
            if value is None or value == []:
                continue
            if name == "until":
                parts.append(f"UNTIL={_format_until(value)}")
            elif isinstance(value, list):
                parts.append(f"{key}={','.join(str(v) for v in value)}")
            else:
                parts.append(f"{key}={value}")
        return "RRULE:" + ";".join(parts)

    def _weekday(self, code: str) -> Any:
        match = _WEEKDAY_RE.match(code)
        if not match:
            raise ValueError(f"invalid weekday {code}")
        ordinal, day = match.groups()
        weekday = _WEEKDAY_MAP[day]
        return weekday(int(ordinal)) if ordinal else weekday

    def to_dateutil(self, dtstart: DateOrDatetime) -> dateutil_rrule.rrule:
        if not isinstance(dtstart, datetime):
            dtstart = datetime.combine(dtstart, time.min)

        until = self.until
        if until is not None:
            if not isinstance(until, datetime):
                until = datetime.combine(until, time(23, 59, 59), tzinfo=dtstart.tzinfo)
            elif dtstart.tzinfo is not None and until.tzinfo is None:
                until = until.replace(tzinfo=timezone.utc)
            elif dtstart.tzinfo is None and until.tzinfo is not None:
                until = until.astimezone(timezone.utc).replace(tzinfo=None)

        return dateutil_rrule.rrule(
            _FREQ_MAP[self.freq],
            dtstart=dtstart,
            interval=self.interval or 1,
            wkst=_WEEKDAY_MAP[self.wkst] if self.wkst else None,
            count=self.count,
            until=until,
            bysetpos=self.bysetpos,
            bymonth=self.bymonth,
            bymonthday=self.bymonthday,
            byyearday=self.byyearday,
            byweekno=self.byweekno,
            byweekday=[self._weekday(day) for day in self.byweekday]
            if self.byweekday
            else None,
            byhour=self.byhour,
            byminute=self.byminute,
            bysecond=self.bysecond,
            cache=False,
        )


def parse_rrule(line: str) -> RecurrenceRule:
    """Parse an ``RRULE:`` line (prefix optional) into a RecurrenceRule."""
    body = line.strip()
    if body.upper().startswith("RRULE:"):
        body = body[len("RRULE:") :]

    data: dict[str, Any] = {}
    for part in filter(None, body.split(";")):
        if "=" not in part:
            raise ValidationError(f"Malformed recurrence rule part '{part}'")
        key, value = part.split("=", 1)
        name = _RRULE_KEYS.get(key.strip().upper())
        if name is None:
            continue
        try:
            if name in ("interval", "count"):
                data[name] = int(value)
            elif name == "until":
                data[name] = _parse_ical_value(value)
            elif name == "byweekday":
                data[name] = value.upper().split(",")
            elif name in _INT_LIST_FIELDS:
                data[name] = [int(v) for v in value.split(",")]
            else:
                data[name] = value.upper()
        except ValueError:
            raise ValidationError(f"Invalid {key} value '{value}' in recurrence rule")
    return RecurrenceRule.from_dict(data)


def to_recurrence_strings(
    items: Iterable[Union[str, dict[str, Any], RecurrenceRule]],
) -> list[str]:
    """Validate recurrence input and render it as Google recurrence lines."""
    lines: list[str] = []
    for item in items:
        if isinstance(item, RecurrenceRule):
            lines.append(item.validate().to_rrule())
        elif isinstance(item, dict):
            lines.append(RecurrenceRule.from_dict(item).validate().to_rrule())
        elif isinstance(item, str):
            upper = item.strip().upper()
            if upper.startswith("RRULE:") or upper.startswith("FREQ="):
                lines.append(parse_rrule(item).validate().to_rrule())
            elif upper.startswith(("EXDATE", "RDATE", "EXRULE")):
                lines.append(item.strip())
            else:
                raise ValidationError(f"Invalid recurrence line '{item}'")
        else:
            raise ValidationError(f"Invalid recurrence rule: {item!r}")
    return lines


def occurrences_between(
    rule: RecurrenceRule,
    dtstart: DateOrDatetime,
    start: datetime,
    end: datetime,
    inc: bool = True,
) -> list[datetime]:
    return rule.to_dateutil(dtstart).between(start, end, inc=inc)


def next_occurrence(
    rule: RecurrenceRule, dtstart: DateOrDatetime, after: datetime
) -> Optional[datetime]:
    return rule.to_dateutil(dtstart).after(after)


def _as_comparable(value: DateOrDatetime, all_day: bool) -> Any:
    if all_day:
        return value.date() if isinstance(value, datetime) else value
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    return value


def _until_end(value: DateOrDatetime, all_day: bool) -> Any:
    """Last instant an UNTIL value admits, comparable with the series start."""
    if all_day:
        return _as_comparable(value, True)
    if not isinstance(value, datetime):
        return datetime.combine(value, time(23, 59, 59), tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _filter_date_line(line: str, split_at: DateOrDatetime, all_day: bool) -> Optional[str]:
    """Keep only EXDATE/RDATE values on or after the split."""
    prefix, _, values = line.partition(":")
    tzid = None
    for param in prefix.split(";")[1:]:
        if param.upper().startswith("TZID="):
            tzid = param.split("=", 1)[1]
    threshold = _as_comparable(split_at, all_day)
    kept = [
        value
        for value in values.split(",")
        if value.strip()
        and _as_comparable(_parse_ical_value(value, tzid), all_day) >= threshold
    ]
    if not kept:
        return None
    return f"{prefix}:{','.join(kept)}"


def split_recurrence(
    recurrence: Iterable[str],
    dtstart: DateOrDatetime,
    split_at: DateOrDatetime,
) -> tuple[list[str], list[str]]:
    """Split a series at ``split_at`` for a "this and following" change.

    Returns ``(head, tail)``: the original series' recurrence ending before
    the split, and the recurrence for a new series starting at the split.
    """
    all_day = not isinstance(dtstart, datetime)
    head: list[str] = []
    tail: list[str] = []

    for line in recurrence:
        upper = line.strip().upper()
        if upper.startswith("RRULE:"):
            rule = parse_rrule(line)
            if rule.count:
                series = rule.to_dateutil(dtstart)
                threshold = (
                    datetime.combine(_as_comparable(split_at, True), time.min)
                    if all_day
                    else split_at
                )
                before = sum(1 for occurrence in series if occurrence < threshold)
                head.append(replace(rule, count=max(before, 1)).to_rrule())
                if rule.count - before > 0:
                    tail.append(replace(rule, count=rule.count - before).to_rrule())
            else:
                if all_day:
                    until: DateOrDatetime = _as_comparable(split_at, True) - timedelta(
                        days=1
                    )
                else:
                    until = split_at.astimezone(timezone.utc) - timedelta(seconds=1)
                if rule.until is not None and _until_end(rule.until, all_day) <= _until_end(
                    until, all_day
                ):
                    # the series already ends before the split
                    head.append(rule.to_rrule())
                    continue
                head.append(replace(rule, until=until).to_rrule())
                tail.append(rule.to_rrule())
        elif upper.startswith(("EXDATE", "RDATE")):
            head.append(line)
            filtered = _filter_date_line(line, split_at, all_day)
            if filtered:
                tail.append(filtered)
        else:
            head.append(line)
            tail.append(line)

    if not any(line.strip().upper().startswith(("RRULE:", "RDATE")) for line in tail):
        tail = []
    return head, tail


def daily(
    interval: Optional[int] = None,
    count: Optional[int] = None,
    until: Optional[DateOrDatetime] = None,
) -> RecurrenceRule:
    return RecurrenceRule(freq="DAILY", interval=interval, count=count, until=until)


def weekly(
    byweekday: Optional[list[str]] = None,
    interval: Optional[int] = None,
    count: Optional[int] = None,
    until: Optional[DateOrDatetime] = None,
) -> RecurrenceRule:
    return RecurrenceRule(
        freq="WEEKLY", interval=interval, byweekday=byweekday, count=count, until=until
    )


def monthly(
    bymonthday: Optional[list[int]] = None,
    byweekday: Optional[list[str]] = None,
    bysetpos: Optional[list[int]] = None,
    interval: Optional[int] = None,
    count: Optional[int] = None,
    until: Optional[DateOrDatetime] = None,
) -> RecurrenceRule:
    return RecurrenceRule(
        freq="MONTHLY",
        interval=interval,
        bymonthday=bymonthday,
        byweekday=byweekday,
        bysetpos=bysetpos,
        count=count,
        until=until,
    )


def yearly(
    bymonth: Optional[list[int]] = None,
    bymonthday: Optional[list[int]] = None,
    interval: Optional[int] = None,
    count: Optional[int] = None,
    until: Optional[DateOrDatetime] = None,
) -> RecurrenceRule:
    return RecurrenceRule(
        freq="YEARLY",
        interval=interval,
        bymonth=bymonth,
        bymonthday=bymonthday,
        count=count,
        until=until,
    )
