"""
Cron expression parsing and next-run calculation.

Expressions have exactly five fields:

    minute hour day-of-month month day-of-week

Besides numbers, ranges, steps, lists and month/day aliases, the day fields
accept the non-standard modifiers L, L-n, nW and LW (day-of-month) and
dL and d#k (day-of-week).
"""

import calendar
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple


logger = logging.getLogger("jobhub.cron")

MONTH_ALIASES = {
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'may': 5, 'jun': 6,
    'jul': 7, 'aug': 8, 'sep': 9, 'oct': 10, 'nov': 11, 'dec': 12,
}

DAY_ALIASES = {
    'sun': 0, 'mon': 1, 'tue': 2, 'wed': 3, 'thu': 4, 'fri': 5, 'sat': 6,
}

# How far get_next_cron_run looks ahead before giving up
LOOKAHEAD = timedelta(days=366)


class CronParseError(ValueError):
    """Raised when a cron expression cannot be parsed."""


@dataclass(frozen=True)
class FieldSpec:
    """Bounds and accepted token kinds for one cron field."""
    name: str
    minimum: int
    maximum: int
    kinds: FrozenSet[str]
    aliases: Dict[str, int] = field(default_factory=dict)


_PLAIN_KINDS = frozenset({'any', 'range'})

MINUTE = FieldSpec('minute', 0, 59, _PLAIN_KINDS)
HOUR = FieldSpec('hour', 0, 23, _PLAIN_KINDS)
DAY_OF_MONTH = FieldSpec(
    'day-of-month', 1, 31,
    frozenset({'any', 'range', 'last', 'last_weekday', 'nearest_weekday'}),
)
MONTH = FieldSpec('month', 1, 12, _PLAIN_KINDS, MONTH_ALIASES)
DAY_OF_WEEK = FieldSpec(
    'day-of-week', 0, 7,
    frozenset({'any', 'range', 'last_of_week', 'nth_of_week'}),
    DAY_ALIASES,
)

FIELDS = (MINUTE, HOUR, DAY_OF_MONTH, MONTH, DAY_OF_WEEK)


# --- Tokenizer ---

@dataclass(frozen=True)
class CronToken:
    """
    One comma-separated item of a cron field.

    kind is one of:
        any              * or ?
        range            a, a-b, */s, a/s, a-b/s  (start, end, step)
        last             L or L-n                 (offset)
        last_weekday     LW
        nearest_weekday  nW                       (start)
        last_of_week     dL                       (start)
        nth_of_week      d#k                      (start, nth)
    """
    kind: str
    text: str
    start: Optional[int] = None
    end: Optional[int] = None
    step: int = 1
    offset: int = 0
    nth: int = 0


_VALUE = r'([0-9]+|[a-z]+)'

_TOKEN_PATTERNS: List[Tuple[str, 're.Pattern[str]']] = [
    ('any', re.compile(r'^[*?]$')),
    ('last_weekday', re.compile(r'^lw$')),
    ('last', re.compile(r'^l(?:-([0-9]+))?$')),
    ('nearest_weekday', re.compile(r'^([0-9]+)w$')),
    ('nth_of_week', re.compile(r'^' + _VALUE + r'#([0-9]+)$')),
    ('last_of_week', re.compile(r'^([0-9]+|[a-z]{3})l$')),
    ('range', re.compile(r'^(?:(\*)|' + _VALUE + r'(?:-' + _VALUE + r')?)(?:/([0-9]+))?$')),
]


def _resolve_value(spec: FieldSpec, raw: str, text: str) -> int:
    """Turn a number or alias into an int within the field's bounds."""
    if raw.isdigit():
        value = int(raw)
    elif raw in spec.aliases:
        value = spec.aliases[raw]
    else:
        raise CronParseError(f"Unknown {spec.name} value '{raw}' in '{text}'")

    if value < spec.minimum or value > spec.maximum:
        raise CronParseError(
            f"{spec.name} value {value} out of range {spec.minimum}-{spec.maximum}"
        )
    return value


def _build_token(spec: FieldSpec, kind: str, match: 're.Match[str]', text: str) -> CronToken:
    if kind == 'any' or kind == 'last_weekday':
        return CronToken(kind, text)

    if kind == 'last':
        return CronToken(kind, text, offset=int(match.group(1) or 0))

    if kind == 'nearest_weekday':
        return CronToken(kind, text, start=_resolve_value(spec, match.group(1), text))

    if kind == 'last_of_week':
        return CronToken(kind, text, start=_resolve_value(spec, match.group(1), text) % 7)

    if kind == 'nth_of_week':
        nth = int(match.group(2))
        if nth < 1 or nth > 5:
            raise CronParseError(f"Occurrence must be 1-5 in '{text}'")
        return CronToken(kind, text, start=_resolve_value(spec, match.group(1), text) % 7, nth=nth)

    # range
    star, low, high, step_text = match.groups()
    step = 1
    if step_text is not None:
        step = int(step_text)
        if step <= 0:
            raise CronParseError(f"Step must be a positive integer in '{text}'")

    if star:
        return CronToken(kind, text, start=spec.minimum, end=spec.maximum, step=step)

    start = _resolve_value(spec, low, text)
    if high is not None:
        end = _resolve_value(spec, high, text)
        if start > end:
            raise CronParseError(f"Descending range '{text}' is not supported")
    elif step_text is not None:
        end = spec.maximum
    else:
        end = start
    return CronToken(kind, text, start=start, end=end, step=step)


def tokenize_field(spec: FieldSpec, text: str) -> List[CronToken]:
    """Split a single cron field into typed tokens."""
    tokens = []
    for part in text.lower().split(','):
        if not part:
            raise CronParseError(f"Empty list item in {spec.name} field '{text}'")

        for kind, pattern in _TOKEN_PATTERNS:
            match = pattern.match(part)
            if match:
                break
        else:
            raise CronParseError(f"Invalid {spec.name} token '{part}'")

        if kind not in spec.kinds:
            raise CronParseError(f"'{part}' is not allowed in the {spec.name} field")

        tokens.append(_build_token(spec, kind, match, part))
    return tokens


# --- Matchers ---

DayPredicate = Callable[[date], bool]


@dataclass(frozen=True)
class ValueMatcher:
    """Matcher for minute, hour and month: 'any' or a set of values."""
    any: bool
    values: FrozenSet[int] = frozenset()

    def matches(self, value: int) -> bool:
        return self.any or value in self.values


@dataclass(frozen=True)
class DayMatcher:
    """Matcher for day-of-month and day-of-week: 'any' or a list of predicates."""
    any: bool
    predicates: Tuple[DayPredicate, ...] = ()

    def matches(self, day: date) -> bool:
        return self.any or any(predicate(day) for predicate in self.predicates)


def _last_day(day: date) -> int:
    return calendar.monthrange(day.year, day.month)[1]


def cron_weekday(day: date) -> int:
    """Weekday in cron numbering (0 = Sunday)."""
    return (day.weekday() + 1) % 7


def _expand(token: CronToken) -> List[int]:
    return list(range(token.start, token.end + 1, token.step))


def _nearest_weekday(day: date, target: int) -> bool:
    last = _last_day(day)
    if target > last:
        return False

    weekday = date(day.year, day.month, target).weekday()
    if weekday == 5:  # Saturday
        resolved = target + 2 if target == 1 else target - 1
    elif weekday == 6:  # Sunday
        resolved = target - 2 if target + 1 > last else target + 1
    else:
        resolved = target
    return day.day == resolved


def _last_weekday_of_month(day: date) -> bool:
    last = date(day.year, day.month, _last_day(day))
    while last.weekday() >= 5:
        last -= timedelta(days=1)
    return day == last


def _day_of_month_predicate(token: CronToken) -> DayPredicate:
    if token.kind == 'range':
        days = frozenset(_expand(token))
        return lambda d: d.day in days
    if token.kind == 'last':
        return lambda d: d.day == _last_day(d) - token.offset
    if token.kind == 'last_weekday':
        return _last_weekday_of_month
    # nearest_weekday
    return lambda d: _nearest_weekday(d, token.start)


def _day_of_week_predicate(token: CronToken) -> DayPredicate:
    if token.kind == 'range':
        weekdays = frozenset(v % 7 for v in _expand(token))
        return lambda d: cron_weekday(d) in weekdays
    if token.kind == 'last_of_week':
        return lambda d: cron_weekday(d) == token.start and d.day + 7 > _last_day(d)
    # nth_of_week
    return lambda d: cron_weekday(d) == token.start and (d.day - 1) // 7 + 1 == token.nth


def _value_matcher(spec: FieldSpec, tokens: List[CronToken]) -> ValueMatcher:
    if any(t.kind == 'any' for t in tokens):
        return ValueMatcher(any=True)
    values = set()
    for token in tokens:
        values.update(_expand(token))
    return ValueMatcher(any=False, values=frozenset(values))


def _day_matcher(predicate_for: Callable[[CronToken], DayPredicate]):
    def build(spec: FieldSpec, tokens: List[CronToken]) -> DayMatcher:
        if any(t.kind == 'any' for t in tokens):
            return DayMatcher(any=True)
        return DayMatcher(any=False, predicates=tuple(predicate_for(t) for t in tokens))
    return build


# Which matcher each field kind builds
MATCHER_BUILDERS = {
    MINUTE.name: _value_matcher,
    HOUR.name: _value_matcher,
    MONTH.name: _value_matcher,
    DAY_OF_MONTH.name: _day_matcher(_day_of_month_predicate),
    DAY_OF_WEEK.name: _day_matcher(_day_of_week_predicate),
}


@dataclass(frozen=True)
class CronSchedule:
    """Parsed cron expression."""
    expression: str
    minute: ValueMatcher
    hour: ValueMatcher
    day_of_month: DayMatcher
    month: ValueMatcher
    day_of_week: DayMatcher

    def matches_day(self, day: date) -> bool:
        """
        Apply the classic cron day rule.

        When both day fields are restricted a day matches if either does;
        otherwise only the restricted field (if any) has to match.
        """
        dom, dow = self.day_of_month, self.day_of_week
        if not dom.any and not dow.any:
            return dom.matches(day) or dow.matches(day)
        if not dom.any:
            return dom.matches(day)
        if not dow.any:
            return dow.matches(day)
        return True

    def matches(self, moment: datetime) -> bool:
        return (
            self.minute.matches(moment.minute)
            and self.hour.matches(moment.hour)
            and self.month.matches(moment.month)
            and self.matches_day(moment.date())
        )


def validate_cron_expression(expression: str) -> CronSchedule:
    """
    Parse a cron expression, raising CronParseError with a reason on failure.

    Args:
        expression: Five-field cron expression

    Returns:
        The parsed CronSchedule
    """
    if not isinstance(expression, str):
        raise CronParseError("Cron expression must be a string")

    parts = expression.split()
    if len(parts) != 5:
        raise CronParseError(
            f"Cron expression must have 5 fields, got {len(parts)}: '{expression}'"
        )

    matchers = []
    for spec, text in zip(FIELDS, parts):
        tokens = tokenize_field(spec, text)
        matchers.append(MATCHER_BUILDERS[spec.name](spec, tokens))

    minute, hour, day_of_month, month, day_of_week = matchers
    return CronSchedule(
        expression=expression.strip(),
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month=month,
        day_of_week=day_of_week,
    )


def parse_cron_expression(expression: str) -> Optional[CronSchedule]:
    """Parse a cron expression, returning None if it is malformed."""
    try:
        return validate_cron_expression(expression)
    except CronParseError as e:
        logger.debug(f"Rejected cron expression {expression!r}: {e}")
        return None


# --- Next run calculation ---

def get_next_cron_run(expression: str, now: datetime = None) -> Optional[datetime]:
    """
    Find the next minute matching a cron expression.

    The search starts one minute after `now` (truncated to the minute), so the
    current instant is never returned, and gives up after LOOKAHEAD.

    Args:
        expression: Five-field cron expression
        now: Reference time (defaults to the current local time)

    Returns:
        The next matching datetime, or None if the expression is invalid or
        nothing matches within the lookahead window
    """
    schedule = parse_cron_expression(expression)
    if schedule is None:
        return None

    now = now or datetime.now()
    candidate = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
    horizon = candidate + LOOKAHEAD

    # Equivalent to a minute-by-minute scan; non-matching months, days and
    # hours are skipped in one step.
    while candidate < horizon:
        if not schedule.month.matches(candidate.month):
            year = candidate.year + (1 if candidate.month == 12 else 0)
            month = 1 if candidate.month == 12 else candidate.month + 1
            candidate = datetime(year, month, 1, tzinfo=candidate.tzinfo)
            continue

        if not schedule.matches_day(candidate.date()):
            candidate = datetime.combine(
                candidate.date() + timedelta(days=1), datetime.min.time(), tzinfo=candidate.tzinfo
            )
            continue

        if not schedule.hour.matches(candidate.hour):
            candidate = candidate.replace(minute=0) + timedelta(hours=1)
            continue

        if not schedule.minute.matches(candidate.minute):
            candidate += timedelta(minutes=1)
            continue

        return candidate

    return None


def calculate_next_run(job: Dict[str, Any], now: datetime = None) -> Optional[datetime]:
    """
    Calculate a job's next run time from its type.

    - one_time: the job's execute_at, verbatim
    - recurring: now + interval_seconds
    - cron: next match of cron_expression

    Args:
        job: Job record (execute_at may be a datetime or ISO string)
        now: Reference time (defaults to the current local time)

    Returns:
        Next run datetime, or None if it cannot be determined
    """
    job_type = job.get('job_type')
    now = now or datetime.now()

    if job_type == 'one_time':
        execute_at = job.get('execute_at')
        if not execute_at:
            return None
        if isinstance(execute_at, datetime):
            return execute_at
        return datetime.fromisoformat(str(execute_at))

    if job_type == 'recurring':
        interval = job.get('interval_seconds')
        if not interval or int(interval) <= 0:
            return None
        return now + timedelta(seconds=int(interval))

    if job_type == 'cron' and job.get('cron_expression'):
        return get_next_cron_run(job['cron_expression'], now)

    return None


def describe_cron(cron_expr: str) -> Optional[str]:
    """Convert a cron expression to a human-readable description."""
    if not cron_expr:
        return None

    parts = cron_expr.split()
    if len(parts) != 5:
        return cron_expr

    minute, hour, day, month, dow = parts

    if cron_expr == "* * * * *":
        return "Every minute"
    if minute.startswith("*/") and hour == "*" and day == "*" and month == "*" and dow == "*":
        return f"Every {minute[2:]} minutes"
    if minute.isdigit() and hour == "*" and day == "*" and month == "*" and dow == "*":
        return "Every hour" if minute == "0" else f"Every hour at :{int(minute):02d}"
    if not (minute.isdigit() and hour.isdigit()):
        return cron_expr

    at = f"{int(hour)}:{int(minute):02d}"
    if day == "*" and month == "*" and dow == "*":
        return f"Daily at {at}"
    if day == "*" and month == "*" and dow == "1-5":
        return f"Weekdays at {at}"
    if day == "1" and month == "*" and dow == "*":
        return f"Monthly on 1st at {at}"
    if day.upper() == "L" and month == "*" and dow == "*":
        return f"Monthly on the last day at {at}"
    if day == "*" and month == "*" and dow.isdigit():
        name = calendar.day_name[(int(dow) - 1) % 7]
        return f"Weekly on {name} at {at}"

    return cron_expr
