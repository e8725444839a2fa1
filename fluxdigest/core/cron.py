"""Five-field cron expressions evaluated against wall-clock minutes.

Fields are minute (0-59), hour (0-23), day-of-month (1-31), month (1-12) and
day-of-week (0-6, 0 = Sunday). Each field accepts `*`, `n`, `a-b`, `a,b,c`,
`*/s`, `a-b/s` and `n/s` (from `n` up to the field maximum).

Day-of-month and day-of-week are combined with AND, unlike classic Unix cron
which ORs them when both are restricted: `0 9 1 * 1` only fires when the 1st
is a Monday.

The next-run search skips whole non-matching days and hours rather than
stepping minute by minute, so sparse expressions such as daily or weekly
schedules still yield every requested upcoming run instead of stopping
within the first day of minutes.

Usage:
    from fluxdigest.core.cron import matches_minute, next_fire_times

    if matches_minute("*/5 * * * *", now):
        dispatch()

    upcoming = next_fire_times("0 8 * * 1-5", now, 5)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from fluxdigest.core.exceptions import CronParseError

# Search steps per result; a step skips a whole non-matching day or hour,
# and impossible dates (e.g. Feb 31st) give up once the steps run out.
MAX_SCAN_STEPS = 1000


@dataclass(frozen=True)
class FieldSpec:
    name: str
    low: int
    high: int


FIELD_SPECS = (
    FieldSpec("minute", 0, 59),
    FieldSpec("hour", 0, 23),
    FieldSpec("day_of_month", 1, 31),
    FieldSpec("month", 1, 12),
    FieldSpec("day_of_week", 0, 6),
)


@dataclass(frozen=True)
class CronTerm:
    """Inclusive range with a step; literals are one-element ranges."""

    start: int
    end: int
    step: int = 1

    def matches(self, value: int) -> bool:
        return self.start <= value <= self.end and (value - self.start) % self.step == 0


@dataclass(frozen=True)
class CronField:
    spec: FieldSpec
    source: str
    terms: tuple[CronTerm, ...]

    def matches(self, value: int) -> bool:
        return any(term.matches(value) for term in self.terms)


@dataclass(frozen=True)
class CronExpression:
    """A parsed cron expression."""

    source: str
    minute: CronField
    hour: CronField
    day_of_month: CronField
    month: CronField
    day_of_week: CronField

    def _date_matches(self, moment: datetime) -> bool:
        return (
            self.day_of_month.matches(moment.day)
            and self.month.matches(moment.month)
            and self.day_of_week.matches(moment.isoweekday() % 7)
        )

    def matches(self, moment: datetime) -> bool:
        """Check whether the minute containing `moment` satisfies every field."""
        return (
            self.minute.matches(moment.minute)
            and self.hour.matches(moment.hour)
            and self._date_matches(moment)
        )

    def _next_after(self, moment: datetime) -> datetime | None:
        candidate = moment.replace(second=0, microsecond=0) + timedelta(minutes=1)
        for _ in range(MAX_SCAN_STEPS):
            if not self._date_matches(candidate):
                candidate = (candidate + timedelta(days=1)).replace(hour=0, minute=0)
            elif not self.hour.matches(candidate.hour):
                candidate = (candidate + timedelta(hours=1)).replace(minute=0)
            elif not self.minute.matches(candidate.minute):
                candidate += timedelta(minutes=1)
            else:
                return candidate
        return None

    def next_fire_times(self, start: datetime, count: int) -> list[datetime]:
        """Return up to `count` matching minutes strictly after `start`.

        Stops early when a search runs out of MAX_SCAN_STEPS.
        """
        results: list[datetime] = []
        moment = start
        for _ in range(count):
            found = self._next_after(moment)
            if found is None:
                break
            results.append(found)
            moment = found
        return results


def _parse_int(token: str, spec: FieldSpec, source: str) -> int:
    if not token.isdigit():
        raise CronParseError(f"Invalid {spec.name} value '{token}' in '{source}'")
    value = int(token)
    if not spec.low <= value <= spec.high:
        raise CronParseError(
            f"{spec.name} value {value} out of range {spec.low}-{spec.high} in '{source}'"
        )
    return value


def _parse_term(token: str, spec: FieldSpec, source: str) -> CronTerm:
    base, sep, step_token = token.partition("/")
    step = 1
    if sep:
        if not step_token.isdigit() or int(step_token) == 0:
            raise CronParseError(f"Invalid step '{step_token}' in '{source}'")
        step = int(step_token)

    if base == "*":
        return CronTerm(spec.low, spec.high, step)

    if "-" in base:
        start_token, _, end_token = base.partition("-")
        start = _parse_int(start_token, spec, source)
        end = _parse_int(end_token, spec, source)
        if start > end:
            raise CronParseError(f"Inverted range '{base}' in '{source}'")
        return CronTerm(start, end, step)

    value = _parse_int(base, spec, source)
    if sep:
        # n/s runs from n up to the top of the field
        return CronTerm(value, spec.high, step)
    return CronTerm(value, value)


def _parse_field(text: str, spec: FieldSpec, source: str) -> CronField:
    if not text:
        raise CronParseError(f"Empty {spec.name} field in '{source}'")
    terms = tuple(_parse_term(token, spec, source) for token in text.split(","))
    return CronField(spec=spec, source=text, terms=terms)


def parse(expression: str) -> CronExpression:
    """Parse a five-field cron expression.

    Raises:
        CronParseError: wrong field count or an unparseable field
    """
    if not isinstance(expression, str):
        raise CronParseError("Cron expression must be a string")

    parts = expression.split()
    if len(parts) != len(FIELD_SPECS):
        raise CronParseError(
            f"Expected {len(FIELD_SPECS)} fields, got {len(parts)} in '{expression}'"
        )

    fields = [_parse_field(part, spec, expression) for part, spec in zip(parts, FIELD_SPECS)]
    return CronExpression(expression.strip(), *fields)


def validate(expression: str) -> bool:
    """Check whether an expression parses."""
    try:
        parse(expression)
    except CronParseError:
        return False
    return True


def matches_minute(expression: str | CronExpression, moment: datetime) -> bool:
    """Check whether `moment`'s wall-clock minute matches the expression.

    Unparseable expressions never match.
    """
    if isinstance(expression, str):
        try:
            expression = parse(expression)
        except CronParseError:
            return False
    return expression.matches(moment)


def next_fire_times(
    expression: str | CronExpression, start: datetime, count: int
) -> list[datetime]:
    """Return the next `count` fire times strictly after `start`."""
    if isinstance(expression, str):
        expression = parse(expression)
    return expression.next_fire_times(start, count)
