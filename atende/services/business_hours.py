"""Business hours evaluation per tenant and department."""

import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from atende.config import settings
from atende.logging_config import get_logger
from atende.models import BusinessHoursRule, Tenant

logger = get_logger("business_hours")

# Indexed by datetime.weekday(): Monday == 0
DAY_CODES = ("SEG", "TER", "QUA", "QUI", "SEX", "SAB", "DOM")
DAY_LABELS = {
    "SEG": "Seg",
    "TER": "Ter",
    "QUA": "Qua",
    "QUI": "Qui",
    "SEX": "Sex",
    "SAB": "Sáb",
    "DOM": "Dom",
}
MINUTES_PER_DAY = 24 * 60
MINUTES_PER_WEEK = 7 * MINUTES_PER_DAY

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class InvalidBusinessHoursError(ValueError):
    pass


class BusinessHoursConflictError(Exception):
    def __init__(self, rule_id: int):
        self.rule_id = rule_id
        super().__init__(f"Overlaps active rule {rule_id}")


def parse_weekdays(value: str) -> frozenset[str]:
    codes = [code.strip().upper() for code in (value or "").split(",") if code.strip()]
    if not codes:
        raise InvalidBusinessHoursError("At least one weekday is required")
    unknown = [code for code in codes if code not in DAY_CODES]
    if unknown:
        raise InvalidBusinessHoursError(f"Unknown weekday codes: {', '.join(unknown)}")
    return frozenset(codes)


def parse_time(value: str) -> int:
    """Parse HH:MM into minutes after midnight."""
    match = _TIME_RE.match((value or "").strip())
    if not match:
        raise InvalidBusinessHoursError(f"Invalid time {value!r}, expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


@dataclass(frozen=True)
class HoursWindow:
    weekdays: frozenset[str]
    start: int
    end: int
    rule_id: Optional[int] = None

    @classmethod
    def from_values(cls, weekdays: str, start: str, end: str, rule_id: Optional[int] = None) -> "HoursWindow":
        return cls(parse_weekdays(weekdays), parse_time(start), parse_time(end), rule_id)

    @property
    def crosses_midnight(self) -> bool:
        return self.end <= self.start

    def matches(self, local: datetime) -> bool:
        day = DAY_CODES[local.weekday()]
        minute = local.hour * 60 + local.minute
        if not self.crosses_midnight:
            return day in self.weekdays and self.start <= minute < self.end
        previous_day = DAY_CODES[(local.weekday() - 1) % 7]
        return (day in self.weekdays and minute >= self.start) or (
            previous_day in self.weekdays and minute < self.end
        )

    def week_intervals(self) -> list[tuple[int, int]]:
        """Half-open minute intervals on a Monday-based week, split at the week boundary."""
        intervals = []
        length = (self.end - self.start) % MINUTES_PER_DAY or MINUTES_PER_DAY
        for offset, code in enumerate(DAY_CODES):
            if code not in self.weekdays:
                continue
            begin = offset * MINUTES_PER_DAY + self.start
            finish = begin + length
            if finish <= MINUTES_PER_WEEK:
                intervals.append((begin, finish))
            else:
                intervals.append((begin, MINUTES_PER_WEEK))
                intervals.append((0, finish - MINUTES_PER_WEEK))
        return intervals

    def overlaps(self, other: "HoursWindow") -> bool:
        return any(
            a_start < b_end and b_start < a_end
            for a_start, a_end in self.week_intervals()
            for b_start, b_end in other.week_intervals()
        )

    def describe(self) -> str:
        days = ", ".join(DAY_LABELS[code] for code in DAY_CODES if code in self.weekdays)
        return f"{days}: {_fmt_minutes(self.start)} às {_fmt_minutes(self.end)}"


def _fmt_minutes(value: int) -> str:
    return f"{value // 60:02d}:{value % 60:02d}"


def tenant_timezone(tenant: Optional[Tenant]) -> ZoneInfo:
    name = (tenant.timezone if tenant else None) or settings.default_timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Unknown tenant timezone, using default",
            extra={"context": {"tenant_id": getattr(tenant, "id", None), "timezone": name}},
        )
        return ZoneInfo(settings.default_timezone)


def greeting_for(local: datetime) -> str:
    if 4 <= local.hour < 12:
        return "Bom dia"
    if 12 <= local.hour < 18:
        return "Boa tarde"
    return "Boa noite"


def _load_windows(db: Session, tenant_id: int, department_id: Optional[int]) -> list[HoursWindow]:
    query = db.query(BusinessHoursRule).filter(
        BusinessHoursRule.tenant_id == tenant_id,
        BusinessHoursRule.is_active.is_(True),
    )
    if department_id is None:
        query = query.filter(BusinessHoursRule.department_id.is_(None))
    else:
        query = query.filter(BusinessHoursRule.department_id == department_id)

    windows = []
    for rule in query.order_by(BusinessHoursRule.id.asc()).all():
        try:
            windows.append(HoursWindow.from_values(rule.weekdays, rule.start_time, rule.end_time, rule.id))
        except InvalidBusinessHoursError as e:
            logger.error(
                "Skipping malformed business hours rule",
                extra={"context": {"tenant_id": tenant_id, "rule_id": rule.id, "error": str(e)}},
            )
    return windows


class BusinessHoursEvaluator:
    """Resolves the applicable rules (department, then general, then always open) with a short TTL cache."""

    def __init__(self, cache_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.cache_seconds = settings.business_hours_cache_seconds if cache_seconds is None else cache_seconds
        self._clock = clock
        self._cache: dict[tuple[int, Optional[int]], tuple[float, list[HoursWindow]]] = {}

    def applicable_windows(self, db: Session, tenant_id: int, department_id: Optional[int]) -> list[HoursWindow]:
        key = (tenant_id, department_id)
        now = self._clock()
        cached = self._cache.get(key)
        if cached and cached[0] > now:
            return cached[1]

        windows = _load_windows(db, tenant_id, department_id) if department_id is not None else []
        if not windows:
            windows = _load_windows(db, tenant_id, None)

        self._cache[key] = (now + self.cache_seconds, windows)
        return windows

    def is_within_business_hours(
        self,
        db: Session,
        tenant: Tenant,
        department_id: Optional[int],
        at: datetime,
    ) -> bool:
        windows = self.applicable_windows(db, tenant.id, department_id)
        if not windows:
            return True
        local = at.astimezone(tenant_timezone(tenant))
        return any(window.matches(local) for window in windows)

    def describe(self, db: Session, tenant_id: int, department_id: Optional[int]) -> str:
        windows = self.applicable_windows(db, tenant_id, department_id)
        if not windows:
            return "Atendimento disponível a qualquer horário."
        return "\n".join(f"• {window.describe()}" for window in windows)

    def invalidate(self, tenant_id: Optional[int] = None) -> None:
        if tenant_id is None:
            self._cache.clear()
            return
        for key in [key for key in self._cache if key[0] == tenant_id]:
            self._cache.pop(key, None)


def validate_rule(
    db: Session,
    tenant_id: int,
    department_id: Optional[int],
    weekdays: str,
    start_time: str,
    end_time: str,
    exclude_rule_id: Optional[int] = None,
) -> HoursWindow:
    """Parse a rule and reject it when it overlaps an active rule of the same scope."""
    window = HoursWindow.from_values(weekdays, start_time, end_time)
    for existing in _load_windows(db, tenant_id, department_id):
        if existing.rule_id == exclude_rule_id:
            continue
        if window.overlaps(existing):
            raise BusinessHoursConflictError(existing.rule_id)
    return window


business_hours = BusinessHoursEvaluator()
