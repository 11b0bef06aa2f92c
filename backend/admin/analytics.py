"""Admin analytics: enrollment trends and quiz performance over a period."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

from backend.cache import keys
from backend.cache.helpers import read_through
from backend.cache.store import CacheProtocol
from backend.common.errors import ValidationFailed

PERIODS = {"7d": timedelta(days=7), "30d": timedelta(days=30), "90d": timedelta(days=90), "1y": timedelta(days=365)}
GROUP_BY = ("day", "week", "month", "year")


class AnalyticsRepoProtocol(Protocol):
    def enrollment_trends(self, since: datetime, unit: str) -> List[dict]:
        ...

    def quiz_performance(self, since: datetime) -> List[dict]:
        ...


def parse_period(period: object) -> str:
    if period not in PERIODS:
        raise ValidationFailed("INVALID_PERIOD", f"period must be one of {', '.join(PERIODS)}")
    return str(period)


def parse_window(period: object, group_by: object) -> tuple[str, str]:
    p = parse_period(period)
    if group_by not in GROUP_BY:
        raise ValidationFailed("INVALID_GROUP_BY", f"groupBy must be one of {', '.join(GROUP_BY)}")
    return p, str(group_by)


@dataclass
class AnalyticsService:
    repo: AnalyticsRepoProtocol
    cache: CacheProtocol
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)

    def _since(self, period: str) -> datetime:
        return self.clock() - PERIODS[period]

    def _report(self, kind: str, period: str, group_by: Optional[str], build: Callable[[], Any]) -> Dict[str, Any]:
        data = read_through(self.cache, keys.analytics(kind, period, group_by), keys.ANALYTICS_TTL, build)
        report: Dict[str, Any] = {"period": period, "items": data}
        if group_by is not None:
            report["groupBy"] = group_by
        return report

    def enrollment_trends(self, period: object = "30d", group_by: object = "day") -> Dict[str, Any]:
        p, g = parse_window(period, group_by)
        return self._report("enrollments", p, g, lambda: self.repo.enrollment_trends(self._since(p), g))

    def quiz_performance(self, period: object = "30d") -> Dict[str, Any]:
        """Per-quiz attempt count, average percentage and pass rate over the whole period."""
        p = parse_period(period)
        return self._report("quiz_performance", p, None, lambda: self.repo.quiz_performance(self._since(p)))
