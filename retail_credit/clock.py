"""
Clock Module

Injectable time source. Ledger logic never calls ``datetime.now()`` directly,
so delinquency and payoff calculations stay deterministic under test.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """Source of the current moment"""

    @abstractmethod
    def now(self) -> datetime:
        """Current timezone-aware UTC datetime"""
        pass

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall-clock time in UTC"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given moment; advanced explicitly in tests"""

    def __init__(self, moment: datetime):
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        self._moment = moment

    def now(self) -> datetime:
        return self._moment

    def set(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        self._moment = moment

    def advance(self, **kwargs) -> datetime:
        """Move forward by a ``timedelta(**kwargs)`` and return the new moment"""
        self._moment = self._moment + timedelta(**kwargs)
        return self._moment
