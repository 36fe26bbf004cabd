from datetime import UTC, datetime, timedelta


class SystemClock:
    def now_utc(self) -> datetime:
        return datetime.now(UTC)


class FrozenClock:
    """Settable clock for tests and replays."""

    def __init__(self, at: datetime | None = None) -> None:
        self._at = at or datetime(2025, 1, 1, tzinfo=UTC)

    def now_utc(self) -> datetime:
        return self._at

    def set(self, at: datetime) -> None:
        self._at = at

    def advance(self, **kwargs: float) -> datetime:
        self._at = self._at + timedelta(**kwargs)
        return self._at
