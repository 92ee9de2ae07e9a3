from __future__ import annotations

from enum import StrEnum


class AlertType(StrEnum):
    ABOVE = "ABOVE"
    BELOW = "BELOW"
    PERCENT_CHANGE = "PERCENT_CHANGE"


class OrderSide(StrEnum):
    BUY = "BUY"
    SELL = "SELL"


class LimitOrderStatus(StrEnum):
    PENDING = "PENDING"
    TRIGGERED = "TRIGGERED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


class DCAFrequency(StrEnum):
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    CUSTOM = "CUSTOM"


class DCAStatus(StrEnum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class DCAExecutionStatus(StrEnum):
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class TriggerKind(StrEnum):
    """
    Kind of conditional trigger handled by a bulk check.
    """

    ALERT = "alert"
    LIMIT_ORDER = "limit-order"
    DCA = "dca"


_HOUR_MS = 60 * 60 * 1000

DCA_INTERVAL_MS: dict[DCAFrequency, int] = {
    DCAFrequency.HOURLY: _HOUR_MS,
    DCAFrequency.DAILY: 24 * _HOUR_MS,
    DCAFrequency.WEEKLY: 7 * 24 * _HOUR_MS,
    DCAFrequency.BIWEEKLY: 14 * 24 * _HOUR_MS,
    DCAFrequency.MONTHLY: 30 * 24 * _HOUR_MS,
}
