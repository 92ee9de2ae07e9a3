from __future__ import annotations

from enum import StrEnum


class QueueName(StrEnum):
    ALERT_CHECK = "alert-check"
    LIMIT_ORDER_CHECK = "limit-order-check"
    DCA_CHECK = "dca-check"
    TRANSACTION_MONITOR = "transaction-monitor"


class JobStatus(StrEnum):
    WAITING = "WAITING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class BackoffType(StrEnum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
