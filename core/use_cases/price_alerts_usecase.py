from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel

from adapters.external.database.job_repository_mongodb import JobRepositoryMongoDB
from adapters.external.database.price_alert_repository_mongodb import (
    AlertHistoryRepositoryMongoDB,
    PriceAlertRepositoryMongoDB,
)
from adapters.external.notifications.notification_http_client import NotificationHttpClient
from config import get_settings
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.job_entity import JobEntity
from core.domain.entities.trigger_entities import AlertHistoryEntity, PriceAlertEntity
from core.domain.enums.job_enums import QueueName
from core.domain.enums.trigger_enums import AlertType, TriggerKind
from core.domain.repositories.price_alert_repository_interface import AlertHistoryRepository, PriceAlertRepository
from core.domain.schemas.job_payloads import AlertCheckJob, BulkCheckJob
from core.services.chain_registry import get_chain
from core.services.exceptions import PriceUnavailableError, TriggerNotFoundError, ValidationFailedError
from core.services.job_queue import JobQueue
from core.services.normalize import _norm, _norm_address
from core.services.price_service import PriceRequest, PriceService
from core.services.trigger_engine import BulkCheckResult, FireOutcome, run_bulk_check

logger = logging.getLogger(__name__)


def alert_condition_met(alert: PriceAlertEntity, price: float) -> bool:
    kind = AlertType(alert.alert_type)
    if kind == AlertType.ABOVE:
        return alert.target_price is not None and price >= alert.target_price
    if kind == AlertType.BELOW:
        return alert.target_price is not None and price <= alert.target_price

    base = alert.price_at_creation
    target = alert.target_percent_change
    if not base or target is None:
        return False
    change = (price - base) / base * 100
    return change >= target if target >= 0 else change <= target


def _describe(alert: PriceAlertEntity, price: float) -> str:
    symbol = alert.token_symbol or alert.token_address
    kind = AlertType(alert.alert_type)
    if kind == AlertType.PERCENT_CHANGE:
        return f"{symbol} moved {alert.target_percent_change:+.2f}% (now ${price:,.6g})"
    direction = "above" if kind == AlertType.ABOVE else "below"
    return f"{symbol} is {direction} ${alert.target_price:,.6g} (now ${price:,.6g})"


@dataclass
class PriceAlertsUseCase:
    alerts: PriceAlertRepository
    history: AlertHistoryRepository
    prices: PriceService
    notifier: NotificationHttpClient
    queue: Optional[JobQueue] = None
    clock: Callable[[], int] = MongoEntity.now_ms

    kind: TriggerKind = TriggerKind.ALERT

    @classmethod
    def from_settings(cls) -> "PriceAlertsUseCase":
        st = get_settings()
        return cls(
            alerts=PriceAlertRepositoryMongoDB(),
            history=AlertHistoryRepositoryMongoDB(),
            prices=PriceService.from_settings(),
            notifier=NotificationHttpClient.from_settings(),
            queue=JobQueue(JobRepositoryMongoDB(), retention_seconds=st.JOB_RETENTION_SECONDS),
        )

    # ------------------------------------------------------------------ #
    # CRUD
    # ------------------------------------------------------------------ #

    async def create_alert(
        self,
        *,
        user_address: str,
        chain_id: str,
        token_address: str,
        alert_type: str,
        token_symbol: str = "",
        token_decimals: int = 18,
        target_price: Optional[float] = None,
        target_percent_change: Optional[float] = None,
        notify_push: bool = True,
        notify_email: bool = False,
        notify_telegram: bool = False,
        telegram_chat_id: Optional[str] = None,
        note: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> PriceAlertEntity:
        if not _norm(user_address) or not _norm(token_address):
            raise ValidationFailedError("user_address and token_address are required")
        chain = get_chain(chain_id).key
        try:
            kind = AlertType(str(alert_type).upper())
        except ValueError:
            raise ValidationFailedError(f"unknown alert_type {alert_type}", details={"field": "alert_type"})

        if kind == AlertType.PERCENT_CHANGE:
            if not target_percent_change:
                raise ValidationFailedError(
                    "target_percent_change is required for PERCENT_CHANGE alerts",
                    details={"field": "target_percent_change"},
                )
        elif target_price is None or target_price <= 0:
            raise ValidationFailedError("target_price must be positive", details={"field": "target_price"})

        if notify_telegram and not _norm(telegram_chat_id):
            raise ValidationFailedError("telegram_chat_id is required for telegram notifications")

        price_at_creation: Optional[float] = None
        try:
            price_at_creation = await self.prices.get_price(chain, token_address, decimals=token_decimals)
        except PriceUnavailableError:
            if kind == AlertType.PERCENT_CHANGE:
                raise
            logger.info("no current price for %s:%s at alert creation", chain, token_address)

        alert = await self.alerts.insert(
            PriceAlertEntity(
                user_address=_norm_address(user_address),
                tenant_id=tenant_id,
                chain_id=chain,
                token_address=_norm_address(token_address),
                token_symbol=token_symbol,
                token_decimals=int(token_decimals),
                alert_type=kind,
                target_price=target_price if kind != AlertType.PERCENT_CHANGE else None,
                target_percent_change=target_percent_change if kind == AlertType.PERCENT_CHANGE else None,
                price_at_creation=price_at_creation,
                notify_push=notify_push,
                notify_email=notify_email,
                notify_telegram=notify_telegram,
                telegram_chat_id=telegram_chat_id,
                note=note,
            )
        )
        logger.info("price alert %s created (%s %s)", alert.id, kind, token_symbol or token_address)

        if self.queue is not None:
            await self.queue.enqueue(
                QueueName.ALERT_CHECK,
                AlertCheckJob(alert_id=alert.id),
                dedupe_key=f"alert-check:{alert.id}",
            )
        return alert

    async def list_alerts(self, user_address: str, *, active_only: bool = False) -> List[PriceAlertEntity]:
        return await self.alerts.list_by_user(user_address=user_address, active_only=active_only)

    async def delete_alert(self, alert_id: str, user_address: str) -> None:
        if not await self.alerts.deactivate(alert_id=alert_id, user_address=user_address):
            raise TriggerNotFoundError(f"alert {alert_id} not found", details={"alert_id": alert_id})

    async def get_history(self, user_address: str, *, limit: int = 50) -> List[AlertHistoryEntity]:
        return await self.history.list_by_user(user_address=user_address, limit=max(1, min(int(limit), 200)))

    # ------------------------------------------------------------------ #
    # trigger evaluation
    # ------------------------------------------------------------------ #

    async def load(self, now_ms: int) -> List[PriceAlertEntity]:
        return await self.alerts.list_active()

    def price_requests(self, item: PriceAlertEntity) -> Sequence[PriceRequest]:
        return [PriceRequest(chain=item.chain_id, address=item.token_address, decimals=item.token_decimals)]

    async def touch(self, ids: Sequence[str], now_ms: int) -> None:
        await self.alerts.touch_checked(ids, now_ms=now_ms)

    async def evaluate(self, item: PriceAlertEntity, prices: Dict[str, Optional[float]], now_ms: int) -> Optional[float]:
        price = prices.get(self.price_requests(item)[0].key)
        if price is None:
            logger.debug("no price for alert %s", item.id)
            return None
        return price if alert_condition_met(item, price) else None

    async def claim(self, item: PriceAlertEntity, *, token: str, until_ms: int, now_ms: int) -> bool:
        return await self.alerts.claim(item.id, token=token, until_ms=until_ms, now_ms=now_ms)

    async def _notify(self, alert: PriceAlertEntity, price: float) -> List[str]:
        text = _describe(alert, price)
        sent: List[str] = []

        sends = []
        if alert.notify_push:
            sends.append(("push", self.notifier.send_push(
                user_address=alert.user_address,
                title="Price alert",
                body=text,
                data={"alert_id": alert.id, "price": price},
            )))
        if alert.notify_email:
            sends.append(("email", self.notifier.send_email(
                user_address=alert.user_address,
                subject="OmniSwap price alert",
                body=text,
            )))
        if alert.notify_telegram and alert.telegram_chat_id:
            sends.append(("telegram", self.notifier.send_telegram(chat_id=alert.telegram_chat_id, text=text)))

        for channel, coro in sends:
            try:
                if await coro:
                    sent.append(channel)
            except Exception:
                logger.exception("alert %s: %s notification failed", alert.id, channel)
        return sent

    async def fire(self, item: PriceAlertEntity, context: float, *, token: str, now_ms: int) -> FireOutcome:
        price = float(context)
        inserted = await self.history.insert_once(
            AlertHistoryEntity(
                alert_id=item.id,
                user_address=item.user_address,
                tenant_id=item.tenant_id,
                token_symbol=item.token_symbol,
                alert_type=item.alert_type,
                target_price=item.target_price,
                target_percent_change=item.target_percent_change,
                triggered_price=price,
            )
        )
        if inserted:
            channels = await self._notify(item, price)
            await self.history.set_notifications(item.id, channels)
            logger.info("alert %s fired at %s (sent: %s)", item.id, price, ",".join(channels) or "none")
        else:
            logger.info("alert %s already recorded; only marking it fired", item.id)

        if not await self.alerts.mark_fired(item.id, token=token, price=price, now_ms=now_ms):
            logger.warning("alert %s lease lost before it could be marked fired", item.id)
        return FireOutcome.FIRED

    async def release(self, item: PriceAlertEntity, *, token: str, error: str, now_ms: int) -> None:
        await self.alerts.release(item.id, token=token, error=error)

    async def run_bulk_check(self) -> BulkCheckResult:
        return await run_bulk_check(self, self.prices, clock=self.clock)

    async def check_alert(self, alert_id: str) -> BulkCheckResult:
        alert = await self.alerts.get(alert_id)
        if alert is None or not alert.is_active or alert.fired:
            return BulkCheckResult(kind=self.kind.value)
        return await run_bulk_check(self, self.prices, clock=self.clock, items=[alert])

    async def handle_job(self, job: JobEntity, payload: BaseModel) -> Dict[str, Any]:
        if isinstance(payload, AlertCheckJob):
            result = await self.check_alert(payload.alert_id)
        elif isinstance(payload, BulkCheckJob):
            result = await self.run_bulk_check()
        else:
            raise ValidationFailedError(f"unexpected payload {type(payload).__name__} for alerts")
        return result.as_dict()
