from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, TypeVar

from core.domain.entities.base_entity import MongoEntity
from core.domain.enums.trigger_enums import TriggerKind
from core.services.price_service import PriceRequest, PriceService

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=MongoEntity)

DEFAULT_LEASE_MS = 120_000
MAX_CONSECUTIVE_FAILURES = 5


class FireOutcome(StrEnum):
    FIRED = "FIRED"
    SKIPPED = "SKIPPED"


@dataclass
class BulkCheckResult:
    kind: str
    checked: int = 0
    fired: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TriggerEvaluator(Protocol[T]):
    """
    What a trigger kind plugs into `run_bulk_check`.

    `evaluate` returns a context (e.g. the observed price) when the condition
    holds, or None. `fire` runs the side effect and records it under the
    claim token; its side effects must be idempotent per trigger event.
    """

    kind: TriggerKind

    async def load(self, now_ms: int) -> List[T]: ...

    def price_requests(self, item: T) -> Sequence[PriceRequest]: ...

    async def touch(self, ids: Sequence[str], now_ms: int) -> None: ...

    async def evaluate(self, item: T, prices: Dict[str, Optional[float]], now_ms: int) -> Optional[Any]: ...

    async def claim(self, item: T, *, token: str, until_ms: int, now_ms: int) -> bool: ...

    async def fire(self, item: T, context: Any, *, token: str, now_ms: int) -> FireOutcome: ...

    async def release(self, item: T, *, token: str, error: str, now_ms: int) -> None: ...


async def run_bulk_check(
    evaluator: TriggerEvaluator,
    prices: PriceService,
    *,
    clock: Callable[[], int] = MongoEntity.now_ms,
    lease_ms: int = DEFAULT_LEASE_MS,
    items: Optional[Sequence[MongoEntity]] = None,
) -> BulkCheckResult:
    """
    One bulk-check cycle: load candidates, resolve all their prices in one
    batch, then claim -> fire -> mark each satisfied condition. `items`
    replaces the evaluator's own candidate load (single-condition checks).

    Losing a claim is a silent skip. A failing condition is released with
    the error recorded and never aborts the rest of the batch.
    """
    kind = TriggerKind(evaluator.kind)
    result = BulkCheckResult(kind=kind.value)
    now = clock()

    items = list(items) if items is not None else await evaluator.load(now)
    if not items:
        return result

    requests: List[PriceRequest] = []
    for it in items:
        requests.extend(evaluator.price_requests(it))
    price_map = await prices.get_prices(requests) if requests else {}

    await evaluator.touch([it.id for it in items if it.id], now)

    for item in items:
        result.checked += 1
        try:
            context = await evaluator.evaluate(item, price_map, now)
            if context is None:
                continue

            token = uuid.uuid4().hex
            if not await evaluator.claim(item, token=token, until_ms=now + lease_ms, now_ms=now):
                logger.debug("%s %s already claimed elsewhere", kind, item.id)
                result.skipped += 1
                continue

            try:
                outcome = await evaluator.fire(item, context, token=token, now_ms=now)
            except Exception as exc:
                logger.exception("%s %s execution failed", kind, item.id)
                await evaluator.release(item, token=token, error=f"{type(exc).__name__}: {exc}", now_ms=now)
                result.errors += 1
                continue

            if outcome == FireOutcome.FIRED:
                result.fired += 1
            else:
                result.skipped += 1
        except Exception:
            logger.exception("%s %s check failed", kind, item.id)
            result.errors += 1

    logger.info(
        "%s bulk check: checked=%d fired=%d skipped=%d errors=%d",
        kind, result.checked, result.fired, result.skipped, result.errors,
    )
    return result
