from types import SimpleNamespace
from typing import Dict, List

import pytest

from core.domain.enums.trigger_enums import TriggerKind
from core.services.price_service import PriceRequest, price_key
from core.services.trigger_engine import FireOutcome, run_bulk_check
from tests.conftest import WETH
from tests.fakes import StubPriceService


class ScriptedEvaluator:
    """
    Limit-order shaped evaluator: `broken_evaluate` ids raise while being
    evaluated, `broken_fire` ids raise while executing.
    """

    kind = TriggerKind.LIMIT_ORDER

    def __init__(self, ids, *, broken_evaluate=(), broken_fire=()) -> None:
        self.items = [SimpleNamespace(id=i, claim=None, fired=False, last_error=None) for i in ids]
        self.broken_evaluate = set(broken_evaluate)
        self.broken_fire = set(broken_fire)
        self.released: List[str] = []

    def by_id(self, item_id: str):
        return next(it for it in self.items if it.id == item_id)

    async def load(self, now_ms):
        return list(self.items)

    def price_requests(self, item):
        return [PriceRequest(chain="base", address=WETH.address)]

    async def touch(self, ids, now_ms):
        return None

    async def evaluate(self, item, prices: Dict, now_ms):
        if item.id in self.broken_evaluate:
            raise KeyError("decimals")
        return prices[price_key("base", WETH.address)]

    async def claim(self, item, *, token, until_ms, now_ms):
        if item.claim is not None:
            return False
        item.claim = token
        return True

    async def fire(self, item, context, *, token, now_ms):
        if item.id in self.broken_fire:
            raise RuntimeError("swap creation failed")
        assert item.claim == token
        item.fired = True
        item.claim = None
        return FireOutcome.FIRED

    async def release(self, item, *, token, error, now_ms):
        assert item.claim == token
        item.claim = None
        item.last_error = error
        self.released.append(item.id)


@pytest.mark.asyncio
async def test_failing_conditions_do_not_abort_the_batch(clock):
    prices = StubPriceService({("base", WETH.address): 3200.0})
    evaluator = ScriptedEvaluator(["bad-eval", "bad-fire", "ok"], broken_evaluate={"bad-eval"}, broken_fire={"bad-fire"})

    result = await run_bulk_check(evaluator, prices, clock=clock)

    assert (result.checked, result.fired, result.errors) == (3, 1, 2)

    ok = evaluator.by_id("ok")
    assert ok.fired and ok.claim is None

    bad_fire = evaluator.by_id("bad-fire")
    assert not bad_fire.fired
    assert bad_fire.claim is None
    assert bad_fire.last_error == "RuntimeError: swap creation failed"

    bad_eval = evaluator.by_id("bad-eval")
    assert not bad_eval.fired
    assert bad_eval.claim is None
    assert evaluator.released == ["bad-fire"]

    assert len(prices.batches) == 1


@pytest.mark.asyncio
async def test_claimed_condition_is_skipped(clock):
    prices = StubPriceService({("base", WETH.address): 3200.0})
    evaluator = ScriptedEvaluator(["held", "free"])
    evaluator.by_id("held").claim = "other-worker"

    result = await run_bulk_check(evaluator, prices, clock=clock)

    assert (result.checked, result.fired, result.skipped, result.errors) == (2, 1, 1, 0)
    assert not evaluator.by_id("held").fired
    assert evaluator.by_id("free").fired
