import asyncio

import pytest

from core.domain.enums.trigger_enums import DCAExecutionStatus, DCAStatus
from core.services.exceptions import InvalidTransitionError, TriggerNotFoundError, ValidationFailedError
from core.use_cases.dca_usecase import DCAUseCase, failure_backoff_ms
from tests.conftest import USDC, USER, WETH, make_route, make_step, provider_response
from tests.fakes import InMemoryDCAExecutionRepository, InMemoryDCAStrategyRepository

HOUR = 60 * 60 * 1000


@pytest.fixture
def dca(system):
    system.provider.response = provider_response(make_route([make_step()], price_impact=0.5))
    return DCAUseCase(
        strategies=InMemoryDCAStrategyRepository(),
        executions=InMemoryDCAExecutionRepository(),
        prices=system.prices,
        quotes=system.quotes,
        swaps=system.swaps,
        clock=system.clock,
    )


async def hourly(dca, **kwargs):
    kwargs.setdefault("total_executions", 3)
    return await dca.create_strategy(
        user_address=USER,
        input_token=WETH,
        output_token=USDC,
        amount_per_execution="1000000000000000000",
        frequency="hourly",
        **kwargs,
    )


def test_failure_backoff_grows_and_caps():
    assert [failure_backoff_ms(n) for n in (1, 2, 3)] == [60_000, 120_000, 240_000]
    assert failure_backoff_ms(20) == HOUR


class TestCreate:
    @pytest.mark.asyncio
    async def test_first_execution_is_one_interval_out(self, dca, system):
        s = await hourly(dca)

        assert s.status == DCAStatus.ACTIVE
        assert s.execution_number == 0
        assert s.next_execution_at == system.clock() + HOUR
        assert s.name == "DCA WETH -> USDC"

    @pytest.mark.asyncio
    async def test_validation(self, dca):
        with pytest.raises(ValidationFailedError):
            await hourly(dca, total_executions=1)
        with pytest.raises(ValidationFailedError):
            await dca.create_strategy(
                user_address=USER,
                input_token=WETH,
                output_token=USDC,
                amount_per_execution="1",
                frequency="CUSTOM",
                custom_interval_ms=60_000,
            )
        with pytest.raises(ValidationFailedError):
            await dca.create_strategy(
                user_address=USER, input_token=WETH, output_token=USDC, amount_per_execution="1", frequency="YEARLY"
            )


class TestExecution:
    @pytest.mark.asyncio
    async def test_not_due_yet(self, dca):
        await hourly(dca)
        assert (await dca.run_bulk_check()).checked == 0

    @pytest.mark.asyncio
    async def test_runs_until_total_executions(self, dca, system):
        s = await hourly(dca, total_executions=2)

        system.clock.advance(HOUR)
        assert (await dca.run_bulk_check()).fired == 1
        mid = await dca.get_strategy(s.id, USER)
        assert mid.execution_number == 1
        assert mid.next_execution_at == system.clock() + HOUR
        assert mid.total_input_spent == "1000000000000000000"
        assert mid.total_output_expected == "3000000000"

        system.clock.advance(HOUR)
        assert (await dca.run_bulk_check()).fired == 1
        done = await dca.get_strategy(s.id, USER)
        assert done.status == DCAStatus.COMPLETED
        assert done.execution_number == 2
        assert done.completed_at == system.clock()

        refs = sorted(sw.client_ref for sw in system.swap_repo.docs.values())
        assert refs == [f"dca:{s.id}:1", f"dca:{s.id}:2"]

        system.clock.advance(HOUR)
        assert (await dca.run_bulk_check()).checked == 0

    @pytest.mark.asyncio
    async def test_concurrent_checks_execute_once(self, dca, system):
        s = await hourly(dca)
        system.clock.advance(HOUR)

        results = await asyncio.gather(dca.run_bulk_check(), dca.run_bulk_check())

        assert sum(r.fired for r in results) == 1
        assert (await dca.get_strategy(s.id, USER)).execution_number == 1
        assert len(system.swap_repo.docs) == 1

    @pytest.mark.asyncio
    async def test_recorded_execution_is_reused_after_a_crash(self, dca, system, monkeypatch):
        s = await hourly(dca)
        system.clock.advance(HOUR)

        record_success = dca.strategies.record_success
        crashes = []

        async def crash_once(*args, **kwargs):
            if not crashes:
                crashes.append(1)
                raise ConnectionError("mongo went away")
            return await record_success(*args, **kwargs)

        monkeypatch.setattr(dca.strategies, "record_success", crash_once)

        assert (await dca.run_bulk_check()).errors == 1
        assert (await dca.get_strategy(s.id, USER)).execution_number == 0
        quotes_before = len(system.provider.calls)

        system.clock.advance(HOUR)
        assert (await dca.run_bulk_check()).fired == 1

        stored = await dca.get_strategy(s.id, USER)
        assert stored.execution_number == 1
        assert stored.total_output_expected == "3000000000"
        assert len(system.provider.calls) == quotes_before
        assert len(system.swap_repo.docs) == 1

        rows = await dca.list_executions(s.id, USER)
        completed = [r for r in rows if r.status == DCAExecutionStatus.COMPLETED]
        assert len(completed) == 1
        assert completed[0].execution_number == 1

    @pytest.mark.asyncio
    async def test_high_price_impact_skips_the_occurrence(self, dca, system):
        system.provider.response = provider_response(make_route([make_step()], price_impact=5.0))
        s = await hourly(dca)
        system.clock.advance(HOUR)

        result = await dca.run_bulk_check()

        assert (result.fired, result.skipped) == (0, 1)
        stored = await dca.get_strategy(s.id, USER)
        assert stored.execution_number == 0
        assert stored.next_execution_at == system.clock() + HOUR
        [row] = await dca.list_executions(s.id, USER)
        assert row.status == DCAExecutionStatus.SKIPPED
        assert row.price_impact_bps == 500
        assert system.swap_repo.docs == {}

    @pytest.mark.asyncio
    async def test_failures_back_off_then_fail_the_strategy(self, dca, system):
        s = await hourly(dca)
        system.clock.advance(HOUR)
        system.provider.response = None

        await dca.run_bulk_check()
        stored = await dca.get_strategy(s.id, USER)
        assert stored.consecutive_failures == 1
        assert stored.next_execution_at == system.clock() + 60_000

        for _ in range(4):
            system.clock.advance(HOUR)
            await dca.run_bulk_check()

        stored = await dca.get_strategy(s.id, USER)
        assert stored.status == DCAStatus.FAILED
        assert stored.execution_number == 0
        rows = await dca.list_executions(s.id, USER)
        assert [r.attempt for r in reversed(rows)] == [1, 2, 3, 4, 5]
        assert {r.status for r in rows} == {DCAExecutionStatus.FAILED}


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_pause_and_resume(self, dca, system):
        s = await hourly(dca)
        await dca.pause_strategy(s.id, USER)
        system.clock.advance(2 * HOUR)

        assert (await dca.run_bulk_check()).checked == 0

        resumed = await dca.resume_strategy(s.id, USER)
        assert resumed.status == DCAStatus.ACTIVE
        assert resumed.next_execution_at == system.clock() + HOUR

        with pytest.raises(InvalidTransitionError):
            await dca.resume_strategy(s.id, USER)

    @pytest.mark.asyncio
    async def test_cancel_and_ownership(self, dca):
        s = await hourly(dca)

        with pytest.raises(TriggerNotFoundError):
            await dca.cancel_strategy(s.id, "0x2222222222222222222222222222222222222222")
        cancelled = await dca.cancel_strategy(s.id, USER)
        assert cancelled.status == DCAStatus.CANCELLED
        with pytest.raises(InvalidTransitionError):
            await dca.pause_strategy(s.id, USER)
