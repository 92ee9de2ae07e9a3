from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from core.domain.entities.quote_entity import QuoteEntity, RouteEntity, RouteStep, TokenRef
from core.domain.enums.swap_enums import StepType
from core.services.job_queue import JobQueue
from core.services.transaction_monitor import TransactionMonitorService
from core.use_cases.quotes_usecase import QuotesUseCase
from core.use_cases.swaps_usecase import SwapsUseCase
from tests.fakes import (
    Clock,
    FakeBridgeStatus,
    FakeExecutor,
    FakeExecutorRegistry,
    FakeQuoteProvider,
    InMemoryJobRepository,
    InMemoryMonitoredTransactionRepository,
    InMemoryQuoteRepository,
    InMemorySwapRepository,
    StubPriceService,
)

USER = "0x1111111111111111111111111111111111111111"
WETH = TokenRef(chain="base", address="0x4200000000000000000000000000000000000006", symbol="WETH", decimals=18)
USDC = TokenRef(chain="base", address="0x833589fcd6edb6e08f4c7c32d4f71b54bda02913", symbol="USDC", decimals=6)
ARB_USDC = TokenRef(chain="arbitrum", address="0xaf88d065e77c8cc2239327c5edb3a432268e5831", symbol="USDC", decimals=6)


def make_step(
    *,
    type: StepType = StepType.SWAP,
    chain_id: str = "base",
    input_token: TokenRef = WETH,
    output_token: TokenRef = USDC,
    input_amount: str = "1000000000000000000",
    expected_output: str = "3000000000",
    minimum_output: str = "2985000000",
    destination_chain_id: Optional[str] = None,
    price_impact: Optional[float] = None,
) -> RouteStep:
    return RouteStep(
        type=type,
        chain_id=chain_id,
        protocol="uniswap_v3",
        input_token=input_token,
        output_token=output_token,
        input_amount=input_amount,
        expected_output=expected_output,
        minimum_output=minimum_output,
        estimated_gas=180_000,
        tx_to="0x2626664c2603336e57b271c5c0b26f421741e481",
        tx_data="0xdeadbeef",
        tx_value="0",
        destination_chain_id=destination_chain_id,
        price_impact=price_impact,
    )


def make_route(steps: List[RouteStep], *, route_id: str = "route-1", price_impact: Optional[float] = None) -> RouteEntity:
    first, last = steps[0], steps[-1]
    return RouteEntity(
        id=route_id,
        steps=steps,
        input_token=first.input_token,
        output_token=last.output_token,
        input_amount=first.input_amount,
        expected_output=last.expected_output,
        minimum_output=last.minimum_output,
        price_impact=price_impact,
    )


def provider_response(route: RouteEntity) -> Dict[str, Any]:
    return {"routes": [route.model_dump(mode="json")], "best_route_id": route.id}


async def store_quote(
    repo: InMemoryQuoteRepository,
    route: RouteEntity,
    *,
    expires_at: int,
    indicative: bool = False,
) -> QuoteEntity:
    return await repo.insert(
        QuoteEntity(
            input_token=route.input_token,
            output_token=route.output_token,
            input_amount=route.input_amount,
            routes=[route],
            best_route_id=route.id,
            expires_at=expires_at,
            indicative=indicative,
        )
    )


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def system(clock: Clock) -> SimpleNamespace:
    """
    Swap engine wired over in-memory stores: quotes, swaps, the monitor and
    its job queue, with a scripted executor.
    """
    quote_repo = InMemoryQuoteRepository()
    swap_repo = InMemorySwapRepository()
    watches = InMemoryMonitoredTransactionRepository()
    jobs = InMemoryJobRepository()
    executor = FakeExecutor()
    registry = FakeExecutorRegistry(executor)
    bridge = FakeBridgeStatus()
    queue = JobQueue(jobs, clock=clock)

    monitor = TransactionMonitorService(
        watches=watches,
        swaps=swap_repo,
        queue=queue,
        executors=registry,
        bridge_status=bridge,
        clock=clock,
    )
    swaps = SwapsUseCase(
        swaps=swap_repo,
        quotes=quote_repo,
        executors=registry,
        monitor=monitor,
        clock=clock,
    )
    monitor.set_listener(swaps)

    prices = StubPriceService()
    provider = FakeQuoteProvider()
    quotes = QuotesUseCase(quotes=quote_repo, provider=provider, prices=prices, clock=clock)

    return SimpleNamespace(
        clock=clock,
        quote_repo=quote_repo,
        swap_repo=swap_repo,
        watches=watches,
        jobs=jobs,
        queue=queue,
        executor=executor,
        bridge=bridge,
        monitor=monitor,
        swaps=swaps,
        prices=prices,
        provider=provider,
        quotes=quotes,
    )
