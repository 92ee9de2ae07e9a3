import base64

import pytest
from eth_account import Account
from web3 import Web3

from adapters.chain.erc20_transfers import TRANSFER_TOPIC0
from core.domain.enums.swap_enums import ChainTxState
from core.domain.enums.swap_enums import GasStrategy
from core.services.exceptions import InvalidSignatureError, ValidationFailedError
from core.services.executors.evm import FALLBACK_GAS_LIMIT, EvmStepExecutor, pad_gas
from core.services.executors.solana import SolanaStepExecutor
from tests.conftest import USDC, make_step

# well-known throwaway key; never funded
TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


def signed_tx(key=TEST_KEY):
    signed = Account.sign_transaction(
        {
            "to": "0x2626664c2603336E57B271c5C0b26F421741e481",
            "value": 0,
            "gas": 21_000,
            "gasPrice": 1_000_000_000,
            "nonce": 0,
            "chainId": 8453,
            "data": "0x",
        },
        key,
    )
    return "0x" + signed.raw_transaction.hex().removeprefix("0x")


def _topic(addr):
    return "0x" + "0" * 24 + addr[2:].lower()


class StubEvmClient:
    def __init__(self):
        self.sent = []
        self.receipt = None
        self.tx = None
        self.head = 0

    async def send_raw_transaction(self, chain_id, raw_tx):
        self.sent.append((chain_id, raw_tx))
        return "0x" + "ab" * 32

    async def get_receipt(self, chain_id, tx_hash):
        return self.receipt

    async def get_transaction(self, chain_id, tx_hash):
        return self.tx

    async def block_number(self, chain_id):
        return self.head


class StubSolanaClient:
    def __init__(self):
        self.sent = []

    async def send_transaction(self, blob):
        self.sent.append(blob)
        return "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"


def test_pad_gas():
    assert pad_gas(100_000, GasStrategy.DEFAULT) == 100_000
    assert pad_gas(100_000, GasStrategy.BUFFERED) == 135_000
    assert pad_gas(None, GasStrategy.DEFAULT) == FALLBACK_GAS_LIMIT


class TestEvmExecutor:
    def test_build_transaction(self):
        ex = EvmStepExecutor(StubEvmClient())
        tx = ex.build_transaction(make_step(), "0x1111111111111111111111111111111111111111")

        assert tx.to == Web3.to_checksum_address("0x2626664c2603336e57b271c5c0b26f421741e481")
        assert tx.evm_chain_id == 8453
        assert tx.gas_limit == 180_000 * 125 // 100 + 10_000

    def test_build_without_calldata(self):
        ex = EvmStepExecutor(StubEvmClient())
        step = make_step().model_copy(update={"tx_data": None})
        with pytest.raises(ValidationFailedError):
            ex.build_transaction(step, "0x1111111111111111111111111111111111111111")

    @pytest.mark.asyncio
    async def test_submit_checks_the_signer(self):
        client = StubEvmClient()
        ex = EvmStepExecutor(client)
        owner = Account.from_key(TEST_KEY).address

        result = await ex.submit(make_step(), signed_tx(), user_address=owner.lower())
        assert result.tx_hash == "0x" + "ab" * 32

        with pytest.raises(InvalidSignatureError):
            await ex.submit(make_step(), signed_tx(), user_address="0x1111111111111111111111111111111111111111")
        with pytest.raises(InvalidSignatureError):
            await ex.submit(make_step(), "not-hex", user_address=owner)
        assert len(client.sent) == 1

    @pytest.mark.asyncio
    async def test_status_progression(self):
        client = StubEvmClient()
        ex = EvmStepExecutor(client)
        user = "0x1111111111111111111111111111111111111111"
        step = make_step()

        client.tx = {"hash": "0x01"}
        assert (await ex.get_status("base", "0x01", step=step, user_address=user)).state == ChainTxState.PENDING

        client.tx = None
        assert (await ex.get_status("base", "0x01", step=step, user_address=user)).state == ChainTxState.DROPPED

        client.receipt = {
            "blockNumber": 100,
            "status": 1,
            "gasUsed": 150_000,
            "effectiveGasPrice": 10,
            "logs": [
                {
                    "address": USDC.address,
                    "topics": [TRANSFER_TOPIC0, _topic("0x2626664c2603336e57b271c5c0b26f421741e481"), _topic(user)],
                    "data": hex(2_990_000_000),
                }
            ],
        }
        client.head = 100
        status = await ex.get_status("base", "0x01", step=step, user_address=user)

        assert status.state == ChainTxState.CONFIRMED
        assert status.actual_output == "2990000000"
        assert status.gas_cost == "1500000"

    @pytest.mark.asyncio
    async def test_reverted_receipt(self):
        client = StubEvmClient()
        client.receipt = {"blockNumber": 5, "status": 0}
        status = await EvmStepExecutor(client).get_status(
            "base", "0x01", step=make_step(), user_address="0x1111111111111111111111111111111111111111"
        )
        assert status.state == ChainTxState.FAILED


class TestSolanaExecutor:
    @pytest.mark.asyncio
    async def test_requires_a_signature(self):
        client = StubSolanaClient()
        ex = SolanaStepExecutor(client)
        step = make_step(chain_id="solana")

        unsigned = base64.b64encode(bytes([1]) + bytes(64) + b"message").decode()
        with pytest.raises(InvalidSignatureError):
            await ex.submit(step, unsigned, user_address="owner")

        with pytest.raises(InvalidSignatureError):
            await ex.submit(step, "%%%not-base64", user_address="owner")

        signed = base64.b64encode(bytes([1]) + bytes([7]) * 64 + b"message").decode()
        result = await ex.submit(step, signed, user_address="owner")
        assert result.tx_hash.startswith("5VER")
        assert client.sent == [signed]
