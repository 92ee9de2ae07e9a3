from __future__ import annotations

from typing import Any, Dict, Iterable, List

from eth_utils import keccak
from web3 import Web3

from core.domain.schemas.chain_types import TokenTransfer
from core.services.normalize import _norm_lower

TRANSFER_TOPIC0 = "0x" + keccak(text="Transfer(address,address,uint256)").hex()


def _topic_address(topic: Any) -> str:
    return "0x" + str(topic)[-40:].lower()


def parse_erc20_transfers(receipt: Dict[str, Any], *, token_allowlist: Iterable[str] = ()) -> List[TokenTransfer]:
    """
    Extract ERC-20 Transfer events from a JSON-safe receipt. Addresses come
    back lower-cased; malformed logs are ignored.
    """
    allow = {_norm_lower(t) for t in token_allowlist if Web3.is_address(t)}

    out: List[TokenTransfer] = []
    for lg in receipt.get("logs") or []:
        addr = lg.get("address")
        if not addr or not Web3.is_address(addr):
            continue
        token = _norm_lower(addr)
        if allow and token not in allow:
            continue

        topics = lg.get("topics") or []
        # topics[1] and topics[2] are the indexed from/to addresses
        if len(topics) < 3 or str(topics[0]).lower() != TRANSFER_TOPIC0:
            continue

        data_hex = lg.get("data") or "0x0"
        if not isinstance(data_hex, str) or not data_hex.startswith("0x"):
            continue
        try:
            amount = int(data_hex, 16) if len(data_hex) > 2 else 0
        except ValueError:
            continue

        out.append(
            TokenTransfer(
                token=token,
                from_address=_topic_address(topics[1]),
                to_address=_topic_address(topics[2]),
                amount_raw=str(amount),
            )
        )
    return out


def received_amount(transfers: Iterable[TokenTransfer], *, token: str, recipient: str) -> int:
    token_l = _norm_lower(token)
    recipient_l = _norm_lower(recipient)
    return sum(
        int(t.amount_raw)
        for t in transfers
        if t.token == token_l and t.to_address == recipient_l
    )
