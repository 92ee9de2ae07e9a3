from __future__ import annotations

from decimal import Decimal, InvalidOperation


def _norm(a: str | None) -> str:
    return (a or "").strip()


def _norm_lower(a: str | None) -> str:
    return _norm(a).lower()


def _norm_address(a: str | None) -> str:
    """
    EVM hex addresses are case-insensitive; base58 (Solana) and Sui ids are not.
    """
    v = _norm(a)
    if v.startswith("0x") or v.startswith("0X"):
        return v.lower()
    return v


def _to_decimal(v: str | int | float | None) -> Decimal:
    if v is None or v == "":
        return Decimal(0)
    try:
        return Decimal(str(v))
    except InvalidOperation:
        return Decimal(0)
