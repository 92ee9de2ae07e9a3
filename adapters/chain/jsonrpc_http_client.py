from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, List, Optional

import httpx

from core.services.exceptions import TransientRpcError

_ids = itertools.count(1)


class JsonRpcError(Exception):
    def __init__(self, code: Optional[int], message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


@dataclass
class JsonRpcHttpClient:
    """
    Minimal JSON-RPC 2.0 caller over httpx used for Solana and Sui nodes.
    """

    url: str
    timeout: float = 15.0

    async def call(self, method: str, params: List[Any]) -> Any:
        body = {"jsonrpc": "2.0", "id": next(_ids), "method": method, "params": params}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as cli:
                res = await cli.post(self.url, json=body)
        except httpx.TransportError as exc:
            raise TransientRpcError(f"{method} transport error: {exc}") from exc

        if res.status_code == 429 or res.status_code >= 500:
            raise TransientRpcError(f"{method} HTTP {res.status_code}")

        data = res.json() if res.content else {}
        err = data.get("error")
        if err:
            raise JsonRpcError(err.get("code"), str(err.get("message") or "rpc error"), err.get("data"))
        return data.get("result")
