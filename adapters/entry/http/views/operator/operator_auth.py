"""
Operator access for the refund endpoints.

Operators sign in through Privy. Their access token (ES256, checked against
the app's JWKS) carries the operator wallet, and OPERATOR_WALLETS says which
tenants each wallet may act for:

    OPERATOR_WALLETS="0xaaa..., 0xbbb...=acme|globex"

A bare wallet is a platform operator: every tenant, plus swaps created
without one. A scoped wallet only reaches swaps of the listed tenants.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, FrozenSet, Optional

import jwt
import requests
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import get_settings
from core.domain.entities.swap_entity import SwapEntity
from core.services.exceptions import OperatorAuthError, OperatorAuthUnavailableError, OperatorScopeError
from core.services.normalize import _norm_lower

logger = logging.getLogger(__name__)

PRIVY_ISSUER = "privy.io"
JWKS_TTL_SECONDS = 600

OperatorGrants = Dict[str, Optional[FrozenSet[str]]]

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class OperatorPrincipal:
    subject: str
    wallet_address: str
    # None: platform operator
    tenants: Optional[FrozenSet[str]] = None

    def ensure_can_refund(self, swap: SwapEntity) -> None:
        if self.tenants is None:
            return
        if swap.tenant_id is None or swap.tenant_id not in self.tenants:
            raise OperatorScopeError(
                f"operator {self.wallet_address} may not refund swaps of this tenant",
                details={"swap_id": swap.id, "tenant_id": swap.tenant_id},
            )


def parse_operator_grants(raw: str) -> OperatorGrants:
    grants: OperatorGrants = {}
    for entry in (raw or "").split(","):
        wallet, sep, scope = entry.strip().partition("=")
        wallet = _norm_lower(wallet)
        if not wallet:
            continue
        tenants = frozenset(t.strip() for t in scope.split("|") if t.strip())
        if sep and not tenants:
            logger.warning("operator %s has an empty tenant list; ignored", wallet)
            continue
        grants[wallet] = tenants or None
    return grants


class OperatorTokenVerifier:
    """
    Verifies Privy access tokens. Signing keys are cached for
    `ttl_seconds`; an unknown `kid` forces one refetch to pick up a rotation.
    """

    def __init__(
        self,
        *,
        jwks_url: str,
        app_id: str,
        fetch_jwks: Optional[Callable[[], Dict[str, Any]]] = None,
        ttl_seconds: float = JWKS_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.jwks_url = jwks_url
        self.app_id = app_id
        self.fetch_jwks = fetch_jwks or self._fetch
        self.ttl_seconds = float(ttl_seconds)
        self.clock = clock
        self._jwks: Optional[Dict[str, Any]] = None
        self._fetched_at = 0.0

    def _fetch(self) -> Dict[str, Any]:
        if not self.jwks_url:
            raise OperatorAuthUnavailableError("operator authentication is not configured")
        try:
            r = requests.get(self.jwks_url, timeout=10)
            r.raise_for_status()
            return r.json()
        except requests.RequestException as exc:
            raise OperatorAuthUnavailableError("could not fetch the token signing keys") from exc

    def _keys(self, *, refresh: bool = False) -> Dict[str, Any]:
        now = self.clock()
        if refresh or self._jwks is None or now - self._fetched_at >= self.ttl_seconds:
            self._jwks = self.fetch_jwks()
            self._fetched_at = now
        return self._jwks

    def _key_for(self, kid: str) -> Optional[Dict[str, Any]]:
        for refresh in (False, True):
            for k in self._keys(refresh=refresh).get("keys", []):
                if k.get("kid") == kid:
                    return k
        return None

    def verify(self, token: str) -> Dict[str, Any]:
        if not self.app_id:
            raise OperatorAuthUnavailableError("operator authentication is not configured")
        try:
            kid = jwt.get_unverified_header(token).get("kid")
        except jwt.InvalidTokenError as exc:
            raise OperatorAuthError("malformed token") from exc
        if not kid:
            raise OperatorAuthError("token header has no kid")

        jwk = self._key_for(kid)
        if jwk is None:
            raise OperatorAuthError("token signed with an unknown key")

        try:
            return jwt.decode(
                token,
                key=jwt.algorithms.ECAlgorithm.from_jwk(jwk),
                algorithms=["ES256"],
                audience=self.app_id,
                issuer=PRIVY_ISSUER,
                options={"require": ["exp", "iat", "aud", "iss", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise OperatorAuthError("token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise OperatorAuthError(f"invalid token: {exc}") from exc


def _wallet_from_claims(claims: Dict[str, Any]) -> str:
    for key in ("wallet_address", "address", "wallet"):
        v = claims.get(key)
        if isinstance(v, str) and v.startswith("0x"):
            return v.lower()
    return ""


@lru_cache(maxsize=1)
def get_token_verifier() -> OperatorTokenVerifier:
    s = get_settings()
    return OperatorTokenVerifier(jwks_url=s.PRIVY_JWKS_URL, app_id=s.PRIVY_APP_ID)


@lru_cache(maxsize=1)
def get_operator_grants() -> OperatorGrants:
    return parse_operator_grants(get_settings().OPERATOR_WALLETS)


def require_operator(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    verifier: OperatorTokenVerifier = Depends(get_token_verifier),
    grants: OperatorGrants = Depends(get_operator_grants),
) -> OperatorPrincipal:
    if not creds or not creds.credentials:
        raise OperatorAuthError("missing bearer token")

    claims = verifier.verify(creds.credentials)
    wallet = _wallet_from_claims(claims)
    if not wallet:
        raise OperatorScopeError("token carries no wallet address")
    if wallet not in grants:
        raise OperatorScopeError(f"wallet {wallet} is not an operator")

    return OperatorPrincipal(subject=str(claims.get("sub") or ""), wallet_address=wallet, tenants=grants[wallet])
