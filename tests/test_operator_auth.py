import json
import time

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.security import HTTPAuthorizationCredentials

from adapters.entry.http.views.operator.operator_auth import (
    OperatorPrincipal,
    OperatorTokenVerifier,
    parse_operator_grants,
    require_operator,
)
from core.domain.entities.swap_entity import SwapEntity
from core.services.exceptions import OperatorAuthError, OperatorAuthUnavailableError, OperatorScopeError
from tests.conftest import make_route, make_step

APP_ID = "omniswap-app"
WALLET = "0x9999999999999999999999999999999999999999"


def signing_key():
    return ec.generate_private_key(ec.SECP256R1())


def public_jwk(key, kid):
    jwk = json.loads(jwt.algorithms.ECAlgorithm.to_jwk(key.public_key()))
    jwk["kid"] = kid
    return jwk


def issue(key, kid="k1", **overrides):
    now = int(time.time())
    claims = {
        "sub": "did:privy:op",
        "iss": "privy.io",
        "aud": APP_ID,
        "iat": now,
        "exp": now + 600,
        "wallet_address": WALLET,
        **overrides,
    }
    return jwt.encode(claims, key, algorithm="ES256", headers={"kid": kid})


class JwksSource:
    def __init__(self, *keysets):
        self.keysets = list(keysets)
        self.fetches = 0

    def __call__(self):
        keys = self.keysets[min(self.fetches, len(self.keysets) - 1)]
        self.fetches += 1
        return {"keys": keys}


def bearer(tok):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=tok)


def swap_for(tenant_id):
    route = make_route([make_step()])
    return SwapEntity(
        user_address="0x1111111111111111111111111111111111111111",
        tenant_id=tenant_id,
        quote_id="q1",
        route_id=route.id,
        route=route,
        input_amount="1",
        expected_output="1",
    )


class TestGrants:
    def test_bare_and_scoped_wallets(self):
        grants = parse_operator_grants(" 0xAAA , 0xbbb=acme|globex,, 0xccc= ")

        assert grants == {"0xaaa": None, "0xbbb": frozenset({"acme", "globex"})}

    def test_platform_operator_reaches_every_swap(self):
        op = OperatorPrincipal(subject="s", wallet_address=WALLET)

        op.ensure_can_refund(swap_for("acme"))
        op.ensure_can_refund(swap_for(None))

    def test_scoped_operator_stays_in_its_tenants(self):
        op = OperatorPrincipal(subject="s", wallet_address=WALLET, tenants=frozenset({"acme"}))

        op.ensure_can_refund(swap_for("acme"))
        with pytest.raises(OperatorScopeError):
            op.ensure_can_refund(swap_for("globex"))
        with pytest.raises(OperatorScopeError):
            op.ensure_can_refund(swap_for(None))


class TestVerifier:
    def test_valid_token_yields_an_operator(self):
        key = signing_key()
        verifier = OperatorTokenVerifier(jwks_url="", app_id=APP_ID, fetch_jwks=JwksSource([public_jwk(key, "k1")]))

        op = require_operator(bearer(issue(key)), verifier, {WALLET: frozenset({"acme"})})

        assert op.wallet_address == WALLET
        assert op.subject == "did:privy:op"
        assert op.tenants == frozenset({"acme"})

    def test_wallet_outside_the_grants_is_forbidden(self):
        key = signing_key()
        verifier = OperatorTokenVerifier(jwks_url="", app_id=APP_ID, fetch_jwks=JwksSource([public_jwk(key, "k1")]))

        with pytest.raises(OperatorScopeError):
            require_operator(bearer(issue(key)), verifier, {"0xaaa": None})

    def test_missing_token(self):
        verifier = OperatorTokenVerifier(jwks_url="", app_id=APP_ID, fetch_jwks=JwksSource([]))

        with pytest.raises(OperatorAuthError):
            require_operator(None, verifier, {})

    @pytest.mark.parametrize(
        "overrides",
        [{"aud": "another-app"}, {"iss": "someone.else"}, {"exp": int(time.time()) - 60}],
    )
    def test_rejected_claims(self, overrides):
        key = signing_key()
        verifier = OperatorTokenVerifier(jwks_url="", app_id=APP_ID, fetch_jwks=JwksSource([public_jwk(key, "k1")]))

        with pytest.raises(OperatorAuthError):
            verifier.verify(issue(key, **overrides))

    def test_foreign_signature_is_rejected(self):
        trusted, forged = signing_key(), signing_key()
        verifier = OperatorTokenVerifier(jwks_url="", app_id=APP_ID, fetch_jwks=JwksSource([public_jwk(trusted, "k1")]))

        with pytest.raises(OperatorAuthError):
            verifier.verify(issue(forged, kid="k1"))

    def test_rotated_key_is_picked_up_with_one_refetch(self):
        old, new = signing_key(), signing_key()
        source = JwksSource([public_jwk(old, "k1")], [public_jwk(new, "k2")])
        verifier = OperatorTokenVerifier(jwks_url="", app_id=APP_ID, fetch_jwks=source)

        verifier.verify(issue(old, kid="k1"))
        claims = verifier.verify(issue(new, kid="k2"))

        assert claims["sub"] == "did:privy:op"
        assert source.fetches == 2

    def test_keys_are_cached(self):
        key = signing_key()
        source = JwksSource([public_jwk(key, "k1")])
        verifier = OperatorTokenVerifier(jwks_url="", app_id=APP_ID, fetch_jwks=source)

        verifier.verify(issue(key))
        verifier.verify(issue(key))

        assert source.fetches == 1

    def test_unknown_kid(self):
        key = signing_key()
        source = JwksSource([public_jwk(key, "k1")])
        verifier = OperatorTokenVerifier(jwks_url="", app_id=APP_ID, fetch_jwks=source)

        with pytest.raises(OperatorAuthError):
            verifier.verify(issue(key, kid="k9"))
        assert source.fetches == 2

    def test_unconfigured(self):
        verifier = OperatorTokenVerifier(jwks_url="", app_id="")

        with pytest.raises(OperatorAuthUnavailableError):
            verifier.verify("a.b.c")
