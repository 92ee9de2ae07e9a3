from __future__ import annotations

from typing import Any, Dict, Optional


class OmniSwapError(Exception):
    """
    Base for every domain error. The HTTP layer renders `code`, `message`
    and `details` into the error envelope with `http_status`.
    """

    code: str = "INTERNAL_ERROR"
    http_status: int = 500
    retryable: bool = False

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details


# ---------- client errors ----------

class ValidationFailedError(OmniSwapError):
    code = "VALIDATION_ERROR"
    http_status = 400


class QuoteNotFoundError(OmniSwapError):
    code = "QUOTE_NOT_FOUND"
    http_status = 404


class QuoteExpiredError(OmniSwapError):
    code = "QUOTE_EXPIRED"
    http_status = 400


class QuoteNotExecutableError(OmniSwapError):
    code = "QUOTE_NOT_EXECUTABLE"
    http_status = 400


class RouteNotFoundError(OmniSwapError):
    code = "ROUTE_NOT_FOUND"
    http_status = 404


class SwapNotFoundError(OmniSwapError):
    code = "SWAP_NOT_FOUND"
    http_status = 404


class SwapFinishedError(OmniSwapError):
    code = "SWAP_FINISHED"
    http_status = 400


class StepIndexMismatchError(OmniSwapError):
    code = "STEP_INDEX_MISMATCH"
    http_status = 400


class StepNotPendingError(OmniSwapError):
    code = "STEP_NOT_PENDING"
    http_status = 400


class InvalidSignatureError(OmniSwapError):
    code = "INVALID_SIGNATURE"
    http_status = 400


class BroadcastError(OmniSwapError):
    code = "BROADCAST_ERROR"
    http_status = 400


class TriggerNotFoundError(OmniSwapError):
    code = "NOT_FOUND"
    http_status = 404


class InvalidTransitionError(OmniSwapError):
    code = "INVALID_TRANSITION"
    http_status = 409


class UnsupportedChainError(OmniSwapError):
    code = "UNSUPPORTED_CHAIN"
    http_status = 400


# ---------- operator access ----------

class OperatorAuthError(OmniSwapError):
    code = "UNAUTHORIZED"
    http_status = 401


class OperatorScopeError(OmniSwapError):
    """
    The operator is known but may not act on this swap's tenant.
    """

    code = "FORBIDDEN"
    http_status = 403


class OperatorAuthUnavailableError(OmniSwapError):
    code = "AUTH_UNAVAILABLE"
    http_status = 503
    retryable = True


# ---------- concurrency ----------

class ConcurrentUpdateError(OmniSwapError):
    code = "CONCURRENT_UPDATE"
    http_status = 409
    retryable = True


# ---------- transient infrastructure ----------

class TransientRpcError(OmniSwapError):
    code = "RPC_UNAVAILABLE"
    http_status = 503
    retryable = True


class PriceUnavailableError(OmniSwapError):
    code = "PRICE_UNAVAILABLE"
    http_status = 503
    retryable = True


class QueueUnavailableError(OmniSwapError):
    code = "QUEUE_UNAVAILABLE"
    http_status = 503
    retryable = True


# ---------- on-chain outcomes (recorded on the swap, never retried) ----------

class TransactionRevertedError(OmniSwapError):
    code = "TRANSACTION_REVERTED"
    http_status = 500

    def __init__(self, tx_hash: str, message: str = "", *, receipt: Optional[Dict[str, Any]] = None):
        super().__init__(message or f"transaction {tx_hash} reverted", details={"tx_hash": tx_hash})
        self.tx_hash = tx_hash
        self.receipt = receipt


class TransactionDroppedError(OmniSwapError):
    code = "TRANSACTION_DROPPED"
    http_status = 500


class TransactionTimeoutError(OmniSwapError):
    code = "TRANSACTION_TIMEOUT"
    http_status = 500


class InsufficientOutputError(OmniSwapError):
    code = "INSUFFICIENT_OUTPUT"
    http_status = 500


# ---------- queue ----------

class JobPayloadMismatchError(OmniSwapError):
    code = "JOB_PAYLOAD_MISMATCH"
    http_status = 500
