"""Core types, results, assets and errors for the swap engine."""

from core.errors import (
    TradeError,
    NoFundsFound,
    InsufficientFunds,
    IncompatibleAssets,
    Underflow,
    Overflow,
    IdentityMismatch,
    Timeout,
    SignatureInvalid,
    ExpectationMismatch,
    DataNotFound,
    NotUnique,
    InvalidTransition,
    ConfigurationError,
    TransportError,
)
from core.result import Ok, Err, Result
from core.assets import DEFAULT_WATERMARK, Token, Receipt, AssetValue
from core.types import (
    TradeAddress,
    CorrelationId,
    Keypair,
    Status,
    ResponseStatus,
    TradeProgress,
    FreshnessTest,
    TradeResponse,
)

__all__ = [
    "TradeError",
    "NoFundsFound",
    "InsufficientFunds",
    "IncompatibleAssets",
    "Underflow",
    "Overflow",
    "IdentityMismatch",
    "Timeout",
    "SignatureInvalid",
    "ExpectationMismatch",
    "DataNotFound",
    "NotUnique",
    "InvalidTransition",
    "ConfigurationError",
    "TransportError",
    "Ok",
    "Err",
    "Result",
    "DEFAULT_WATERMARK",
    "Token",
    "Receipt",
    "AssetValue",
    "TradeAddress",
    "CorrelationId",
    "Keypair",
    "Status",
    "ResponseStatus",
    "TradeProgress",
    "FreshnessTest",
    "TradeResponse",
]
