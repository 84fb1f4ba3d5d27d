"""Asset values held on the native ledger and checked arithmetic over them."""

from dataclasses import dataclass, replace
from typing import Any, Dict, Union

from core.errors import IncompatibleAssets, Overflow, Underflow
from core.result import Err, Ok, Result

# Watermark that matches a receipt of any kind
DEFAULT_WATERMARK = "default_drs_tx_hash"

# Ledger amounts are unsigned 64-bit integers
MAX_AMOUNT = 2 ** 64 - 1

TOKEN = "Token"
RECEIPT = "Receipt"


@dataclass(frozen=True)
class Token:
    """Fungible token amount."""
    amount: int

    def __post_init__(self):
        _check_amount(self.amount)

    @property
    def asset_type(self) -> str:
        return TOKEN

    def to_dict(self) -> Dict[str, Any]:
        return {TOKEN: self.amount}


@dataclass(frozen=True)
class Receipt:
    """Receipt amount tagged with the watermark of its kind."""
    amount: int
    watermark: str = DEFAULT_WATERMARK

    def __post_init__(self):
        _check_amount(self.amount)

    @property
    def asset_type(self) -> str:
        return RECEIPT

    def to_dict(self) -> Dict[str, Any]:
        return {RECEIPT: {"amount": self.amount, "drs_tx_hash": self.watermark}}


AssetValue = Union[Token, Receipt]


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError(f"Asset amount must be an integer, got {amount!r}")
    if amount < 0:
        raise ValueError(f"Asset amount cannot be negative: {amount}")


def is_token(value: Any) -> bool:
    return isinstance(value, Token)


def is_receipt(value: Any) -> bool:
    return isinstance(value, Receipt)


def new_asset(asset_type: str, amount: int, watermark: str = DEFAULT_WATERMARK) -> AssetValue:
    """Create an asset of the named kind.

    Raises:
        ValueError: If the asset type is unknown
    """
    if asset_type == TOKEN:
        return Token(amount)
    if asset_type == RECEIPT:
        return Receipt(amount, watermark)
    raise ValueError(f"Unknown asset type: {asset_type}")


def asset_from_dict(data: Dict[str, Any]) -> AssetValue:
    """Parse the ledger JSON form of an asset.

    Accepts ``{"Token": n}``, ``{"Receipt": {"amount": n, "drs_tx_hash": w}}``
    and the short receipt form ``{"Receipt": n}``.
    """
    if TOKEN in data:
        return Token(int(data[TOKEN]))
    if RECEIPT in data:
        receipt = data[RECEIPT]
        if isinstance(receipt, dict):
            return Receipt(
                int(receipt["amount"]),
                receipt.get("drs_tx_hash") or DEFAULT_WATERMARK,
            )
        return Receipt(int(receipt))
    raise ValueError(f"Unrecognised asset payload: {data}")


def compatible(a: AssetValue, b: AssetValue) -> bool:
    """Check whether two assets may be combined or compared."""
    if is_token(a) and is_token(b):
        return True
    if is_receipt(a) and is_receipt(b):
        return (
            a.watermark == b.watermark
            or a.watermark == DEFAULT_WATERMARK
            or b.watermark == DEFAULT_WATERMARK
        )
    return False


def _incompatible(a: AssetValue, b: AssetValue) -> Err:
    return Err(IncompatibleAssets(f"Assets {a} and {b} are not compatible"))


def _merged_watermark(a: Receipt, b: Receipt) -> str:
    if a.watermark != DEFAULT_WATERMARK:
        return a.watermark
    return b.watermark


def _with_amount(a: AssetValue, b: AssetValue, amount: int) -> AssetValue:
    if is_receipt(a):
        return Receipt(amount, _merged_watermark(a, b))
    return replace(a, amount=amount)


def add(a: AssetValue, b: AssetValue) -> Result[AssetValue]:
    """Add ``b`` to ``a``."""
    if not compatible(a, b):
        return _incompatible(a, b)
    total = a.amount + b.amount
    if total > MAX_AMOUNT:
        return Err(Overflow(f"Adding {b.amount} to {a.amount} exceeds {MAX_AMOUNT}"))
    return Ok(_with_amount(a, b, total))


def subtract(a: AssetValue, b: AssetValue) -> Result[AssetValue]:
    """Subtract ``b`` from ``a``."""
    if not compatible(a, b):
        return _incompatible(a, b)
    if a.amount < b.amount:
        return Err(Underflow(f"Cannot subtract {b.amount} from {a.amount}"))
    return Ok(_with_amount(a, b, a.amount - b.amount))


def less_than(a: AssetValue, b: AssetValue) -> Result[bool]:
    if not compatible(a, b):
        return _incompatible(a, b)
    return Ok(a.amount < b.amount)


def greater_than(a: AssetValue, b: AssetValue) -> Result[bool]:
    if not compatible(a, b):
        return _incompatible(a, b)
    return Ok(a.amount > b.amount)


def greater_or_equal(a: AssetValue, b: AssetValue) -> Result[bool]:
    if not compatible(a, b):
        return _incompatible(a, b)
    return Ok(a.amount >= b.amount)


def zero_like(asset: AssetValue) -> AssetValue:
    """Zero amount of the same kind as ``asset``."""
    return _with_amount(asset, asset, 0)
