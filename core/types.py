"""Core types for the swap engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, NewType, Optional

# Type aliases
TradeAddress = NewType("TradeAddress", str)  # hex encoded Ed25519 public key of a trade party
CorrelationId = NewType("CorrelationId", str)  # DRUID linking two half transactions


@dataclass(frozen=True)
class Keypair:
    """Native ledger keypair supplied by the caller for a single operation."""
    address: str  # ledger address derived from the public key
    public_key: bytes
    secret_key: bytes  # 32 byte Ed25519 seed
    address_version: Optional[int] = None

    @property
    def trade_address(self) -> str:
        """Identity used for this party on the mailbox."""
        return self.public_key.hex()

    def __repr__(self) -> str:
        return f"Keypair(address={self.address!r}, public_key={self.public_key.hex()!r})"


class Status(IntEnum):
    """Ordered trade progress with a counterparty."""
    FRESH_TEST_SENT = 0
    FRESH_TEST_SIGNED = 1
    BOTH_SIGNED = 2
    STAGE1_SENT = 3
    STAGE1_VERIFIED = 4
    STAGE2_PARTIAL_SENT = 5
    STAGE3_SENT = 6
    ESCROW_SIG_AWAITED = 7
    COMPLETE = 8


class ResponseStatus(Enum):
    """Outcome of an externally facing trade operation."""
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class TradeProgress:
    """Progress of the trade with one counterparty.

    ``status`` is ``None`` once the trade has failed; ``failure_reason``
    then says why.
    """
    status: Optional[Status]
    last_event: datetime
    our_address: str
    failure_reason: Optional[str] = None
    nonce: Optional[str] = None  # outstanding freshness challenge

    @property
    def failed(self) -> bool:
        return self.status is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.name if self.status is not None else "FAILED",
            "last_event": self.last_event.isoformat(),
            "our_address": self.our_address,
            "failure_reason": self.failure_reason,
            "nonce": self.nonce,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeProgress":
        status_name = data["status"]
        return cls(
            status=None if status_name == "FAILED" else Status[status_name],
            last_event=datetime.fromisoformat(data["last_event"]),
            our_address=data["our_address"],
            failure_reason=data.get("failure_reason"),
            nonce=data.get("nonce"),
        )


@dataclass
class FreshnessTest:
    """Liveness challenge: the subject must sign ``nonce`` with its key."""
    subject_public_key: str
    nonce: str
    signature: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "publicKey": self.subject_public_key,
            "message": self.nonce,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FreshnessTest":
        return cls(
            subject_public_key=data["publicKey"],
            nonce=data["message"],
            signature=data.get("signature"),
        )


@dataclass
class TradeResponse:
    """Uniform result of a trade operation."""
    status: ResponseStatus
    reason: str
    content: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is ResponseStatus.SUCCESS

    @classmethod
    def success(cls, reason: str, **content: Any) -> "TradeResponse":
        return cls(ResponseStatus.SUCCESS, reason, dict(content))

    @classmethod
    def error(cls, reason: str, **content: Any) -> "TradeResponse":
        return cls(ResponseStatus.ERROR, reason, dict(content))

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status.value, "reason": self.reason, "content": self.content}
