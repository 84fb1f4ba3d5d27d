"""Error types for the swap engine.

Builders return these inside ``Err`` results; transports raise them. The
trade state machine turns every one of them into an error response.
"""


class TradeError(Exception):
    """Base exception for all swap engine errors."""
    pass


class NoFundsFound(TradeError):
    """The UTXO oracle returned no spendable outputs for an address."""
    pass


class InsufficientFunds(TradeError):
    """Available funds do not cover the amount plus fee."""
    pass


class IncompatibleAssets(TradeError):
    """Arithmetic or comparison between assets of different kinds."""
    pass


class Underflow(TradeError):
    """Subtraction would produce a negative asset amount."""
    pass


class Overflow(TradeError):
    """Addition exceeds the ledger's amount range."""
    pass


class IdentityMismatch(TradeError):
    """Our recorded address does not belong to the supplied keypair."""
    pass


class Timeout(TradeError):
    """The counterparty answered outside of the allowed window."""
    pass


class SignatureInvalid(TradeError):
    """A signature failed verification."""
    pass


class ExpectationMismatch(TradeError):
    """A received transaction does not match what the trade expects."""
    pass


class DataNotFound(TradeError):
    """The mailbox slot for a counterparty is empty."""
    pass


class NotUnique(TradeError):
    """A predicate filter matched more or fewer than one entry."""
    pass


class InvalidTransition(TradeError):
    """A trade step was invoked before its predecessor completed."""
    pass


class ConfigurationError(TradeError):
    """Errors related to configuration."""
    pass


class TransportError(TradeError):
    """Errors from the mailbox, oracle, escrow signer or compute node."""
    def __init__(self, message: str, endpoint: str = "", details: str = ""):
        self.endpoint = endpoint
        self.details = details
        text = f"Transport error [{endpoint}]: {message}" if endpoint else f"Transport error: {message}"
        if details:
            text = f"{text} - {details}"
        super().__init__(text)
