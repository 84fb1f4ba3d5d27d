"""Bitcoin leg of a trade: keys, scripts, transactions and the escrow builder."""

from btc.adapter import BitcoinAdapter, BtcStage1Request, BtcStage2Request, BtcStage2Expectations
from btc.builder import FeeSchedule, Stage1Expectations
from btc.keys import BitcoinKey
from btc.oracle import UtxoOracleClient
from btc.transaction import Transaction

__all__ = [
    "BitcoinAdapter",
    "BtcStage1Request",
    "BtcStage2Request",
    "BtcStage2Expectations",
    "FeeSchedule",
    "Stage1Expectations",
    "BitcoinKey",
    "UtxoOracleClient",
    "Transaction",
]
