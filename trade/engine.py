"""Trade handshake state machine.

A trade between two parties runs over the mailbox in this order::

    initiator                               responder
    send_freshness_test        ->  FRESH_TEST_SENT
                                   sign_freshness_test      FRESH_TEST_SIGNED
    check_freshness_response   ->  BOTH_SIGNED
    send_stage1 (escrow lock)  ->  STAGE1_SENT
                                   get_stage1               STAGE1_VERIFIED
                                   send_stage2_partial      STAGE2_PARTIAL_SENT
    get_stage2_partial         ->  STAGE2_PARTIAL_SENT
    send_stage3 (proposal)     ->  STAGE3_SENT
                                   accept_stage3            STAGE3_SENT
    settle_stage3              ->  COMPLETE
                                   get_escrow_signature     ESCROW_SIG_AWAITED
                                   submit_stage2            COMPLETE

Every operation returns a ``TradeResponse``. Failures other than calling a
step too early, or polling before the counterparty has written anything,
mark the trade failed until ``restart_trade`` is called.
"""

import asyncio
import logging
import secrets
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from config import EngineConfig
from core.assets import asset_from_dict
from core.errors import (
    DataNotFound,
    ExpectationMismatch,
    IdentityMismatch,
    InvalidTransition,
    SignatureInvalid,
    Timeout,
    TradeError,
    TransportError,
)
from core.types import FreshnessTest, Keypair, Status, TradeProgress, TradeResponse
from escrow.client import EscrowSignerClient
from intercom import codec
from intercom.client import MailboxClient
from ledger.adapter import SettlementTerms
from ledger.swap import generate_correlation_id
from trade.adapter import ChainAdapter, SettlementAdapter
from trade.store import TradeStore
from wallet import sign_hex, verify_signature

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Message kinds left on the mailbox
FRESH_TEST = "fresh_test"
STAGE1 = "stage1"
STAGE2_PARTIAL = "stage2_partial"
STAGE3 = "stage3"

PENDING = "pending"
ACCEPTED = "accepted"

REFUNDED_REASON = "refunded after locktime"

# Errors that leave the trade record untouched
_RETRYABLE = (InvalidTransition, DataNotFound)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TradeSession:
    """Runs trades with any number of counterparties.

    Args:
        chain: Adapter for the escrowed ledger
        settlement: Adapter for the native ledger settlement
        mailbox: Mailbox relay client
        escrow: Escrow signer client
        config: Engine configuration
        store: Progress store owned by this session
        clock: Source of the current time
    """

    def __init__(
        self,
        chain: ChainAdapter,
        settlement: SettlementAdapter,
        mailbox: MailboxClient,
        escrow: EscrowSignerClient,
        config: EngineConfig,
        store: Optional[TradeStore] = None,
        clock: Clock = _utc_now,
    ):
        self.chain = chain
        self.settlement = settlement
        self.mailbox = mailbox
        self.escrow = escrow
        self.config = config
        self.store = store or TradeStore()
        self.clock = clock
        self.escrow_key: Optional[str] = None
        self._escrow_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Progress queries
    # ------------------------------------------------------------------

    async def restore(self) -> int:
        """Reload saved trades, their artifacts and the pinned escrow key.

        Returns:
            Number of trade records restored
        """
        count = await self.store.load(self.chain.decode)
        self.escrow_key = await self.store.load_escrow_key()
        return count

    def progress(self, their_address: str) -> Optional[TradeProgress]:
        return self.store.get(their_address)

    def trades(self) -> Dict[str, TradeProgress]:
        return self.store.all()

    # ------------------------------------------------------------------
    # Step plumbing
    # ------------------------------------------------------------------

    async def _run(
        self,
        their_address: str,
        keypair: Keypair,
        step: Callable[..., Awaitable[TradeResponse]],
        *args: Any,
    ) -> TradeResponse:
        """Run one step under the counterparty's lock, converting failures to responses."""
        async with self.store.lock(their_address):
            try:
                return await step(*args)
            except _RETRYABLE as e:
                logger.info(f"{step.__name__} with {their_address[:16]}... not ready: {e}")
                return TradeResponse.error(str(e))
            except TradeError as e:
                await self._fail(their_address, keypair, str(e))
                return TradeResponse.error(str(e))
            except Exception as e:
                logger.exception(f"Unexpected error in {step.__name__} with {their_address[:16]}...")
                reason = f"Internal error: {e}"
                await self._fail(their_address, keypair, reason)
                return TradeResponse.error(reason)

    async def _fail(self, their_address: str, keypair: Keypair, reason: str) -> None:
        record = self.store.get(their_address)
        if record is None:
            record = TradeProgress(None, self.clock(), keypair.trade_address)
        logger.warning(f"Trade with {their_address[:16]}... failed: {reason}")
        await self.store.save(
            their_address,
            replace(record, status=None, last_event=self.clock(), failure_reason=reason, nonce=None),
        )

    async def _advance(self, their_address: str, record: TradeProgress, status: Status,
                       **changes: Any) -> None:
        await self.store.save_artifacts(their_address, self.chain.encode)
        await self.store.save(their_address, replace(record, status=status, last_event=self.clock(), **changes))
        logger.info(f"Trade with {their_address[:16]}... advanced to {status.name}")

    def _require(self, their_address: str, keypair: Keypair, expected: Status) -> TradeProgress:
        record = self.store.get(their_address)
        if record is None:
            raise InvalidTransition(f"No trade in progress with {their_address[:16]}...")
        if record.failed:
            raise InvalidTransition(
                f"Trade with {their_address[:16]}... failed ({record.failure_reason}); restart required"
            )
        if record.status != expected:
            raise InvalidTransition(f"Expected status {expected.name}, trade is at {record.status.name}")
        self._check_identity(record, keypair)
        return record

    @staticmethod
    def _check_identity(record: TradeProgress, keypair: Keypair) -> None:
        if record.our_address != keypair.trade_address:
            raise IdentityMismatch("Our address does not match our public key")

    async def _post(self, their_address: str, own_address: str, keypair: Keypair, value: Dict[str, Any]) -> None:
        await self.mailbox.set_data(codec.build_set(their_address, own_address, keypair, value))

    async def _inbox(self, own_address: str, keypair: Keypair) -> Dict[str, Any]:
        return await self.mailbox.get_data(codec.build_get(own_address, keypair))

    async def _read(self, their_address: str, own_address: str, keypair: Keypair, kind: str) -> Dict[str, Any]:
        """Latest message of ``kind`` the counterparty left for us."""
        entry = (await self._inbox(own_address, keypair)).get(their_address)
        if entry is None:
            raise DataNotFound(f"Data not found for trade partner {their_address[:16]}...")
        value = codec.entry_value(entry)
        if not isinstance(value, dict) or value.get("kind") != kind:
            raise DataNotFound(f"No {kind} message from {their_address[:16]}... yet")
        return value

    async def _discard(self, their_address: str, own_address: str, keypair: Keypair) -> None:
        try:
            await self.mailbox.delete_data(codec.build_delete(own_address, their_address, keypair))
        except TransportError as e:
            logger.warning(f"Could not clear mailbox entry from {their_address[:16]}...: {e}")

    async def _ensure_escrow_key(self, force: bool = False) -> str:
        async with self._escrow_lock:
            if self.escrow_key is None or force:
                self.escrow_key = await self.escrow.get_public_key(self.chain.name)
                await self.store.save_escrow_key(self.escrow_key)
            return self.escrow_key

    # ------------------------------------------------------------------
    # Freshness handshake
    # ------------------------------------------------------------------

    async def send_freshness_test(self, their_address: str, our_keypair: Keypair) -> TradeResponse:
        """Challenge the counterparty to prove it holds the key behind ``their_address``."""
        return await self._run(their_address, our_keypair, self._send_freshness_test, their_address, our_keypair)

    async def _send_freshness_test(self, their_address: str, our_keypair: Keypair) -> TradeResponse:
        record = self.store.get(their_address)
        if record is not None:
            state = "failed" if record.failed else record.status.name
            raise InvalidTransition(f"Trade with {their_address[:16]}... already exists ({state})")
        return await self._issue_challenge(their_address, our_keypair)

    async def _issue_challenge(self, their_address: str, our_keypair: Keypair) -> TradeResponse:
        nonce = secrets.token_hex(16)
        own_address = our_keypair.trade_address
        test = FreshnessTest(subject_public_key=their_address, nonce=nonce)
        await self._post(their_address, own_address, our_keypair, {"kind": FRESH_TEST, **test.to_dict()})

        record = TradeProgress(Status.FRESH_TEST_SENT, self.clock(), own_address, nonce=nonce)
        await self.store.save(their_address, record)
        logger.info(f"Sent fresh test to {their_address[:16]}...")
        return TradeResponse.success("Fresh test sent", nonce=nonce)

    async def sign_freshness_test(self, their_address: str, our_keypair: Keypair,
                                  our_address: Optional[str] = None) -> TradeResponse:
        """Answer the counterparty's challenge.

        Args:
            their_address: Challenger's trade address
            our_keypair: Keypair that must match ``our_address``
            our_address: Trade address we were challenged on, defaults to the keypair's
        """
        return await self._run(
            their_address, our_keypair, self._sign_freshness_test, their_address, our_keypair, our_address,
        )

    async def _sign_freshness_test(self, their_address: str, our_keypair: Keypair,
                                   our_address: Optional[str]) -> TradeResponse:
        record = self.store.get(their_address)
        # A restarted challenge may replace a failed or unanswered one
        if record is not None and not record.failed and record.status != Status.FRESH_TEST_SIGNED:
            raise InvalidTransition(f"Trade with {their_address[:16]}... already at {record.status.name}")

        own_address = our_address or (record.our_address if record is not None else our_keypair.trade_address)
        if own_address != our_keypair.trade_address:
            raise IdentityMismatch("Our address does not match our public key")

        test = FreshnessTest.from_dict(await self._read(their_address, own_address, our_keypair, FRESH_TEST))
        if test.subject_public_key != own_address:
            raise IdentityMismatch("Fresh test was issued for a different key")
        try:
            test.signature = sign_hex(our_keypair.secret_key, test.nonce)
        except ValueError:
            raise ExpectationMismatch("Fresh test challenge is not hex encoded")

        await self._post(their_address, own_address, our_keypair, {"kind": FRESH_TEST, **test.to_dict()})
        await self.store.save(their_address, TradeProgress(Status.FRESH_TEST_SIGNED, self.clock(), own_address))
        logger.info(f"Signed fresh test from {their_address[:16]}...")
        return TradeResponse.success("Fresh test signed")

    async def check_freshness_response(self, their_address: str, our_keypair: Keypair) -> TradeResponse:
        """Verify the counterparty's answer to our challenge within the allowed window."""
        return await self._run(
            their_address, our_keypair, self._check_freshness_response, their_address, our_keypair,
        )

    async def _check_freshness_response(self, their_address: str, our_keypair: Keypair) -> TradeResponse:
        record = self._require(their_address, our_keypair, Status.FRESH_TEST_SENT)

        elapsed = self.clock() - record.last_event
        if elapsed > timedelta(hours=self.config.freshness_timeout_hours):
            raise Timeout("Fresh test response timed out")

        test = FreshnessTest.from_dict(await self._read(their_address, record.our_address, our_keypair, FRESH_TEST))
        if not test.signature:
            raise SignatureInvalid("Fresh test signature not found")
        if test.nonce != record.nonce:
            raise ExpectationMismatch("Fresh test response answers a different challenge")
        if test.subject_public_key != their_address:
            raise IdentityMismatch("Fresh test response was signed for a different key")
        try:
            message = bytes.fromhex(test.nonce)
        except ValueError:
            raise ExpectationMismatch("Fresh test challenge is not hex encoded")
        if not verify_signature(test.signature, message, their_address):
            raise SignatureInvalid("Signature verification failed")

        await self._advance(their_address, record, Status.BOTH_SIGNED, nonce=None)
        return TradeResponse.success("Fresh test signed by other party successfully")

    async def get_escrow_key(self, force: bool = False) -> TradeResponse:
        """Fetch, or return the cached, escrow signer key for our chain."""
        cached = self.escrow_key is not None and not force
        try:
            public_key = await self._ensure_escrow_key(force)
        except TransportError as e:
            logger.error(f"Failed to fetch escrow key: {e}")
            return TradeResponse.error(str(e))
        reason = "Existing escrow key retrieved" if cached else "Escrow key retrieved"
        return TradeResponse.success(reason, public_key=public_key)

    # ------------------------------------------------------------------
    # Escrowed leg
    # ------------------------------------------------------------------

    async def send_stage1(self, their_address: str, our_keypair: Keypair, request: Any) -> TradeResponse:
        """Lock our coins into escrow and hand the transaction to the counterparty."""
        return await self._run(their_address, our_keypair, self._send_stage1, their_address, our_keypair, request)

    async def _send_stage1(self, their_address: str, our_keypair: Keypair, request: Any) -> TradeResponse:
        record = self._require(their_address, our_keypair, Status.BOTH_SIGNED)
        escrow_key = await self._ensure_escrow_key()

        transaction = (await self.chain.build_stage1(request, escrow_key)).unwrap()
        payload = self.chain.encode(transaction)
        await self._post(their_address, record.our_address, our_keypair, {"kind": STAGE1, "transaction": payload})

        artifacts = self.store.artifacts(their_address)
        artifacts.stage1 = transaction
        artifacts.refundable = True
        await self._advance(their_address, record, Status.STAGE1_SENT)
        return TradeResponse.success("Sent first transaction stage", transaction=payload)

    async def get_stage1(self, their_address: str, our_keypair: Keypair, expectations: Any) -> TradeResponse:
        """Fetch and verify the counterparty's escrow lock."""
        return await self._run(
            their_address, our_keypair, self._get_stage1, their_address, our_keypair, expectations,
        )

    async def _get_stage1(self, their_address: str, our_keypair: Keypair, expectations: Any) -> TradeResponse:
        record = self._require(their_address, our_keypair, Status.FRESH_TEST_SIGNED)
        message = await self._read(their_address, record.our_address, our_keypair, STAGE1)

        transaction = self.chain.verify_stage1(message.get("transaction") or {}, expectations).unwrap()
        self.store.artifacts(their_address).stage1 = transaction
        await self._advance(their_address, record, Status.STAGE1_VERIFIED)
        return TradeResponse.success("First transaction stage verified")

    async def send_stage2_partial(self, their_address: str, our_keypair: Keypair, request: Any) -> TradeResponse:
        """Send our claim on the escrowed coins, still missing the escrow signature."""
        return await self._run(
            their_address, our_keypair, self._send_stage2_partial, their_address, our_keypair, request,
        )

    async def _send_stage2_partial(self, their_address: str, our_keypair: Keypair, request: Any) -> TradeResponse:
        record = self._require(their_address, our_keypair, Status.STAGE1_VERIFIED)
        artifacts = self.store.artifacts(their_address)
        if artifacts.stage1 is None:
            raise InvalidTransition("No verified first stage held for this trade")

        transaction = (await self.chain.build_stage2_partial(request, artifacts.stage1)).unwrap()
        payload = self.chain.encode(transaction)
        await self._post(
            their_address, record.our_address, our_keypair, {"kind": STAGE2_PARTIAL, "transaction": payload},
        )

        artifacts.stage2 = transaction
        await self._advance(their_address, record, Status.STAGE2_PARTIAL_SENT)
        return TradeResponse.success("Sent partial second transaction stage", transaction=payload)

    async def get_stage2_partial(self, their_address: str, our_keypair: Keypair, expectations: Any) -> TradeResponse:
        """Fetch the counterparty's claim and check its signature fragment."""
        return await self._run(
            their_address, our_keypair, self._get_stage2_partial, their_address, our_keypair, expectations,
        )

    async def _get_stage2_partial(self, their_address: str, our_keypair: Keypair,
                                  expectations: Any) -> TradeResponse:
        record = self._require(their_address, our_keypair, Status.STAGE1_SENT)
        artifacts = self.store.artifacts(their_address)
        if artifacts.stage1 is None:
            raise InvalidTransition("No first stage held for this trade")

        message = await self._read(their_address, record.our_address, our_keypair, STAGE2_PARTIAL)
        transaction = self.chain.verify_stage2_partial(
            message.get("transaction") or {}, artifacts.stage1, expectations,
        ).unwrap()

        artifacts.stage2 = transaction
        await self._advance(their_address, record, Status.STAGE2_PARTIAL_SENT)
        return TradeResponse.success("Partial second transaction stage verified")

    # ------------------------------------------------------------------
    # Native ledger settlement
    # ------------------------------------------------------------------

    async def send_stage3(self, their_address: str, our_keypair: Keypair, terms: SettlementTerms,
                          correlation_id: Optional[str] = None) -> TradeResponse:
        """Propose the native ledger exchange under a new correlation id."""
        return await self._run(
            their_address, our_keypair, self._send_stage3, their_address, our_keypair, terms, correlation_id,
        )

    async def _send_stage3(self, their_address: str, our_keypair: Keypair, terms: SettlementTerms,
                           correlation_id: Optional[str]) -> TradeResponse:
        record = self._require(their_address, our_keypair, Status.STAGE2_PARTIAL_SENT)

        snapshot = (await self.settlement.fetch_snapshot(terms.addresses)).unwrap()
        commitment = self.settlement.spender_commitment(snapshot, terms).unwrap()
        druid = correlation_id or generate_correlation_id()

        proposal = {
            "kind": STAGE3,
            "druid": druid,
            "senderExpectation": {
                "from": commitment,
                "to": terms.their_payment_address,
                "asset": terms.sends.to_dict(),
            },
            "receiverExpectation": {
                "from": "",
                "to": terms.our_receive_address,
                "asset": terms.receives.to_dict(),
            },
            "status": PENDING,
        }
        await self._post(their_address, record.our_address, our_keypair, proposal)

        artifacts = self.store.artifacts(their_address)
        artifacts.settlement_terms = terms
        artifacts.settlement_snapshot = snapshot
        artifacts.correlation_id = druid
        artifacts.our_commitment = commitment
        await self._advance(their_address, record, Status.STAGE3_SENT)
        return TradeResponse.success("Settlement proposed", druid=druid)

    async def accept_stage3(self, their_address: str, our_keypair: Keypair, correlation_id: str,
                            terms: SettlementTerms) -> TradeResponse:
        """Accept a settlement proposal, submitting our half to the native ledger."""
        return await self._run(
            their_address, our_keypair, self._accept_stage3, their_address, our_keypair, correlation_id, terms,
        )

    async def _find_proposal(self, their_address: str, own_address: str, keypair: Keypair,
                             druid: str, status: str) -> Dict[str, Any]:
        inbox = await self._inbox(own_address, keypair)
        subset = codec.filter_by_predicates(inbox, {"kind": STAGE3, "druid": druid, "status": status}).unwrap()
        sender, entry = codec.unwrap_single(subset).unwrap()
        if sender != their_address:
            raise IdentityMismatch(f"Settlement {druid} was posted by {sender[:16]}..., not our counterparty")
        return codec.entry_value(entry)

    @staticmethod
    def _expectation_matches(expectation: Dict[str, Any], to_address: str, asset: Any) -> bool:
        try:
            offered = asset_from_dict(expectation["asset"])
        except (KeyError, TypeError, ValueError):
            return False
        return expectation.get("to") == to_address and offered == asset

    async def _accept_stage3(self, their_address: str, our_keypair: Keypair, druid: str,
                             terms: SettlementTerms) -> TradeResponse:
        record = self._require(their_address, our_keypair, Status.STAGE2_PARTIAL_SENT)
        proposal = await self._find_proposal(their_address, record.our_address, our_keypair, druid, PENDING)

        sender_expectation = proposal.get("senderExpectation") or {}
        receiver_expectation = proposal.get("receiverExpectation") or {}
        if not self._expectation_matches(sender_expectation, terms.our_receive_address, terms.receives):
            raise ExpectationMismatch("Proposed payment to us does not match our terms")
        if not self._expectation_matches(receiver_expectation, terms.their_payment_address, terms.sends):
            raise ExpectationMismatch("Proposed payment from us does not match our terms")
        their_commitment = sender_expectation.get("from")
        if not their_commitment:
            raise ExpectationMismatch("Proposal carries no spender commitment")

        snapshot = (await self.settlement.fetch_snapshot(terms.addresses)).unwrap()
        our_commitment = self.settlement.spender_commitment(snapshot, terms).unwrap()
        half = self.settlement.build_half(snapshot, terms, their_commitment, druid).unwrap()
        (await self.settlement.submit_half(half)).unwrap()

        acceptance = dict(proposal, status=ACCEPTED)
        acceptance["receiverExpectation"] = dict(receiver_expectation, **{"from": our_commitment})
        await self._post(their_address, record.our_address, our_keypair, acceptance)

        artifacts = self.store.artifacts(their_address)
        artifacts.correlation_id = druid
        artifacts.our_commitment = our_commitment
        await self._advance(their_address, record, Status.STAGE3_SENT)
        return TradeResponse.success("Settlement accepted", druid=druid)

    async def settle_stage3(self, their_address: str, our_keypair: Keypair,
                            terms: Optional[SettlementTerms] = None) -> TradeResponse:
        """Submit our half once the counterparty has accepted our proposal.

        Args:
            their_address: Counterparty trade address
            our_keypair: Our keypair
            terms: Terms of our proposal, only needed after a restart
        """
        return await self._run(
            their_address, our_keypair, self._settle_stage3, their_address, our_keypair, terms,
        )

    async def _settle_stage3(self, their_address: str, our_keypair: Keypair,
                             terms: Optional[SettlementTerms]) -> TradeResponse:
        record = self._require(their_address, our_keypair, Status.STAGE3_SENT)
        artifacts = self.store.artifacts(their_address)
        if artifacts.settlement_terms is None:
            artifacts.settlement_terms = terms
        if artifacts.settlement_terms is None or artifacts.settlement_snapshot is None:
            raise InvalidTransition("No settlement proposal of ours held for this trade")

        druid = artifacts.correlation_id
        acceptance = await self._find_proposal(their_address, record.our_address, our_keypair, druid, ACCEPTED)
        if (acceptance.get("senderExpectation") or {}).get("from") != artifacts.our_commitment:
            raise ExpectationMismatch("Accepted settlement does not match our proposal")
        their_commitment = (acceptance.get("receiverExpectation") or {}).get("from")
        if not their_commitment:
            raise ExpectationMismatch("Acceptance carries no spender commitment")

        half = self.settlement.build_half(
            artifacts.settlement_snapshot, artifacts.settlement_terms, their_commitment, druid,
        ).unwrap()
        (await self.settlement.submit_half(half)).unwrap()

        await self._discard(their_address, record.our_address, our_keypair)
        await self._advance(their_address, record, Status.COMPLETE)
        return TradeResponse.success("Settlement submitted", druid=druid)

    # ------------------------------------------------------------------
    # Claiming the escrowed coins
    # ------------------------------------------------------------------

    async def get_escrow_signature(self, their_address: str, our_keypair: Keypair) -> TradeResponse:
        """Have the escrow signer complete our claim on the escrowed coins."""
        return await self._run(their_address, our_keypair, self._get_escrow_signature, their_address, our_keypair)

    async def _get_escrow_signature(self, their_address: str, our_keypair: Keypair) -> TradeResponse:
        record = self._require(their_address, our_keypair, Status.STAGE3_SENT)
        artifacts = self.store.artifacts(their_address)
        if artifacts.stage2 is None:
            raise InvalidTransition("No second stage built for this trade")

        escrow_key = await self._ensure_escrow_key()
        signatures = []
        for message in self.chain.escrow_messages(artifacts.stage2):
            response = await self.escrow.get_signature(message, escrow_key, self.chain.name)
            if response["public_key"] != escrow_key:
                raise IdentityMismatch("Escrow public key mismatch with signature")
            signatures.append(response["signature"])

        artifacts.stage2 = self.chain.apply_escrow_signatures(artifacts.stage2, escrow_key, signatures).unwrap()
        await self._advance(their_address, record, Status.ESCROW_SIG_AWAITED)
        return TradeResponse.success("Escrow signature received", signatures=signatures)

    async def submit_stage2(self, their_address: str, our_keypair: Keypair) -> TradeResponse:
        """Broadcast our completed claim."""
        return await self._run(their_address, our_keypair, self._submit_stage2, their_address, our_keypair)

    async def _submit_stage2(self, their_address: str, our_keypair: Keypair) -> TradeResponse:
        record = self._require(their_address, our_keypair, Status.ESCROW_SIG_AWAITED)
        artifacts = self.store.artifacts(their_address)

        txid = (await self.chain.submit(artifacts.stage2)).unwrap()
        await self._discard(their_address, record.our_address, our_keypair)
        await self._advance(their_address, record, Status.COMPLETE)
        return TradeResponse.success("Second transaction stage submitted", txid=txid)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def submit_refund(self, their_address: str, our_keypair: Keypair, request: Any) -> TradeResponse:
        """Reclaim our escrowed coins after the locktime and close the trade."""
        return await self._run(
            their_address, our_keypair, self._submit_refund, their_address, our_keypair, request,
        )

    async def _submit_refund(self, their_address: str, our_keypair: Keypair, request: Any) -> TradeResponse:
        record = self.store.get(their_address)
        artifacts = self.store.artifacts(their_address)
        if record is None or not artifacts.refundable:
            raise InvalidTransition("No escrow lock of ours held for this trade")
        if record.status == Status.COMPLETE:
            raise InvalidTransition("Trade is complete; nothing to refund")
        self._check_identity(record, our_keypair)

        refund = (await self.chain.build_refund(request, artifacts.stage1)).unwrap()
        txid = (await self.chain.submit(refund)).unwrap()

        artifacts.refundable = False
        await self.store.save_artifacts(their_address, self.chain.encode)
        await self.store.save(
            their_address,
            replace(record, status=None, last_event=self.clock(), failure_reason=REFUNDED_REASON, nonce=None),
        )
        logger.info(f"Refunded escrow lock for trade with {their_address[:16]}...")
        return TradeResponse.success("Refund submitted", txid=txid)

    async def restart_trade(self, their_address: str, our_keypair: Keypair) -> TradeResponse:
        """Start a failed trade over with a new freshness challenge."""
        return await self._run(their_address, our_keypair, self._restart_trade, their_address, our_keypair)

    async def _restart_trade(self, their_address: str, our_keypair: Keypair) -> TradeResponse:
        record = self.store.get(their_address)
        if record is None or not record.failed:
            raise InvalidTransition("Only failed trades can be restarted")
        await self.store.clear_artifacts(their_address)
        logger.info(f"Restarting trade with {their_address[:16]}... after: {record.failure_reason}")
        return await self._issue_challenge(their_address, our_keypair)
