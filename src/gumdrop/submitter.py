"""
gumdrop/submitter.py

Signs, submits and confirms an instruction list against the ledger.

Each attempt:
1. Fetch a fresh recent blockhash at the configured commitment
2. Build and sign a new transaction against it
3. Submit
4. Poll signature status at the same commitment until confirmed, or until
   the block height passes the blockhash's last valid height

Expired blockhashes and transient submission errors are retried up to the
policy bound. A signed payload is never resubmitted: every attempt builds
a new transaction. A transient send error does not prove the transaction
was dropped, so its signature is still polled and the attempt only counts
as failed once its blockhash has expired.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from solana.rpc.commitment import Commitment, Confirmed
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.transaction import Transaction

from .config import CONFIRMATION_POLL_INTERVAL, CONFIRMATION_TIMEOUT
from .errors import CheckpointExpired, TransactionError
from .ledger.client import CheckpointReference, LedgerClient
from .retry import RetryPolicy

logger = logging.getLogger("gumdrop.submitter")


@dataclass(frozen=True)
class TransactionOutcome:
    """Either a confirmed transaction or a terminal failure reason."""
    confirmed: bool
    txid: Optional[str] = None
    slot: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 0

    @classmethod
    def success(cls, txid: str, slot: int, attempts: int) -> "TransactionOutcome":
        return cls(confirmed=True, txid=txid, slot=slot, attempts=attempts)

    @classmethod
    def failure(cls, error: str, attempts: int) -> "TransactionOutcome":
        return cls(confirmed=False, error=error, attempts=attempts)

    def to_dict(self) -> dict:
        return {
            "confirmed": self.confirmed,
            "txid": self.txid,
            "slot": self.slot,
            "error": self.error,
            "attempts": self.attempts,
        }


class TransactionSubmitter:
    """
    Submits instruction lists with bounded retry.

    The retry loop here is the only place that owns a bounded-attempt
    policy; exhausting it returns a failed outcome rather than raising.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        policy: Optional[RetryPolicy] = None,
        commitment: Commitment = Confirmed,
        confirmation_timeout: float = CONFIRMATION_TIMEOUT,
        poll_interval: float = CONFIRMATION_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize submitter.

        Args:
            ledger: Ledger to submit to
            policy: Retry policy (default 3 attempts)
            commitment: Commitment for blockhash fetch and confirmation
            confirmation_timeout: Hard cap on polling one attempt, seconds
            poll_interval: Seconds between status polls
            sleep: Sleep function used while polling
            clock: Monotonic clock used for the polling cap
        """
        self.ledger = ledger
        self.policy = policy or RetryPolicy()
        self.commitment = commitment
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def submit(
        self,
        instructions: Sequence[Instruction],
        payer: Keypair,
        signers: Sequence[Keypair] = (),
    ) -> TransactionOutcome:
        """
        Sign, submit and confirm instructions.

        Args:
            instructions: Ordered instructions
            payer: Fee payer, always the first signer
            signers: Additional required signers

        Returns:
            TransactionOutcome, confirmed or terminal failure
        """
        last_error = "no attempts made"

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                txid, slot = self._attempt(instructions, payer, signers)
            except TransactionError as e:
                last_error = str(e)
                if not e.transient:
                    logger.error(f"Transaction failed permanently on attempt {attempt}: {e}")
                    return TransactionOutcome.failure(last_error, attempt)

                logger.warning(
                    f"Transaction attempt {attempt}/{self.policy.max_attempts} failed: {e}"
                )
                if self.policy.has_next(attempt):
                    self.policy.backoff(attempt)
                continue

            logger.info(f"Transaction {txid} confirmed in slot {slot} (attempt {attempt})")
            return TransactionOutcome.success(txid, slot, attempt)

        return TransactionOutcome.failure(
            f"Gave up after {self.policy.max_attempts} attempts: {last_error}",
            self.policy.max_attempts,
        )

    def _attempt(
        self,
        instructions: Sequence[Instruction],
        payer: Keypair,
        signers: Sequence[Keypair],
    ) -> Tuple[str, int]:
        reference = self.ledger.fetch_checkpoint_reference(self.commitment)
        tx = build_transaction(instructions, payer, signers, reference.blockhash)
        signature = str(tx.signatures[0])
        try:
            self.ledger.submit_signed_transaction(tx)
        except TransactionError as e:
            if not e.transient or isinstance(e, CheckpointExpired):
                raise
            # The node may have accepted it anyway; only its expiry proves otherwise
            logger.warning(
                f"Send of {signature} failed ({e}), watching it until "
                f"block height {reference.last_valid_block_height}"
            )
        else:
            logger.debug(f"Submitted {signature} against blockhash {reference.blockhash}")
        return self._await_confirmation(signature, reference)

    def _await_confirmation(
        self,
        signature: str,
        reference: CheckpointReference,
    ) -> Tuple[str, int]:
        deadline = self._clock() + self.confirmation_timeout

        while True:
            try:
                status = self.ledger.get_signature_status(signature, self.commitment)
                if status is not None:
                    if status.err:
                        raise TransactionError(f"Transaction {signature} failed: {status.err}")
                    if status.confirmed:
                        return signature, status.slot

                height = self.ledger.get_block_height(self.commitment)
                if height > reference.last_valid_block_height:
                    raise CheckpointExpired(
                        f"Blockhash {reference.blockhash} expired at height {height} "
                        f"before {signature} confirmed"
                    )
            except TransactionError as e:
                if not e.transient or isinstance(e, CheckpointExpired):
                    raise
                logger.debug(f"Status poll for {signature} failed: {e}")

            if self._clock() >= deadline:
                # The signature may still land, so this attempt is not retried
                raise TransactionError(
                    f"Transaction {signature} not confirmed within {self.confirmation_timeout}s"
                )
            self._sleep(self.poll_interval)


def build_transaction(
    instructions: Sequence[Instruction],
    payer: Keypair,
    signers: Sequence[Keypair],
    blockhash: Hash,
) -> Transaction:
    """Build and fully sign a transaction; the payer signs first."""
    message = Message.new_with_blockhash(list(instructions), payer.pubkey(), blockhash)
    keypairs: List[Keypair] = [payer, *signers]
    return Transaction(keypairs, message, blockhash)
