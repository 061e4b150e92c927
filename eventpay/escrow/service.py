"""
Escrow account management.

Each event gets a dedicated ledger account that holds buyer payments until
payout. This module creates those accounts and sweeps them:

- generate_keypair: fresh random keypair (secret returned, never stored)
- fund_account: create the account on-ledger from a funding account
- release_funds: move every asset to the organizer and merge the account

Secrets are the caller's responsibility: pass them through
``eventpay.cipher`` before persisting. Nothing here stores state, and no
submission is retried; an ambiguous submission must be resolved by
looking the transaction hash up on the ledger.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from stellar_sdk import Account, Asset, Keypair, TransactionBuilder, TransactionEnvelope
from stellar_sdk.exceptions import Ed25519SecretSeedInvalidError

from eventpay.cipher import decrypt, encrypt
from eventpay.config import EventPayConfig
from eventpay.ledger.client import LedgerClient, LedgerError, LedgerUnavailableError
from eventpay.ledger.models import AccountState, CreditAsset, SubmitResult

logger = logging.getLogger(__name__)

DEFAULT_STARTING_BALANCE = "2"


class EscrowError(Exception):
    """Base exception for escrow errors."""

    pass


class InvalidSecretError(EscrowError):
    """A secret seed could not be parsed."""

    pass


class FundingNotConfiguredError(EscrowError):
    """No platform funding account secret is configured."""

    pass


class EscrowFundingError(EscrowError):
    """Funding a freshly generated escrow account did not complete.

    ``account`` holds the only copy of the encrypted secret. When
    ``outcome_unknown`` is set the create-account transaction may still have
    applied: look ``tx_hash`` up on the ledger before discarding ``account``.
    """

    def __init__(
        self,
        message: str,
        account: "EscrowAccount",
        tx_hash: Optional[str] = None,
        outcome_unknown: bool = False,
    ):
        super().__init__(message)
        self.account = account
        self.tx_hash = tx_hash
        self.outcome_unknown = outcome_unknown


@dataclass
class EscrowKeypair:
    """A freshly generated escrow keypair.

    ``secret`` is transient: encrypt it before it leaves the caller.
    """

    public_key: str
    secret: str = field(repr=False)


@dataclass
class EscrowAccount:
    """An escrow account as the caller persists it."""

    public_key: str
    encrypted_secret: str = field(repr=False)
    funded: bool = False
    funding_tx_hash: Optional[str] = None


def _keypair_from_secret(secret: str) -> Keypair:
    try:
        return Keypair.from_secret(secret)
    except (Ed25519SecretSeedInvalidError, ValueError) as e:
        raise InvalidSecretError("Invalid secret seed") from e


class EscrowManager:
    """Builds, signs and submits escrow transactions."""

    def __init__(self, ledger: LedgerClient, config: EventPayConfig):
        self.ledger = ledger
        self.config = config

    # =========================================================================
    # Helpers
    # =========================================================================

    def _builder(self, state: AccountState) -> TransactionBuilder:
        source = Account(state.account_id, state.sequence)
        return TransactionBuilder(
            source_account=source,
            network_passphrase=self.config.network_passphrase,
            base_fee=self.config.base_fee,
        )

    def _sign_and_submit(self, builder: TransactionBuilder, signer: Keypair) -> SubmitResult:
        envelope: TransactionEnvelope = builder.set_timeout(self.config.tx_timeout_seconds).build()
        envelope.sign(signer)
        return self.ledger.submit_transaction(envelope)

    # =========================================================================
    # Keypairs and funding
    # =========================================================================

    def generate_keypair(self) -> EscrowKeypair:
        """Generate a new random keypair for an escrow account."""
        keypair = Keypair.random()
        logger.info(f"Generated escrow keypair {keypair.public_key}")
        return EscrowKeypair(public_key=keypair.public_key, secret=keypair.secret)

    def fund_account(
        self,
        funder_secret: str,
        new_public_key: str,
        starting_balance: str = DEFAULT_STARTING_BALANCE,
    ) -> SubmitResult:
        """Create ``new_public_key`` on-ledger, seeded by the funder.

        Args:
            funder_secret: Secret of the account paying the starting balance
            new_public_key: Account to create
            starting_balance: Native amount to seed

        Returns:
            The ledger's submission response, unmodified
        """
        funder = _keypair_from_secret(funder_secret)
        state = self.ledger.load_account(funder.public_key)

        builder = self._builder(state).append_create_account_op(
            destination=new_public_key,
            starting_balance=starting_balance,
        )
        result = self._sign_and_submit(builder, funder)
        logger.info(f"Funded escrow {new_public_key} with {starting_balance} (tx={result.hash})")
        return result

    # =========================================================================
    # Release
    # =========================================================================

    def release_funds(self, escrow_secret: str, destination: str) -> SubmitResult:
        """Sweep every balance of the escrow account to ``destination``.

        One payment per non-native balance above zero, in the order the
        ledger listed them, then a single account merge. All operations go
        in one transaction so the sweep is all-or-nothing; the merge must
        be last or it would close the account before the other assets move.
        """
        escrow = _keypair_from_secret(escrow_secret)
        state = self.ledger.load_account(escrow.public_key)
        builder = self._builder(state)

        swept: List[str] = []
        for balance in state.balances:
            if balance.is_native or balance.value <= Decimal("0"):
                continue
            asset: CreditAsset = balance.asset  # type: ignore[assignment]
            builder.append_payment_op(
                destination=destination,
                asset=Asset(asset.code, asset.issuer),
                amount=balance.amount,
            )
            swept.append(f"{balance.amount} {asset.code}")

        builder.append_account_merge_op(destination=destination)

        result = self._sign_and_submit(builder, escrow)
        logger.info(
            f"Released escrow {escrow.public_key} to {destination} "
            f"(assets=[{', '.join(swept)}], tx={result.hash})"
        )
        return result

    def get_native_balance(self, public_key: str) -> str:
        """Native balance of an account, or "0" if it has no native line."""
        balance = self.ledger.load_account(public_key).native_balance()
        return balance.amount if balance else "0"

    def send_payment(
        self,
        escrow_secret: str,
        destination: str,
        amount: str,
        asset_code: str = "XLM",
        asset_issuer: Optional[str] = None,
    ) -> SubmitResult:
        """Send a single payment out of an escrow account (e.g. a refund)."""
        source = _keypair_from_secret(escrow_secret)
        if asset_code.upper() == self.config.native_asset_code.upper():
            asset = Asset.native()
        else:
            if not asset_issuer:
                raise EscrowError(f"asset_issuer is required for {asset_code}")
            asset = Asset(asset_code, asset_issuer)

        state = self.ledger.load_account(source.public_key)
        builder = self._builder(state).append_payment_op(
            destination=destination,
            asset=asset,
            amount=amount,
        )
        result = self._sign_and_submit(builder, source)
        logger.info(f"Sent {amount} {asset_code} from {source.public_key} to {destination}")
        return result

    # =========================================================================
    # Encrypted lifecycle
    # =========================================================================

    def create_escrow_account(
        self,
        encryption_key: str,
        starting_balance: str = DEFAULT_STARTING_BALANCE,
    ) -> EscrowAccount:
        """Generate, encrypt and fund a new escrow account.

        The plaintext secret never leaves this call.

        Raises:
            FundingNotConfiguredError: No funding account secret configured
            EscrowFundingError: Funding failed or its outcome is unknown; the
                encrypted account travels on the error
        """
        if not self.config.funding_secret:
            raise FundingNotConfiguredError("No funding account secret configured")

        keypair = self.generate_keypair()
        account = EscrowAccount(
            public_key=keypair.public_key,
            encrypted_secret=encrypt(keypair.secret, encryption_key),
        )
        del keypair

        try:
            result = self.fund_account(self.config.funding_secret, account.public_key, starting_balance)
        except LedgerError as e:
            outcome_unknown = isinstance(e, LedgerUnavailableError)
            tx_hash = e.tx_hash if outcome_unknown else None
            account.funding_tx_hash = tx_hash
            logger.error(
                f"Funding escrow {account.public_key} failed "
                f"(outcome_unknown={outcome_unknown}, tx={tx_hash}): {e}"
            )
            raise EscrowFundingError(
                f"Funding escrow {account.public_key} failed: {e}",
                account=account,
                tx_hash=tx_hash,
                outcome_unknown=outcome_unknown,
            ) from e

        account.funded = True
        account.funding_tx_hash = result.hash
        return account

    def release_escrow_account(
        self,
        account: EscrowAccount,
        encryption_key: str,
        destination: str,
    ) -> SubmitResult:
        """Decrypt the escrow secret just long enough to sign the sweep."""
        secret = decrypt(account.encrypted_secret, encryption_key)
        try:
            return self.release_funds(secret, destination)
        finally:
            del secret
