"""Tests for escrow account creation and release."""

from decimal import Decimal

import pytest
from stellar_sdk import Keypair
from stellar_sdk.operation import AccountMerge, CreateAccount, Payment

from eventpay.cipher import decrypt
from eventpay.config import EventPayConfig
from eventpay.escrow import (
    EscrowAccount,
    EscrowError,
    EscrowFundingError,
    EscrowManager,
    FundingNotConfiguredError,
    InvalidSecretError,
)
from eventpay.ledger.client import LedgerNotFoundError, LedgerRejectedError, LedgerUnavailableError

from conftest import HORIZON_URL, USDC_ISSUER, credit_line, native_line

ENCRYPTION_KEY = "escrow-test-key"


@pytest.fixture
def manager(ledger, config):
    return EscrowManager(ledger, config)


@pytest.fixture
def escrow_keys():
    return Keypair.random()


@pytest.fixture
def organizer():
    return Keypair.random().public_key


class TestGenerateKeypair:
    def test_keypairs_are_valid_and_distinct(self, manager):
        first = manager.generate_keypair()
        second = manager.generate_keypair()

        assert first.public_key != second.public_key
        assert Keypair.from_secret(first.secret).public_key == first.public_key

    def test_secret_hidden_from_repr(self, manager):
        keypair = manager.generate_keypair()
        assert keypair.secret not in repr(keypair)


class TestFundAccount:
    """Tests for creating escrow accounts on-ledger."""

    def test_single_create_account_operation(self, manager, horizon):
        funder = Keypair.random()
        horizon.add_account(funder.public_key, [native_line("1000.0000000")], sequence=500)
        new_account = Keypair.random().public_key

        result = manager.fund_account(funder.secret, new_account, "2")

        ops = horizon.submitted_operations()
        assert len(ops) == 1
        assert isinstance(ops[0], CreateAccount)
        assert ops[0].destination == new_account
        assert Decimal(ops[0].starting_balance) == Decimal("2")

        envelope = horizon.submitted_envelope()
        assert envelope.transaction.source.account_id == funder.public_key
        assert envelope.transaction.sequence == 501
        assert result.hash == envelope.hash_hex()

    def test_signed_by_funder(self, manager, horizon):
        funder = Keypair.random()
        horizon.add_account(funder.public_key, [native_line("10")])

        manager.fund_account(funder.secret, Keypair.random().public_key)

        envelope = horizon.submitted_envelope()
        assert len(envelope.signatures) == 1
        funder.verify(envelope.hash(), envelope.signatures[0].signature)

    def test_invalid_funder_secret(self, manager, horizon):
        with pytest.raises(InvalidSecretError):
            manager.fund_account("SNOTASECRET", Keypair.random().public_key)
        assert horizon.submitted == []

    def test_unknown_funder(self, manager, horizon):
        with pytest.raises(LedgerNotFoundError):
            manager.fund_account(Keypair.random().secret, Keypair.random().public_key)
        assert horizon.submitted == []

    def test_rejection_propagates(self, manager, horizon):
        funder = Keypair.random()
        horizon.add_account(funder.public_key, [native_line("1")])
        horizon.submit_status = 400
        horizon.submit_body = {
            "extras": {"result_codes": {"transaction": "tx_failed", "operations": ["op_underfunded"]}}
        }

        with pytest.raises(LedgerRejectedError):
            manager.fund_account(funder.secret, Keypair.random().public_key)


class TestReleaseFunds:
    """Tests for sweeping an escrow account to the organizer."""

    def test_credit_payment_then_merge(self, manager, horizon, escrow_keys, organizer):
        horizon.add_account(
            escrow_keys.public_key,
            [native_line("100.0000000"), credit_line("USDC", USDC_ISSUER, "250.0000000")],
        )

        manager.release_funds(escrow_keys.secret, organizer)

        ops = horizon.submitted_operations()
        assert len(ops) == 2

        assert isinstance(ops[0], Payment)
        assert ops[0].destination.account_id == organizer
        assert ops[0].asset.code == "USDC"
        assert ops[0].asset.issuer == USDC_ISSUER
        assert Decimal(ops[0].amount) == Decimal("250")

        assert isinstance(ops[1], AccountMerge)
        assert ops[1].destination.account_id == organizer

    def test_native_only_is_single_merge(self, manager, horizon, escrow_keys, organizer):
        horizon.add_account(escrow_keys.public_key, [native_line("42.5000000")])

        manager.release_funds(escrow_keys.secret, organizer)

        ops = horizon.submitted_operations()
        assert len(ops) == 1
        assert isinstance(ops[0], AccountMerge)

    def test_zero_balances_skipped(self, manager, horizon, escrow_keys, organizer):
        eurc_issuer = Keypair.random().public_key
        horizon.add_account(
            escrow_keys.public_key,
            [
                credit_line("USDC", USDC_ISSUER, "0.0000000"),
                credit_line("EURC", eurc_issuer, "10.5000000"),
                native_line("5.0000000"),
            ],
        )

        manager.release_funds(escrow_keys.secret, organizer)

        ops = horizon.submitted_operations()
        assert [type(op) for op in ops] == [Payment, AccountMerge]
        assert ops[0].asset.code == "EURC"
        assert Decimal(ops[0].amount) == Decimal("10.5")

    def test_multiple_credit_assets_keep_ledger_order(self, manager, horizon, escrow_keys, organizer):
        eurc_issuer = Keypair.random().public_key
        horizon.add_account(
            escrow_keys.public_key,
            [
                credit_line("EURC", eurc_issuer, "1.0000000"),
                credit_line("USDC", USDC_ISSUER, "2.0000000"),
                native_line("5.0000000"),
            ],
        )

        manager.release_funds(escrow_keys.secret, organizer)

        ops = horizon.submitted_operations()
        assert [op.asset.code for op in ops[:2]] == ["EURC", "USDC"]
        assert isinstance(ops[-1], AccountMerge)

    def test_signed_by_escrow_with_its_sequence(self, manager, horizon, escrow_keys, organizer):
        horizon.add_account(escrow_keys.public_key, [native_line("3")], sequence=9000)

        result = manager.release_funds(escrow_keys.secret, organizer)

        envelope = horizon.submitted_envelope()
        assert envelope.transaction.source.account_id == escrow_keys.public_key
        assert envelope.transaction.sequence == 9001
        escrow_keys.verify(envelope.hash(), envelope.signatures[0].signature)
        assert result.hash == envelope.hash_hex()

    def test_missing_escrow_account(self, manager, horizon, escrow_keys, organizer):
        with pytest.raises(LedgerNotFoundError):
            manager.release_funds(escrow_keys.secret, organizer)
        assert horizon.submitted == []

    def test_invalid_secret(self, manager, organizer):
        with pytest.raises(InvalidSecretError):
            manager.release_funds("", organizer)


class TestBalancesAndPayments:
    def test_native_balance(self, manager, horizon):
        account = Keypair.random().public_key
        horizon.add_account(account, [credit_line("USDC", USDC_ISSUER, "9"), native_line("12.3400000")])

        assert manager.get_native_balance(account) == "12.3400000"

    def test_native_balance_absent(self, manager, horizon):
        account = Keypair.random().public_key
        horizon.add_account(account, [credit_line("USDC", USDC_ISSUER, "9")])

        assert manager.get_native_balance(account) == "0"

    def test_send_native_payment(self, manager, horizon, escrow_keys, organizer):
        horizon.add_account(escrow_keys.public_key, [native_line("50")])

        manager.send_payment(escrow_keys.secret, organizer, "7.5")

        (op,) = horizon.submitted_operations()
        assert isinstance(op, Payment)
        assert op.asset.is_native()
        assert Decimal(op.amount) == Decimal("7.5")

    def test_send_credit_payment(self, manager, horizon, escrow_keys, organizer):
        horizon.add_account(escrow_keys.public_key, [native_line("50")])

        manager.send_payment(escrow_keys.secret, organizer, "3", asset_code="USDC", asset_issuer=USDC_ISSUER)

        (op,) = horizon.submitted_operations()
        assert op.asset.code == "USDC"
        assert op.asset.issuer == USDC_ISSUER

    def test_credit_payment_requires_issuer(self, manager, escrow_keys, organizer):
        with pytest.raises(EscrowError, match="asset_issuer"):
            manager.send_payment(escrow_keys.secret, organizer, "3", asset_code="USDC")


class TestEncryptedLifecycle:
    """Tests for the create/release flow with encrypted secrets."""

    def test_create_then_release(self, ledger, horizon, organizer):
        funder = Keypair.random()
        horizon.add_account(funder.public_key, [native_line("1000")])
        config = EventPayConfig(horizon_url=HORIZON_URL, funding_secret=funder.secret)
        manager = EscrowManager(ledger, config)

        account = manager.create_escrow_account(ENCRYPTION_KEY)

        assert account.funded is True
        assert account.funding_tx_hash == horizon.submitted_envelope().hash_hex()
        secret = decrypt(account.encrypted_secret, ENCRYPTION_KEY)
        assert Keypair.from_secret(secret).public_key == account.public_key
        assert secret not in repr(account)

        (create_op,) = horizon.submitted_operations()
        assert create_op.destination == account.public_key

        horizon.add_account(account.public_key, [native_line("2")])
        manager.release_escrow_account(account, ENCRYPTION_KEY, organizer)

        (merge_op,) = horizon.submitted_operations()
        assert isinstance(merge_op, AccountMerge)
        assert horizon.submitted_envelope().transaction.source.account_id == account.public_key

    def test_create_without_funding_secret(self, manager, horizon):
        with pytest.raises(FundingNotConfiguredError):
            manager.create_escrow_account(ENCRYPTION_KEY)
        assert horizon.submitted == []

    def test_release_with_wrong_key(self, manager, horizon, organizer):
        from eventpay.cipher import AuthenticationError, encrypt

        keys = Keypair.random()
        account = EscrowAccount(public_key=keys.public_key, encrypted_secret=encrypt(keys.secret, "right"))

        with pytest.raises(AuthenticationError):
            manager.release_escrow_account(account, "wrong", organizer)
        assert horizon.submitted == []


class TestFundingFailures:
    """The encrypted account survives a failed or ambiguous funding."""

    @pytest.fixture
    def funded_manager(self, ledger, horizon):
        funder = Keypair.random()
        horizon.add_account(funder.public_key, [native_line("1000")])
        return EscrowManager(ledger, EventPayConfig(horizon_url=HORIZON_URL, funding_secret=funder.secret))

    def test_gateway_timeout_returns_account_on_error(self, funded_manager, horizon):
        horizon.submit_status = 504
        horizon.submit_body = {"title": "Timeout"}

        with pytest.raises(EscrowFundingError) as exc_info:
            funded_manager.create_escrow_account(ENCRYPTION_KEY)

        error = exc_info.value
        submitted = horizon.submitted_envelope()
        assert error.outcome_unknown is True
        assert error.tx_hash == submitted.hash_hex()
        assert isinstance(error.__cause__, LedgerUnavailableError)

        account = error.account
        assert account.funded is False
        assert account.funding_tx_hash == submitted.hash_hex()
        (create_op,) = horizon.submitted_operations()
        assert create_op.destination == account.public_key
        secret = decrypt(account.encrypted_secret, ENCRYPTION_KEY)
        assert Keypair.from_secret(secret).public_key == account.public_key

    def test_rejected_funding_is_not_ambiguous(self, funded_manager, horizon):
        horizon.submit_status = 400
        horizon.submit_body = {
            "extras": {"result_codes": {"transaction": "tx_failed", "operations": ["op_underfunded"]}}
        }

        with pytest.raises(EscrowFundingError) as exc_info:
            funded_manager.create_escrow_account(ENCRYPTION_KEY)

        assert exc_info.value.outcome_unknown is False
        assert exc_info.value.tx_hash is None
        assert isinstance(exc_info.value.__cause__, LedgerRejectedError)
        assert exc_info.value.account.funded is False

    def test_funding_error_is_escrow_error(self):
        assert issubclass(EscrowFundingError, EscrowError)
