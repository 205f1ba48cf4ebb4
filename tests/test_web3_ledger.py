# tests/test_web3_ledger.py

import json
from unittest.mock import MagicMock

import pytest
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from migrator.core.errors import ConfigError, PermanentLedgerError, TransientLedgerError
from migrator.ledger import Web3Ledger, create_ledger, encode_owner_items, encode_owner_tokens, load_abi
from migrator.ledger.web3_ledger import is_transient_message
from migrator.types import Batch, Entry, LedgerConfig

from conftest import OWNER_A, OWNER_B

CONTRACT = "0x" + "9" * 40
TX = "0x" + "12" * 32


@pytest.fixture
def batch():
    return Batch(index=3, entries=[
        Entry(owner=OWNER_A, asset_id="1", quantity=2),
        Entry(owner=OWNER_B, asset_id="5", quantity=1),
        Entry(owner=OWNER_A, asset_id="7", quantity=1),
    ])


@pytest.fixture
def ledger():
    w3 = MagicMock()
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 10, "gasUsed": 21000}
    ledger = Web3Ledger(w3, CONTRACT, abi=[], function_name="batchMintItems", from_address=OWNER_A)
    ledger._send = MagicMock(return_value=TX)
    return ledger


def test_encode_owner_items_groups_by_owner(batch):
    assert encode_owner_items(batch) == [
        (OWNER_A, [(1, 2), (7, 1)]),
        (OWNER_B, [(5, 1)]),
    ]


def test_encode_owner_tokens_requires_single_units(batch):
    with pytest.raises(ValueError):
        encode_owner_tokens(batch)

    single = Batch(index=0, entries=[Entry(owner=OWNER_A, asset_id="9")])
    assert encode_owner_tokens(single) == [(OWNER_A, [9])]


def test_successful_apply_returns_receipt(ledger, batch):
    receipt = ledger.apply_batch(batch)

    assert receipt.tx_hash == "0x" + "12" * 32
    assert receipt.block_number == 10
    assert receipt.gas_used == 21000
    ledger.contract.functions.batchMintItems.assert_called_once_with(encode_owner_items(batch))


def test_reverted_receipt_is_permanent(ledger, batch):
    ledger.w3.eth.wait_for_transaction_receipt.return_value = {"status": 0}

    with pytest.raises(PermanentLedgerError, match="reverted") as exc_info:
        ledger.apply_batch(batch)
    assert exc_info.value.tx_hash == "0x" + "12" * 32


@pytest.mark.parametrize("error, expected", [
    (ContractLogicError("execution reverted: already minted"), PermanentLedgerError),
    (TimeExhausted("no receipt"), TransientLedgerError),
    (ConnectionError("reset by peer"), TransientLedgerError),
    (ValueError("nonce too low"), TransientLedgerError),
    (ValueError("insufficient funds for gas"), PermanentLedgerError),
])
def test_send_errors_are_classified(ledger, batch, error, expected):
    ledger._send.side_effect = error

    with pytest.raises(expected):
        ledger.apply_batch(batch)


def test_unencodable_batch_is_permanent(batch):
    w3 = MagicMock()
    ledger = Web3Ledger(w3, CONTRACT, abi=[], function_name="batchMint", call_shape="owner_tokens",
                        from_address=OWNER_A)

    with pytest.raises(PermanentLedgerError, match="cannot be encoded"):
        ledger.apply_batch(batch)


def test_sender_is_required():
    with pytest.raises(ConfigError):
        Web3Ledger(MagicMock(), CONTRACT, abi=[], function_name="batchMint")


def test_unknown_call_shape():
    with pytest.raises(ConfigError):
        Web3Ledger(MagicMock(), CONTRACT, abi=[], function_name="batchMint", call_shape="tuples",
                   from_address=OWNER_A)


def test_incomplete_ledger_config():
    with pytest.raises(ConfigError, match="rpc_url"):
        create_ledger(LedgerConfig(function_name="batchMint"))


def test_dry_run_config_needs_no_endpoint():
    assert create_ledger(LedgerConfig(dry_run=True)).describe() == "dry-run"


def test_load_abi_from_artifact(tmp_path):
    abi = [{"type": "function", "name": "batchMintItems", "inputs": [], "outputs": []}]
    artifact = tmp_path / "Facet.json"
    artifact.write_text(json.dumps({"contractName": "Facet", "abi": abi}))

    assert load_abi(artifact) == abi


def test_transient_markers():
    assert is_transient_message("429 Too Many Requests")
    assert not is_transient_message("execution reverted")


@pytest.fixture
def w3():
    """Node-managed account whose first transaction is sent but not yet mined"""
    w3 = MagicMock()
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("not mined")
    w3.eth.get_transaction.return_value = {"nonce": 7}
    transact = w3.eth.contract.return_value.functions.batchMintItems.return_value.transact
    transact.return_value = b"\x12" * 32
    return w3


def sent_nonces(w3):
    transact = w3.eth.contract.return_value.functions.batchMintItems.return_value.transact
    return [call.args[0]["nonce"] for call in transact.call_args_list]


def make_ledger(w3):
    return Web3Ledger(w3, CONTRACT, abi=[], function_name="batchMintItems", from_address=OWNER_A)


def test_receipt_timeout_keeps_the_transaction_handle(w3, batch):
    w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("no receipt")

    with pytest.raises(TransientLedgerError) as exc_info:
        make_ledger(w3).apply_batch(batch)

    assert exc_info.value.tx_hash == TX


def test_retry_waits_for_the_earlier_transaction(w3, batch):
    w3.eth.wait_for_transaction_receipt.side_effect = [
        TimeExhausted("no receipt"),
        {"status": 1, "blockNumber": 11, "gasUsed": 50000},
    ]
    ledger = make_ledger(w3)

    with pytest.raises(TransientLedgerError):
        ledger.apply_batch(batch)
    receipt = ledger.apply_batch(batch, previous_tx=TX)

    assert receipt.tx_hash == TX
    assert receipt.block_number == 11
    assert sent_nonces(w3) == [7]


def test_retry_while_still_pending_sends_nothing(w3, batch):
    w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("no receipt")
    ledger = make_ledger(w3)

    with pytest.raises(TransientLedgerError):
        ledger.apply_batch(batch)
    with pytest.raises(TransientLedgerError, match="still pending") as exc_info:
        ledger.apply_batch(batch, previous_tx=TX)

    assert exc_info.value.tx_hash == TX
    assert sent_nonces(w3) == [7]


def test_dropped_transaction_is_replaced_with_its_nonce(w3, batch):
    counts = {"latest": 7, "pending": 9}
    w3.eth.get_transaction_count.side_effect = lambda address, block: counts[block]
    w3.eth.wait_for_transaction_receipt.side_effect = [TimeExhausted("no receipt"), {"status": 1}]
    ledger = make_ledger(w3)

    with pytest.raises(TransientLedgerError):
        ledger.apply_batch(batch)

    counts["pending"] = 10
    w3.eth.get_transaction.side_effect = TransactionNotFound("dropped")
    ledger.apply_batch(batch, previous_tx=TX)

    assert sent_nonces(w3) == [9, 9]


def test_dropped_transaction_with_consumed_nonce_gets_a_fresh_one(w3, batch):
    counts = {"latest": 7, "pending": 9}
    w3.eth.get_transaction_count.side_effect = lambda address, block: counts[block]
    w3.eth.wait_for_transaction_receipt.side_effect = [TimeExhausted("no receipt"), {"status": 1}]
    ledger = make_ledger(w3)

    with pytest.raises(TransientLedgerError):
        ledger.apply_batch(batch)

    counts.update(latest=10, pending=10)
    w3.eth.get_transaction.side_effect = TransactionNotFound("dropped")
    ledger.apply_batch(batch, previous_tx=TX)

    assert sent_nonces(w3) == [9, 10]


def test_earlier_transaction_reverted_is_permanent(w3, batch):
    w3.eth.get_transaction_receipt.side_effect = None
    w3.eth.get_transaction_receipt.return_value = {"status": 0}

    with pytest.raises(PermanentLedgerError, match="reverted"):
        make_ledger(w3).apply_batch(batch, previous_tx=TX)

    assert sent_nonces(w3) == []


def test_signed_transaction_already_in_pool_is_awaited(w3, batch):
    signed = w3.eth.account.from_key.return_value.sign_transaction.return_value
    w3.eth.account.from_key.return_value.address = OWNER_A
    signed.hash = b"\x34" * 32
    signed.raw_transaction = b"\x02signed"
    w3.eth.send_raw_transaction.side_effect = ValueError("already known")
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1}
    ledger = Web3Ledger(w3, CONTRACT, abi=[], function_name="batchMintItems", private_key="0x" + "ab" * 32)

    receipt = ledger.apply_batch(batch)

    assert receipt.tx_hash == "0x" + "34" * 32
    w3.eth.send_raw_transaction.assert_called_once_with(b"\x02signed")


def test_signed_send_connection_error_keeps_the_hash(w3, batch):
    signed = w3.eth.account.from_key.return_value.sign_transaction.return_value
    w3.eth.account.from_key.return_value.address = OWNER_A
    signed.hash = b"\x34" * 32
    signed.raw_transaction = b"\x02signed"
    w3.eth.send_raw_transaction.side_effect = ConnectionError("reset by peer")
    ledger = Web3Ledger(w3, CONTRACT, abi=[], function_name="batchMintItems", private_key="0x" + "ab" * 32)

    with pytest.raises(TransientLedgerError) as exc_info:
        ledger.apply_batch(batch)

    assert exc_info.value.tx_hash == "0x" + "34" * 32
