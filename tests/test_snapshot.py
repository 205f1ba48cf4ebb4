# tests/test_snapshot.py

import pytest

from migrator.core.errors import SnapshotError
from migrator.source import load_snapshot, load_snapshots, normalize_owner, parse_snapshot

from conftest import OWNER_A, OWNER_B, OWNER_C


def test_owner_map_with_balances():
    entries = parse_snapshot({
        OWNER_A: [{"tokenId": "1", "balance": 5}, {"tokenId": 2, "balance": 3}],
        OWNER_B: [{"itemId": "3", "quantity": "1"}],
    })

    assert entries.owners() == [OWNER_A, OWNER_B]
    assert entries.requested(OWNER_A, "1") == 5
    assert entries.requested(OWNER_A, "2") == 3
    assert entries.requested(OWNER_B, "3") == 1
    assert entries.total_quantity == 9


def test_owner_map_with_identity_assets():
    entries = parse_snapshot({OWNER_A: ["10", "11", 12]})

    assert entries.assets_for(OWNER_A) == {"10": 1, "11": 1, "12": 1}


def test_owner_record_list():
    entries = parse_snapshot([
        {"safeAddress": OWNER_A, "tokenIds": ["7", "8"]},
        {"safeAddress": OWNER_B, "tokens": [{"tokenId": "9", "balance": 2}]},
    ])

    assert entries.assets_for(OWNER_A) == {"7": 1, "8": 1}
    assert entries.assets_for(OWNER_B) == {"9": 2}


def test_single_destination_list_uses_default_owner():
    entries = parse_snapshot([{"itemId": "1", "balance": 4}, {"itemId": "2", "balance": 1}],
                             default_owner=OWNER_C)

    assert entries.owners() == [OWNER_C]
    assert entries.assets_for(OWNER_C) == {"1": 4, "2": 1}


def test_single_destination_list_requires_default_owner():
    with pytest.raises(SnapshotError, match="default owner"):
        parse_snapshot([{"itemId": "1", "balance": 4}])


def test_hex_owners_are_checksummed():
    lower = "0xd8da6bf26964af9d7eed9e03e53415d37aa96045"
    entries = parse_snapshot({lower: ["1"], lower.upper().replace("0X", "0x"): ["2"]})

    assert entries.owners() == ["0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"]
    assert entries.total_entries == 2


def test_non_address_owner_keys_pass_through():
    assert normalize_owner("  treasury ") == "treasury"


def test_duplicate_entries_are_summed_across_files(write_snapshot):
    first = write_snapshot({OWNER_A: [{"tokenId": "1", "balance": 2}]})
    second = write_snapshot({OWNER_A: [{"tokenId": "1", "balance": 3}], OWNER_B: ["4"]})

    entries = load_snapshots([first, second])

    assert entries.requested(OWNER_A, "1") == 5
    assert entries.requested(OWNER_B, "4") == 1
    assert entries.owner_count == 2


@pytest.mark.parametrize("holding", [
    {"tokenId": "1", "balance": 0},
    {"tokenId": "1", "balance": -2},
    {"tokenId": "1", "balance": True},
    {"tokenId": "1", "balance": 1.5},
    {"balance": 1},
])
def test_invalid_holdings_are_rejected(holding):
    with pytest.raises(SnapshotError):
        parse_snapshot({OWNER_A: [holding]})


def test_holdings_must_be_a_list():
    with pytest.raises(SnapshotError, match="must be a list"):
        parse_snapshot({OWNER_A: {"tokenId": "1"}})


def test_missing_file(tmp_path):
    with pytest.raises(SnapshotError, match="not found"):
        load_snapshot(tmp_path / "nope.json")


def test_malformed_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text('{"0x11": [')

    with pytest.raises(SnapshotError, match="Malformed JSON") as exc_info:
        load_snapshot(path)
    assert str(path) in str(exc_info.value)


def test_no_snapshots_configured():
    with pytest.raises(SnapshotError):
        load_snapshots([])
