# migrator/ledger/__init__.py

from .interfaces import LedgerClient
from .dry_run import DryRunLedger
from .web3_ledger import Web3Ledger, load_abi, encode_owner_items, encode_owner_tokens, CALL_SHAPES


def create_ledger(config) -> LedgerClient:
    if config.dry_run:
        return DryRunLedger()
    return Web3Ledger.from_config(config)
