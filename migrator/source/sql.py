# migrator/source/sql.py

from typing import Any, Dict, Optional, Union
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..core.errors import SnapshotError
from ..core.logging import MigratorLogger, log_with_context
from ..types import EntrySet
from .snapshot import normalize_owner, normalize_asset_id, normalize_quantity


DEFAULT_BALANCE_QUERY = """
    SELECT owner, asset_id, quantity
    FROM balances
    ORDER BY owner, asset_id
"""

logger = MigratorLogger.get_logger('source.sql')


def load_sql_snapshot(
    engine_or_url: Union[Engine, str],
    query: str = DEFAULT_BALANCE_QUERY,
    params: Optional[Dict[str, Any]] = None,
) -> EntrySet:
    """
    Build an EntrySet from rows of (owner, asset_id, quantity).

    The query must return those three columns by name. Rows for the same
    (owner, asset_id) are summed like duplicate snapshot entries.
    """
    engine = create_engine(engine_or_url) if isinstance(engine_or_url, str) else engine_or_url
    source = engine.url.render_as_string(hide_password=True)

    try:
        with engine.connect() as conn:
            rows = [dict(row._mapping) for row in conn.execute(text(query), params or {})]
    except SQLAlchemyError as e:
        raise SnapshotError(f"Snapshot query failed: {e}", source) from e

    entries = EntrySet()
    for row in rows:
        missing = {"owner", "asset_id", "quantity"} - set(row)
        if missing:
            raise SnapshotError(f"Snapshot query is missing columns: {sorted(missing)}", source)
        owner = normalize_owner(row["owner"], source)
        asset_id = normalize_asset_id(row["asset_id"], source, owner)
        entries.add(owner, asset_id, normalize_quantity(row["quantity"], source, owner, asset_id))

    log_with_context(logger, logging.INFO, "SQL entry source loaded",
                     rows=len(rows),
                     owners=entries.owner_count,
                     entries=entries.total_entries)
    return entries
