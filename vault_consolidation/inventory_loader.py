"""
Inventory & Plan Loader

Parses the inventory snapshot and the transfer plan into immutable records.
This is the parsing boundary: string booleans ("true"/"false") and numeric
strings are normalised here once, the core never re-parses them.

Column names are resolved case-insensitively by first match against alias
lists, so exports from different tools load without editing.
"""

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pandas as pd
from loguru import logger

from .exceptions import MissingColumnError, MissingInputError


INVENTORY_ALIASES = {
    'vault_id': ['vaultAccountId', 'vault_account_id', 'vaultId', 'vault_id', 'accountId',
                 'account_id', 'id', 'sourceVaultId', 'source_vault_id'],
    'vault_name': ['vaultAccountName', 'vaultName', 'vault_name', 'name'],
    'asset_id': ['assetId', 'asset_id', 'asset', 'id.asset', 'currency', 'token'],
    'available': ['available', 'avail', 'availableBalance', 'available_balance', 'spendable',
                  'spendableBalance'],
    'total': ['total', 'balance', 'bal', 'totalBalance', 'total_balance'],
}

PLAN_ALIASES = {
    'source_vault_id': ['sourceVaultId'],
    'asset_id': ['assetId'],
    'amount': ['amount'],
    'destination_vault_id': ['destinationVaultId'],
    'requires_gas': ['requiresGas'],
    'gas_asset_id': ['gasAssetId'],
    'gas_ready': ['gasReady'],
}


def make_row_id(source_vault_id: str, asset_id: str, destination_vault_id: str) -> str:
    """RowId: 'source|asset|destination'"""
    return f"{source_vault_id}|{asset_id}|{destination_vault_id}"


def to_number(value) -> float:
    """Numeric parse; blanks, garbage and non-finite values become 0"""
    if value is None:
        return 0.0
    text = str(value).strip().strip('"')
    if not text:
        return 0.0
    try:
        number = float(text)
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def parse_bool(value) -> bool:
    """Only a case-insensitive 'true' literal is True"""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() == 'true'


@dataclass(frozen=True)
class InventoryPosition:
    """One nonzero vault/asset balance"""
    vault_id: str
    asset_id: str
    available_amount: float
    total_amount: float
    vault_name: str = ""

    @property
    def balance(self) -> float:
        """Total if positive, else available"""
        return self.total_amount if self.total_amount > 0 else self.available_amount


@dataclass(frozen=True)
class PlanRow:
    """One planned transfer intent"""
    source_vault_id: str
    asset_id: str
    amount: float
    destination_vault_id: str
    requires_gas: bool
    gas_asset_id: str
    gas_ready: bool

    @property
    def row_id(self) -> str:
        return make_row_id(self.source_vault_id, self.asset_id, self.destination_vault_id)

    @property
    def gas_blocked(self) -> bool:
        return self.requires_gas and not self.gas_ready


def resolve_columns(
    header: Sequence[str],
    aliases: Dict[str, List[str]]
) -> Dict[str, Optional[str]]:
    """
    Map logical fields to actual header names

    Args:
        header: Column names as found in the file
        aliases: Logical field -> candidate names, in priority order

    Returns:
        Logical field -> matching header name (None when absent)
    """
    lowered = {}
    for name in header:
        lowered.setdefault(str(name).strip().lower(), name)

    resolved = {}
    for logical, candidates in aliases.items():
        resolved[logical] = None
        for candidate in candidates:
            match = lowered.get(candidate.lower())
            if match is not None:
                resolved[logical] = match
                break
    return resolved


def _read_table(path: Path) -> pd.DataFrame:
    """Read CSV or JSONL as all-string columns"""
    if path.suffix.lower() in ('.jsonl', '.ndjson'):
        records = []
        with open(path, 'r', encoding='utf-8') as f:
            for line in f:
                if line.strip():
                    records.append(json.loads(line))
        df = pd.DataFrame.from_records(records)
        return df.astype(object).where(pd.notna(df), '').astype(str)

    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=True)
    except pd.errors.EmptyDataError:
        return pd.DataFrame()
    df.columns = [str(c).strip() for c in df.columns]
    return df


def load_inventory(path: Path) -> List[InventoryPosition]:
    """
    Load inventory snapshot

    Positions with neither total > 0 nor available > 0 are dropped.

    Args:
        path: inventory CSV (or JSONL)

    Returns:
        List of InventoryPosition in file order

    Raises:
        MissingInputError: file does not exist
        MissingColumnError: vault, asset, or both balance columns missing
    """
    path = Path(path)
    if not path.exists():
        raise MissingInputError(path, "run the inventory refresh first")

    df = _read_table(path)
    header = list(df.columns)
    cols = resolve_columns(header, INVENTORY_ALIASES)

    if cols['vault_id'] is None:
        raise MissingColumnError(path, 'vault_id', header)
    if cols['asset_id'] is None:
        raise MissingColumnError(path, 'asset_id', header)
    if cols['total'] is None and cols['available'] is None:
        raise MissingColumnError(path, 'total/available', header)

    positions = []
    for record in df.to_dict('records'):
        available = to_number(record[cols['available']]) if cols['available'] else 0.0
        total = to_number(record[cols['total']]) if cols['total'] else 0.0
        if not (total > 0 or available > 0):
            continue

        positions.append(InventoryPosition(
            vault_id=str(record[cols['vault_id']]).strip(),
            asset_id=str(record[cols['asset_id']]).strip(),
            available_amount=available,
            total_amount=total,
            vault_name=str(record[cols['vault_name']]).strip() if cols['vault_name'] else "",
        ))

    logger.info(f"📦 Inventory: {len(positions)} nonzero positions from {path.name} ({len(df)} rows)")
    return positions


def load_plan(path: Path) -> List[PlanRow]:
    """
    Load transfer plan

    Args:
        path: plan CSV (or JSONL)

    Returns:
        List of PlanRow in file order

    Raises:
        MissingInputError: file does not exist
        MissingColumnError: any plan column missing
    """
    path = Path(path)
    if not path.exists():
        raise MissingInputError(path, "build the move plan first")

    df = _read_table(path)
    header = list(df.columns)
    cols = resolve_columns(header, PLAN_ALIASES)

    for logical, actual in cols.items():
        if actual is None:
            raise MissingColumnError(path, logical, header)

    rows = []
    for record in df.to_dict('records'):
        rows.append(PlanRow(
            source_vault_id=str(record[cols['source_vault_id']]).strip(),
            asset_id=str(record[cols['asset_id']]).strip(),
            amount=to_number(record[cols['amount']]),
            destination_vault_id=str(record[cols['destination_vault_id']]).strip(),
            requires_gas=parse_bool(record[cols['requires_gas']]),
            gas_asset_id=str(record[cols['gas_asset_id']]).strip(),
            gas_ready=parse_bool(record[cols['gas_ready']]),
        ))

    logger.info(f"📋 Plan: {len(rows)} rows from {path.name}")
    return rows


def vault_names(positions: List[InventoryPosition]) -> Dict[str, str]:
    """First non-empty name seen per vault"""
    names = {}
    for p in positions:
        if p.vault_name and p.vault_id not in names:
            names[p.vault_id] = p.vault_name
    return names


def remaining_scope(rows: List[PlanRow]) -> Tuple[Set[str], Set[str], Set[Tuple[str, str]]]:
    """Vaults, assets and (vault, asset) pairs touched by the given plan rows"""
    vaults = {r.source_vault_id for r in rows}
    assets = {r.asset_id for r in rows}
    pairs = {(r.source_vault_id, r.asset_id) for r in rows}
    return vaults, assets, pairs
