"""
Completion Ledger

Append-only text ledgers of completed transfer rows, one RowId per line.

Several ledgers can coexist in the execute directory (completed_ready.txt,
completed_all.txt, completed_move_plan.txt, ...). The completed set is the
union of every file matching the naming convention. Lines are never rewritten:
completion only grows.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Iterable, List, Union

from loguru import logger

from .exceptions import MissingInputError


DEFAULT_LEDGER_PATTERN = r'^completed.*\.txt$'


@dataclass(frozen=True)
class CompletedSet:
    """Union of all ledger RowIds plus the files they came from"""
    row_ids: FrozenSet[str] = frozenset()
    files: List[str] = field(default_factory=list)

    def __contains__(self, row_id: str) -> bool:
        return row_id in self.row_ids

    def __len__(self) -> int:
        return len(self.row_ids)


class CompletionLedger:
    """
    Ledger reader/writer for one execute directory

    Features:
    - Case-insensitive filename pattern (completed*.txt)
    - Trimmed, non-empty lines only
    - Duplicate RowIds collapse (set semantics)
    - Append-only writes
    """

    def __init__(self, directory: Union[str, Path], pattern: str = DEFAULT_LEDGER_PATTERN):
        """
        Initialize ledger

        Args:
            directory: Execute directory holding the ledger files
            pattern: Regex matched against ledger file names
        """
        self.directory = Path(directory)
        self.pattern = re.compile(pattern, re.IGNORECASE)

    def ledger_files(self) -> List[Path]:
        """Matching ledger files, sorted by name"""
        if not self.directory.is_dir():
            raise MissingInputError(self.directory, "execute directory is required to know what remains")

        return sorted(
            p for p in self.directory.iterdir()
            if p.is_file() and self.pattern.match(p.name)
        )

    def load_completed(self) -> CompletedSet:
        """
        Read every ledger and union the RowIds

        Returns:
            CompletedSet (empty when no ledger file exists yet)

        Raises:
            MissingInputError: directory itself is missing
        """
        files = self.ledger_files()
        row_ids = set()

        for path in files:
            with open(path, 'r', encoding='utf-8') as f:
                for line in f:
                    row_id = line.strip()
                    if row_id:
                        row_ids.add(row_id)

        logger.info(f"📒 Completed ledgers: {len(files)} file(s), {len(row_ids)} unique rows")
        return CompletedSet(row_ids=frozenset(row_ids), files=[p.name for p in files])

    def append(self, row_ids: Iterable[str], ledger_name: str = "completed_ready.txt") -> int:
        """
        Append RowIds to one ledger file

        Args:
            row_ids: RowIds to mark completed
            ledger_name: Ledger file name inside the directory

        Returns:
            Number of lines written
        """
        if not self.pattern.match(ledger_name):
            raise ValueError(f"Ledger name {ledger_name!r} does not match the ledger naming convention")
        if not self.directory.is_dir():
            raise MissingInputError(self.directory)

        path = self.directory / ledger_name
        written = 0
        with open(path, 'a', encoding='utf-8') as f:
            for row_id in row_ids:
                row_id = row_id.strip()
                if not row_id:
                    continue
                f.write(row_id + "\n")
                written += 1

        logger.debug(f"Ledger {ledger_name}: +{written} rows")
        return written
