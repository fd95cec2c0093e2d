"""
READY Batch Runner

Submits (or previews) the next batch of READY_TO_EXECUTE rows:
1. Select READY rows that are not gas-blocked and not already completed
2. Sort by estimated USD (descending, unknown as 0)
3. Take the first batch_size rows
4. Dry run: journal a DRYRUN event per row
5. Execute: submit through the injected submitter, journal SUBMIT_OK /
   SUBMIT_FAIL, append successful RowIds to completed_ready.txt

A failed submission is never marked completed, so re-running picks it up again.
"""

import json
import time
import uuid
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger

from .completion_ledger import CompletedSet, CompletionLedger
from .eligibility import ClassifiedRow, Reason


READY_LEDGER = "completed_ready.txt"


@dataclass
class SubmitResult:
    """Outcome reported by a submitter"""
    ok: bool
    tx_id: Optional[str] = None
    status: Optional[int] = None
    error: Optional[Dict] = None


# body -> SubmitResult; the custodial API client lives outside this package
Submitter = Callable[[Dict], SubmitResult]


@dataclass
class BatchResult:
    run_id: str
    journal_path: Path
    eligible: int
    attempted: int
    ok: int = 0
    failed: int = 0
    dry_run: bool = True
    completed_row_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['journal_path'] = str(self.journal_path)
        return data


def new_run_id() -> str:
    return f"ready_{int(time.time() * 1000)}_{uuid.uuid4()}"


def transfer_body(row: ClassifiedRow, run_id: str) -> Dict:
    """Custodial TRANSFER request body; amount kept as a string"""
    r = row.row
    return {
        'operation': 'TRANSFER',
        'assetId': r.asset_id,
        'source': {'type': 'VAULT_ACCOUNT', 'id': str(r.source_vault_id)},
        'destination': {'type': 'VAULT_ACCOUNT', 'id': str(r.destination_vault_id)},
        'amount': format(Decimal(repr(r.amount)), 'f'),
        'externalTxId': f"{run_id}:{r.row_id}",
    }


def select_ready(rows: Sequence[ClassifiedRow], completed: CompletedSet, batch_size: int) -> List[ClassifiedRow]:
    """
    Pick the next batch of READY rows

    Args:
        rows: Classified rows
        completed: Completed RowIds
        batch_size: Max rows in the batch

    Returns:
        Up to batch_size rows, highest estimated USD first
    """
    candidates = [
        r for r in rows
        if r.reason == Reason.READY_TO_EXECUTE
        and not r.row.gas_blocked
        and r.row_id not in completed
    ]
    candidates.sort(key=lambda r: -(r.estimated_usd or 0.0))
    return candidates[:max(1, int(batch_size))]


class BatchExecutor:
    """
    READY batch runner

    Features:
    - Dry-run by default
    - JSONL journal per run (journal_<runId>.jsonl)
    - Append-only completion ledger, successes only
    """

    def __init__(
        self,
        ledger: CompletionLedger,
        journal_dir: Path,
        submitter: Optional[Submitter] = None,
        batch_size: int = 50,
        run_id: Optional[str] = None
    ):
        """
        Initialize runner

        Args:
            ledger: Ledger for the execute directory
            journal_dir: Directory for the run journal
            submitter: Callable submitting one transfer body (None = dry run only)
            batch_size: Max rows per run (clamped to 1..500)
            run_id: Run identifier (generated when omitted)
        """
        self.ledger = ledger
        self.journal_dir = Path(journal_dir)
        self.submitter = submitter
        self.batch_size = max(1, min(500, int(batch_size)))
        self.run_id = run_id or new_run_id()
        self.journal_path = self.journal_dir / f"journal_{self.run_id}.jsonl"

    def _journal(self, event: Dict):
        event = dict(event)
        event['ts'] = datetime.now(timezone.utc).isoformat()
        with open(self.journal_path, 'a', encoding='utf-8') as f:
            f.write(json.dumps(event) + "\n")

    def run(self, rows: Sequence[ClassifiedRow], completed: CompletedSet, execute: bool = False) -> BatchResult:
        """
        Process one batch

        Args:
            rows: Classified rows from the current analysis
            completed: Completed RowIds at the start of the run
            execute: Submit for real (requires a submitter)

        Returns:
            BatchResult
        """
        if execute and self.submitter is None:
            raise ValueError("execute=True requires a submitter")

        self.journal_dir.mkdir(parents=True, exist_ok=True)

        eligible = sum(
            1 for r in rows
            if r.reason == Reason.READY_TO_EXECUTE and not r.row.gas_blocked and r.row_id not in completed
        )
        batch = select_ready(rows, completed, self.batch_size)

        logger.info(f"🚀 Mode: {'EXECUTE (live)' if execute else 'DRY RUN'} | run {self.run_id}")
        logger.info(f"   Eligible READY rows remaining: {eligible}, attempting {len(batch)}")

        result = BatchResult(
            run_id=self.run_id,
            journal_path=self.journal_path,
            eligible=eligible,
            attempted=len(batch),
            dry_run=not execute,
        )

        for i, row in enumerate(batch, 1):
            body = transfer_body(row, self.run_id)
            preview = f"{row.row_id}|{body['amount']}"

            if not execute:
                logger.debug(f"DRYRUN {i}/{len(batch)}: {preview} estUSD={row.estimated_usd}")
                self._journal({'event': 'DRYRUN', 'rowId': row.row_id, 'preview': preview, 'body': body})
                result.ok += 1
                continue

            outcome = self.submitter(body)
            if outcome.ok:
                result.ok += 1
                tx_id = outcome.tx_id or "(no-id)"
                logger.info(f"✓ SUBMIT_OK {result.ok}/{len(batch)}: {row.row_id} txId={tx_id}")
                self._journal({'event': 'SUBMIT_OK', 'rowId': row.row_id, 'txId': tx_id, 'body': body})
                self.ledger.append([row.row_id], READY_LEDGER)
                result.completed_row_ids.append(row.row_id)
            else:
                result.failed += 1
                logger.warning(f"⚠️  SUBMIT_FAIL: {row.row_id} :: HTTP {outcome.status} {outcome.error}")
                self._journal({
                    'event': 'SUBMIT_FAIL', 'rowId': row.row_id, 'status': outcome.status,
                    'error': outcome.error, 'body': body,
                })

        logger.info(f"✅ READY batch complete: attempted={result.attempted} ok={result.ok} failed={result.failed}")
        return result
