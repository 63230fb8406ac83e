#!/usr/bin/env python3
"""
Check every wallet's balances against its transaction log.
Run from the project root: python -m scripts.reconcile_wallets
Exits non-zero when at least one wallet does not reconcile.
"""
import logging
import sys

from dailyhire.core.logging import configure_logging
from dailyhire.db.session import session_scope
from dailyhire.models.wallet import Wallet
from dailyhire.services.ledger.service import LedgerStore

logger = logging.getLogger(__name__)


def main() -> int:
    configure_logging()
    mismatches = 0
    with session_scope() as db:
        ledger = LedgerStore(db)
        wallet_ids = [row.id for row in db.query(Wallet.id).order_by(Wallet.created_at).all()]
        for wallet_id in wallet_ids:
            report = ledger.reconcile(wallet_id)
            if report is not None and not report.consistent:
                mismatches += 1
                print(
                    f"{wallet_id}: pending {report.pending_balance} (log {report.expected_pending}), "
                    f"available {report.available_balance} (log {report.expected_available})"
                )
    print(f"Checked {len(wallet_ids)} wallets, {mismatches} mismatched.")
    logger.info("wallet_reconciliation_done", extra={"failed": mismatches})
    return 1 if mismatches else 0


if __name__ == "__main__":
    sys.exit(main())
