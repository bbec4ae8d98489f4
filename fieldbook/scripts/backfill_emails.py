#!/usr/bin/env python3
"""
Backfill missing client emails on sessions from Acuity
Runs batches until no session is left without an email (or a batch finds nothing)
"""

import sys
import asyncio
import argparse
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from dotenv import load_dotenv
load_dotenv()

from fieldbook.database import SessionLocal, init_db
from fieldbook.api.acuity_client import AcuityClient
from fieldbook.services.session_service import SessionService
from fieldbook.services.reconciliation import SessionReconciler


async def backfill(batch_size: int, delay: float, max_batches: int) -> bool:
    print("📧 Backfilling session emails from Acuity")
    print("=" * 60)

    acuity = AcuityClient()
    if not acuity.configured:
        print("❌ ACUITY_USER_ID / ACUITY_API_KEY not set")
        return False
    if not init_db():
        print("❌ Database not available")
        return False

    db = SessionLocal()
    try:
        reconciler = SessionReconciler(SessionService(db), acuity)
        total_processed = total_found = 0
        for batch in range(1, max_batches + 1):
            result = await reconciler.backfill_emails(limit=batch_size, delay=delay)
            if not result["processed"]:
                break
            total_processed += result["processed"]
            total_found += result["emailsFound"]
            print(f"   Batch {batch}: {result['emailsFound']}/{result['processed']} emails found")
            if not result["emailsFound"]:
                # Whatever is left has no email in Acuity either
                break
    finally:
        db.close()

    print(f"\n✅ Processed {total_processed} session(s), found {total_found} email(s)")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--batch-size", type=int, default=50)
    parser.add_argument("--delay", type=float, default=0.2, help="Seconds between Acuity calls")
    parser.add_argument("--max-batches", type=int, default=20)
    args = parser.parse_args()
    sys.exit(0 if asyncio.run(backfill(args.batch_size, args.delay, args.max_batches)) else 1)
