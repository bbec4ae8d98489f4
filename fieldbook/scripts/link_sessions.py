#!/usr/bin/env python3
"""
Link unlinked sessions to user accounts by email
Same logic as POST /api/link-sessions, run directly against the database
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
from fieldbook.api.supabase_auth import SupabaseAuthClient, SupabaseAuthError
from fieldbook.services.session_service import SessionService
from fieldbook.services.reconciliation import SessionReconciler


async def link(email=None) -> bool:
    print("🔗 Linking sessions to user accounts")
    print("=" * 60)

    if not init_db():
        print("❌ Database not available")
        return False

    db = SessionLocal()
    try:
        reconciler = SessionReconciler(SessionService(db), AcuityClient(), SupabaseAuthClient())
        try:
            result = await reconciler.link_sessions(email)
        except LookupError as e:
            print(f"❌ {e}")
            return False
        except SupabaseAuthError as e:
            print(f"❌ User lookup failed: {e}")
            return False

        if email:
            print(f"✅ Linked {result['linked']} session(s) for {email} (user {result['userId']})")
        else:
            for entry in result["results"]:
                icon = "✅" if entry["status"] == "linked" else "⚠️ "
                print(f"   {icon} {entry['email']}: {entry['sessions']} session(s), {entry['status']}")
            print(f"\n🎉 Linked {result['linked']} of {result['totalProcessed']} unlinked sessions")
        return True
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--email", help="Only link sessions for this email")
    args = parser.parse_args()
    sys.exit(0 if asyncio.run(link(args.email)) else 1)
