"""
Validate .env configuration
Helps identify missing Acuity, Supabase and database settings before deploying
"""

import os
import sys
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

# Load .env file
env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    print("⚠️  .env file not found. Looking in current directory...")
    load_dotenv()

REQUIRED = {
    "ACUITY_USER_ID": "Acuity API user id",
    "ACUITY_API_KEY": "Acuity API key",
    "ACUITY_CALENDAR_IDS": "comma separated field calendar ids",
}

OPTIONAL = {
    "ACUITY_OWNER_ID": "owner id used in booking links",
    "ACUITY_SESSION_FIELD_ID": "intake form field carrying the session token",
    "SUPABASE_SERVICE_ROLE": "service role key for the auth admin API",
    "CORS_ORIGINS": "allowed browser origins",
    "LOG_LEVEL": "logging level",
}


def _mask(value: str) -> str:
    return value[:4] + "***" if len(value) > 4 else "***"


def validate_database_config() -> bool:
    """Validate database configuration"""
    print("🔍 Validating Database Configuration")
    print("=" * 50)

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ℹ️  DATABASE_URL not set, the local SQLite fallback will be used")
        return True

    print("✅ DATABASE_URL is set")
    if not database_url.startswith(("postgres://", "postgresql://", "postgresql+psycopg2://", "sqlite")):
        print("   ⚠️  Warning: DATABASE_URL should be a postgresql:// URL (Supabase connection string)")
        return False
    try:
        parsed = urlparse(database_url)
        print(f"   Host: {parsed.hostname or 'N/A'}")
        print(f"   Port: {parsed.port or 'N/A'}")
        print(f"   Database: {parsed.path.lstrip('/') or 'N/A'}")
        print(f"   Has Password: {'Yes' if parsed.password else 'No'}")
    except ValueError as e:
        print(f"   ❌ Error parsing DATABASE_URL: {e}")
        return False
    return True


def validate_service_config() -> bool:
    """Validate Acuity and Supabase settings"""
    print()
    print("🔍 Validating Service Configuration")
    print("=" * 50)
    ok = True

    for name, description in REQUIRED.items():
        value = os.getenv(name)
        if value:
            print(f"✅ {name}: {_mask(value)}")
        else:
            print(f"❌ {name} missing ({description})")
            ok = False

    supabase_url = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL")
    if supabase_url:
        print(f"✅ SUPABASE_URL: {supabase_url}")
    else:
        print("⚠️  SUPABASE_URL not set, bookings will be saved unlinked")

    for name, description in OPTIONAL.items():
        value = os.getenv(name)
        print(f"{'✅' if value else 'ℹ️ '} {name}: {_mask(value) if value else f'not set ({description})'}")

    calendar_ids = [c.strip() for c in os.getenv("ACUITY_CALENDAR_IDS", "").split(",") if c.strip()]
    bad = [c for c in calendar_ids if not c.isdigit()]
    if bad:
        print(f"❌ ACUITY_CALENDAR_IDS contains non-numeric ids: {bad}")
        ok = False
    return ok


if __name__ == "__main__":
    results = [validate_database_config(), validate_service_config()]
    print()
    if all(results):
        print("✅ Configuration looks good")
        sys.exit(0)
    print("❌ Fix the issues above and re-run")
    sys.exit(1)
