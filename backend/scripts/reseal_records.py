#!/usr/bin/env python
"""Rewrite legacy-format encrypted fields as versioned envelopes.

Rows written by older releases hold ``iv:ciphertext``, bare hex or
multiply-wrapped values. This script decrypts each such field and writes it
back as a single ``v1:`` envelope. Values that cannot be decrypted are left
untouched and reported in the logs.

Usage:
    python backend/scripts/reseal_records.py --dry-run
    python backend/scripts/reseal_records.py --batch-size 200

Environment Variables:
    DATABASE_URL: Database connection string
    ENCRYPTION_KEY: Passphrase used to encrypt the existing rows (required)
"""

import argparse
import sys
from pathlib import Path

# Add backend to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from kycvault.config import get_settings
from kycvault.database import SessionLocal
from kycvault.infrastructure.encryption import EncryptionKeyMissingError
from kycvault.maintenance import reseal_legacy_records
from kycvault.observability import configure_logging


def main():
    """Reseal legacy records."""
    parser = argparse.ArgumentParser(description="Upgrade legacy ciphertext to v1 envelopes")
    parser.add_argument("--batch-size", type=int, default=500, help="Rows per commit (default: 500)")
    parser.add_argument("--dry-run", action="store_true", help="Report changes without writing them")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, json_format=False)

    session = SessionLocal()
    try:
        stats = reseal_legacy_records(session, batch_size=args.batch_size, dry_run=args.dry_run)
    except EncryptionKeyMissingError as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    except Exception as e:
        session.rollback()
        print(f"ERROR: Reseal failed: {e}")
        sys.exit(1)
    finally:
        session.close()

    prefix = "DRY RUN" if args.dry_run else "SUCCESS"
    print(f"{prefix}: {stats.records_updated} of {stats.records_scanned} records resealed")
    print(f"  Fields rewritten: {stats.fields_updated}")
    for table, count in stats.per_table.items():
        print(f"  {table}: {count}")


if __name__ == "__main__":
    main()
