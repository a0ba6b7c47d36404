"""Re-encryption of legacy-format sensitive fields.

Rows written before versioned envelopes were introduced hold ``iv:ct``,
bare hex, or multiply-wrapped ciphertext. ``reseal_legacy_records`` walks
every PII table in batches and rewrites such fields as ``v1:`` envelopes so
reads no longer need the legacy fallbacks.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from sqlalchemy.orm import Session

from .infrastructure.encryption import FieldCodec, get_codec
from .models import AadhaarPan, AadhaarVerification, PanKyc

logger = logging.getLogger(__name__)

PII_MODELS = (PanKyc, AadhaarPan, AadhaarVerification)


@dataclass
class ResealStatistics:
    records_scanned: int = 0
    records_updated: int = 0
    fields_updated: int = 0
    per_table: Dict[str, int] = field(default_factory=dict)


def reseal_legacy_records(
    db: Session,
    batch_size: int = 500,
    codec: Optional[FieldCodec] = None,
    dry_run: bool = False,
) -> ResealStatistics:
    """Upgrade legacy ciphertext on every PII table.

    Commits once per batch. With ``dry_run`` nothing is written and the
    statistics report what would change.
    """
    codec = codec or get_codec()
    stats = ResealStatistics()

    for model in PII_MODELS:
        table = model.__tablename__
        updated_in_table = 0
        offset = 0
        while True:
            batch = (
                db.query(model)
                .order_by(model.id)
                .offset(offset)
                .limit(batch_size)
                .all()
            )
            if not batch:
                break

            for record in batch:
                stats.records_scanned += 1
                changed = model.__envelope__.reseal(record, codec)
                if changed:
                    stats.records_updated += 1
                    stats.fields_updated += changed
                    updated_in_table += 1

            if dry_run:
                db.rollback()
            else:
                db.commit()
            offset += batch_size

        stats.per_table[table] = updated_in_table
        logger.info(f"Resealed {updated_in_table} {table} records", extra={"module_name": table})

    return stats
