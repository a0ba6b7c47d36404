"""Declarative sensitive-field envelope for PII models.

Each record kind lists its sensitive columns once:

    class PanKyc(ArchivableRecordMixin, Base):
        __envelope__ = RecordEnvelope(
            fields=("pan_number", "name"),
            structured_fields=("verification_details",),
        )

The session ``before_flush`` hook at the bottom of this module calls
``seal()`` for new and dirty instances; read paths call ``decrypt_data()``
which returns a plain dict and leaves the ORM object untouched.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from ...config import get_settings
from .field_codec import FieldCodec, get_codec


class RecordEnvelope:
    """Applies the field codec to a fixed set of columns on a model."""

    def __init__(self, fields: Sequence[str] = (), structured_fields: Sequence[str] = ()):
        self.fields = tuple(fields)
        self.structured_fields = tuple(structured_fields)

    @property
    def all_fields(self) -> tuple:
        return self.fields + self.structured_fields

    def seal(self, record: Any, codec: Optional[FieldCodec] = None, is_new: bool = False) -> int:
        """Encrypt new or changed sensitive fields in place before flush.

        Values that already have a ciphertext shape are left alone and empty
        strings become None.

        Returns:
            Number of attributes rewritten
        """
        codec = codec or get_codec()
        state = inspect(record)
        changed = 0

        for name in self.all_fields:
            if not is_new and not state.attrs[name].history.has_changes():
                continue
            value = getattr(record, name)
            if name in self.structured_fields:
                sealed = codec.encode_structured(value)
            else:
                sealed = codec.encode(value)
            if sealed != value:
                setattr(record, name, sealed)
                changed += 1

        return changed

    def snapshot(self, record: Any) -> Dict[str, Any]:
        """Read every mapped column into a plain dict (no decoding)."""
        mapper = inspect(record).mapper
        return {attr.key: getattr(record, attr.key) for attr in mapper.column_attrs}

    def decode_snapshot(self, data: Dict[str, Any], codec: Optional[FieldCodec] = None) -> Dict[str, Any]:
        """Decode sensitive entries of a snapshot; every field independently."""
        codec = codec or get_codec()
        result = dict(data)
        for name in self.fields:
            if name in result:
                result[name] = codec.decode(result[name])
        for name in self.structured_fields:
            if name in result:
                result[name] = codec.decode_structured(result[name])
        return result

    def decrypt_data(self, record: Any, codec: Optional[FieldCodec] = None) -> Dict[str, Any]:
        """Plaintext projection of a record.

        Undecryptable fields appear as the sentinel; the stored ciphertext on
        ``record`` is never modified.
        """
        return self.decode_snapshot(self.snapshot(record), codec)

    def reseal(self, record: Any, codec: Optional[FieldCodec] = None) -> int:
        """Upgrade legacy-format fields on a record to versioned envelopes.

        Blank values (including ciphertexts of the empty string) become None.

        Returns:
            Number of attributes rewritten
        """
        codec = codec or get_codec()
        changed = 0
        for name in self.all_fields:
            value = getattr(record, name)
            if isinstance(value, (dict, list)):
                continue  # Not yet sealed; the flush hook will encrypt it
            resealed = codec.reseal(value)
            if resealed != value:
                setattr(record, name, resealed)
                changed += 1
        return changed


def decrypt_many(
    records: Iterable[Any],
    max_workers: Optional[int] = None,
    codec: Optional[FieldCodec] = None,
) -> List[Dict[str, Any]]:
    """Decrypt a batch of records in parallel, preserving input order.

    Column values are read on the calling thread (ORM instances are not
    shared with workers); only the decoding fans out.
    """
    codec = codec or get_codec()
    jobs = [(record.__envelope__, record.__envelope__.snapshot(record)) for record in records]
    if not jobs:
        return []

    workers = max_workers or get_settings().DECRYPT_MAX_WORKERS
    with ThreadPoolExecutor(max_workers=max(1, min(workers, len(jobs)))) as pool:
        return list(pool.map(lambda job: job[0].decode_snapshot(job[1], codec), jobs))


@event.listens_for(Session, "before_flush")
def seal_sensitive_fields(session, flush_context, instances):
    """Encrypt sensitive fields on INSERT/UPDATE.

    Applies to any model declaring ``__envelope__``. New instances have every
    sensitive field sealed; dirty instances only the fields that changed.
    Raises EncryptionKeyMissingError if a write touches a sensitive model
    while ENCRYPTION_KEY is unset.
    """
    for instance in session.new:
        envelope = getattr(instance, "__envelope__", None)
        if envelope is not None:
            envelope.seal(instance, get_codec(), is_new=True)

    for instance in session.dirty:
        envelope = getattr(instance, "__envelope__", None)
        if envelope is not None and session.is_modified(instance):
            envelope.seal(instance, get_codec())
