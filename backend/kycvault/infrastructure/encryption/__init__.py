"""Infrastructure encryption utilities."""

from .cipher import DecryptionError
from .field_codec import (
    ENVELOPE_VERSION,
    MAX_DECODE_ATTEMPTS,
    SENTINEL,
    EncryptionKeyMissingError,
    FieldCodec,
    decode,
    encode,
    get_codec,
    has_ciphertext_shape,
    is_versioned,
    looks_encrypted,
    reset_codec,
)
from .envelope import RecordEnvelope, decrypt_many

__all__ = [
    "DecryptionError",
    "ENVELOPE_VERSION",
    "MAX_DECODE_ATTEMPTS",
    "SENTINEL",
    "EncryptionKeyMissingError",
    "FieldCodec",
    "RecordEnvelope",
    "decode",
    "decrypt_many",
    "encode",
    "get_codec",
    "has_ciphertext_shape",
    "is_versioned",
    "looks_encrypted",
    "reset_codec",
]
