"""Field-level encryption codec for PII columns.

New writes use a versioned envelope::

    v1:<hex iv>:<hex ciphertext>

AES-256-CBC with PKCS7 padding and a random 16-byte IV; the key is derived
from ENCRYPTION_KEY with scrypt. Reads also accept every historical shape
(see ``legacy.py``) and plaintext that was never encrypted.

Decoding never raises: a value that cannot be decrypted comes back as
``SENTINEL`` so one corrupt field cannot break a whole record.

Example:
    codec = get_codec()
    stored = codec.encode("ABCDE1234F")     # "v1:...:..."
    codec.decode(stored)                    # "ABCDE1234F"
    codec.decode("ABCDE1234F")              # plaintext passes through
"""

import json
import logging
import os
from typing import Any, Optional

from ...config import get_settings
from ...observability.metrics import field_decode_failures_total
from .cipher import (
    DecryptionError,
    IV_LENGTH,
    cbc_decrypt,
    cbc_encrypt,
    derive_key,
    unhex,
)
from .legacy import decrypt_legacy, decrypt_no_iv, is_hex, is_legacy_shape, LEGACY_HEX_MIN_LENGTH

logger = logging.getLogger(__name__)

SENTINEL = "[ENCRYPTED]"
ENVELOPE_VERSION = "v1"
MAX_DECODE_ATTEMPTS = 3


class EncryptionKeyMissingError(RuntimeError):
    """Raised when the codec is built without ENCRYPTION_KEY configured."""
    pass


def looks_encrypted(value: Any) -> bool:
    """Classify a stored value as ciphertext for the read path.

    True iff the value contains ``:`` or is pure hex longer than 20
    characters. Deliberately loose: anything else is plaintext and is
    returned unchanged by ``decode``.
    """
    if not isinstance(value, str) or not value:
        return False
    if ":" in value:
        return True
    return len(value) >= LEGACY_HEX_MIN_LENGTH and is_hex(value)


def is_versioned(value: Any) -> bool:
    """True if the value is a well-formed versioned envelope."""
    if not isinstance(value, str):
        return False
    parts = value.split(":")
    return (
        len(parts) == 3
        and parts[0] == ENVELOPE_VERSION
        and all(part and is_hex(part) for part in parts[1:])
    )


def has_ciphertext_shape(value: Any) -> bool:
    """True if the value is structurally an envelope (versioned or legacy).

    Stricter than ``looks_encrypted``: ordinary text containing a colon
    (an address, a JSON document) does not qualify. Used by the write-path
    guard and to decide whether a decrypted layer needs another pass.
    """
    if not isinstance(value, str) or not value:
        return False
    return is_versioned(value) or is_legacy_shape(value)


class FieldCodec:
    """Encrypts and decrypts single sensitive field values.

    The scrypt key is derived once per instance; use ``get_codec()`` for the
    process-wide instance.
    """

    def __init__(self, passphrase: Optional[str] = None):
        """Initialize codec with the passphrase.

        Args:
            passphrase: Key material. Defaults to ENCRYPTION_KEY from settings.

        Raises:
            EncryptionKeyMissingError: If no passphrase is configured
        """
        passphrase = passphrase or get_settings().ENCRYPTION_KEY
        if not passphrase:
            raise EncryptionKeyMissingError(
                "ENCRYPTION_KEY is not configured; sensitive fields cannot be encrypted"
            )
        self._passphrase = passphrase
        self._key = derive_key(passphrase)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def encode(self, plaintext: Optional[str]) -> Optional[str]:
        """Encrypt a plaintext value into a versioned envelope.

        Empty input is normalized to None. A value that already has a
        ciphertext shape is returned unchanged so it is never encrypted twice.
        """
        if plaintext is None:
            return None
        if not isinstance(plaintext, str):
            plaintext = str(plaintext)
        if plaintext == "":
            return None
        if has_ciphertext_shape(plaintext):
            return plaintext
        return self._seal(plaintext)

    def encode_structured(self, value: Any) -> Optional[str]:
        """Serialize a dict/list to JSON and encrypt it as one value."""
        if value is None:
            return None
        if isinstance(value, str):
            return self.encode(value)
        return self._seal(json.dumps(value, default=str))

    def _seal(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        ciphertext = cbc_encrypt(self._key, iv, plaintext)
        return f"{ENVELOPE_VERSION}:{iv.hex()}:{ciphertext.hex()}"

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def decode(self, value: Any) -> Any:
        """Decrypt a stored value, tolerating every historical format.

        Non-string and plaintext values are returned unchanged. Values that
        were encrypted more than once are unwrapped up to
        MAX_DECODE_ATTEMPTS layers. Any failure yields SENTINEL.
        """
        if not isinstance(value, str) or not looks_encrypted(value):
            return value
        try:
            return self._unwrap(value)
        except DecryptionError as e:
            field_decode_failures_total.inc()
            logger.warning(
                f"Field decode failed, returning sentinel: {e}",
                extra={"error_type": type(e).__name__},
            )
            return SENTINEL

    def decode_structured(self, value: Any) -> Any:
        """Decrypt a value stored by ``encode_structured`` and parse the JSON.

        Already-parsed dicts/lists pass through. Undecryptable or unparsable
        values yield SENTINEL.
        """
        if value is None or isinstance(value, (dict, list)):
            return value
        if not isinstance(value, str):
            return value

        text = value
        if not text.lstrip().startswith(("{", "[")):
            text = self.decode(value)
            if text == SENTINEL:
                return SENTINEL
        try:
            return json.loads(text)
        except ValueError as e:
            field_decode_failures_total.inc()
            logger.warning(f"Structured field is not valid JSON after decode: {e}")
            return SENTINEL

    def _unwrap(self, value: str) -> str:
        current = value
        for _ in range(MAX_DECODE_ATTEMPTS):
            current = self._decrypt_once(current)
            if not has_ciphertext_shape(current):
                return current

        # Still ciphertext after the bound: one last try with the no-IV cipher
        if is_hex(current):
            return decrypt_no_iv(current, self._passphrase)
        raise DecryptionError(
            f"Value still encrypted after {MAX_DECODE_ATTEMPTS} decryption attempts"
        )

    def _decrypt_once(self, value: str) -> str:
        if value.startswith(ENVELOPE_VERSION + ":"):
            parts = value.split(":")
            if len(parts) != 3:
                raise DecryptionError("Malformed versioned envelope")
            _, iv_hex, ct_hex = parts
            return cbc_decrypt(self._key, unhex(iv_hex, "iv"), unhex(ct_hex, "ciphertext"))
        return decrypt_legacy(value, self._key, self._passphrase)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reseal(self, value: Any) -> Any:
        """Rewrite a legacy-format value as a versioned envelope.

        Returns:
            - None for empty values and values that decrypt to blank text
            - the input unchanged if it is already versioned, is not
              ciphertext, or cannot be decrypted
            - a fresh versioned envelope otherwise
        """
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return None
        if not isinstance(value, str) or is_versioned(value) or not looks_encrypted(value):
            return value

        plaintext = self.decode(value)
        if plaintext == SENTINEL:
            return value
        if plaintext is None or plaintext.strip() == "":
            return None
        return self._seal(plaintext)


# Module-level codec instance (lazy initialization)
_codec: Optional[FieldCodec] = None


def get_codec() -> FieldCodec:
    """Get or create the module-level codec instance."""
    global _codec
    if _codec is None:
        _codec = FieldCodec()
    return _codec


def reset_codec() -> None:
    """Drop the cached codec so the next call re-reads ENCRYPTION_KEY."""
    global _codec
    _codec = None


def encode(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt with the process-wide codec."""
    return get_codec().encode(plaintext)


def decode(value: Any) -> Any:
    """Decrypt with the process-wide codec."""
    return get_codec().decode(value)
