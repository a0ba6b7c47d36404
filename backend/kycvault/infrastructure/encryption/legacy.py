"""Legacy envelope adapter.

Rows written before versioned envelopes carry one of two untagged shapes:

* ``<hex iv>:<hex ciphertext>`` (scrypt key, random IV)
* bare hex ciphertext from Node's ``crypto.createCipher`` (key and IV both
  derived from the passphrase with EVP_BytesToKey, no salt)

All format guessing for those rows lives in ``decrypt_legacy``; nothing else
in the codebase inspects untagged values.
"""

import re

from .cipher import IV_LENGTH, DecryptionError, cbc_decrypt, evp_bytes_to_key, unhex

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")

# Bare hex shorter than this is treated as ordinary text
LEGACY_HEX_MIN_LENGTH = 21


def is_hex(value: str) -> bool:
    return bool(_HEX_RE.match(value))


def is_legacy_shape(value: str) -> bool:
    """True for ``iv:ciphertext`` pairs and long bare hex strings.

    The pair form needs a 16-byte hex IV and whole cipher blocks, so short
    text such as ``abc:def`` is not mistaken for ciphertext on write.
    """
    if ":" in value:
        parts = value.split(":")
        if len(parts) != 2 or not all(part and is_hex(part) for part in parts):
            return False
        iv_hex, ct_hex = parts
        return len(iv_hex) == 2 * IV_LENGTH and len(ct_hex) % (2 * IV_LENGTH) == 0
    return len(value) >= LEGACY_HEX_MIN_LENGTH and is_hex(value)


def decrypt_no_iv(value: str, passphrase: str) -> str:
    """Decrypt a bare-hex value written by the deprecated no-IV cipher."""
    key, iv = evp_bytes_to_key(passphrase)
    return cbc_decrypt(key, iv, unhex(value, "ciphertext"))


def decrypt_legacy(value: str, key: bytes, passphrase: str) -> str:
    """Decrypt one layer of an untagged legacy envelope.

    Args:
        value: Stored value without a version tag
        key: scrypt-derived working key
        passphrase: Raw passphrase, needed by the no-IV path

    Raises:
        DecryptionError: The value is not a recognizable legacy envelope or
            does not decrypt under the configured passphrase
    """
    if ":" in value:
        parts = value.split(":")
        if len(parts) != 2:
            raise DecryptionError(f"Expected iv:ciphertext, got {len(parts)} segments")
        iv_hex, ct_hex = parts
        return cbc_decrypt(key, unhex(iv_hex, "iv"), unhex(ct_hex, "ciphertext"))

    if is_hex(value):
        return decrypt_no_iv(value, passphrase)

    raise DecryptionError("Value is not a legacy envelope")
