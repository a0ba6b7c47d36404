"""AES-256-CBC primitives shared by the versioned and legacy envelopes.

Key derivation matches the historical Node.js writer:
``crypto.scryptSync(passphrase, 'salt', 32)`` with the default cost
parameters, so rows written before the migration remain readable.
"""

import hashlib

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

KEY_LENGTH = 32
IV_LENGTH = 16

# Fixed salt and scrypt cost shared with every existing row
SCRYPT_SALT = b"salt"
SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1


class DecryptionError(Exception):
    """Raised when a single ciphertext cannot be decrypted.

    Internal to the codec: callers of ``FieldCodec.decode`` get the sentinel
    value instead.
    """
    pass


def derive_key(passphrase: str) -> bytes:
    """Derive the 256-bit working key from the passphrase with scrypt."""
    kdf = Scrypt(
        salt=SCRYPT_SALT,
        length=KEY_LENGTH,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def evp_bytes_to_key(passphrase: str) -> tuple:
    """OpenSSL EVP_BytesToKey (MD5, one round, no salt) for AES-256-CBC.

    This is what Node's deprecated ``crypto.createCipher`` used to turn the
    passphrase into a key and a fixed IV.

    Returns:
        (key, iv) tuple of 32 and 16 bytes
    """
    secret = passphrase.encode("utf-8")
    material = b""
    block = b""
    while len(material) < KEY_LENGTH + IV_LENGTH:
        block = hashlib.md5(block + secret).digest()
        material += block
    return material[:KEY_LENGTH], material[KEY_LENGTH:KEY_LENGTH + IV_LENGTH]


def cbc_encrypt(key: bytes, iv: bytes, plaintext: str) -> bytes:
    """Encrypt UTF-8 text with AES-256-CBC and PKCS7 padding."""
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def cbc_decrypt(key: bytes, iv: bytes, ciphertext: bytes) -> str:
    """Decrypt AES-256-CBC ciphertext back to UTF-8 text.

    Raises:
        DecryptionError: Wrong key, bad IV, corrupt padding or non-UTF-8 output
    """
    if len(iv) != IV_LENGTH:
        raise DecryptionError(f"IV must be {IV_LENGTH} bytes, got {len(iv)}")
    if not ciphertext or len(ciphertext) % IV_LENGTH:
        raise DecryptionError("Ciphertext length is not a multiple of the block size")

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    try:
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        data = unpadder.update(padded) + unpadder.finalize()
        return data.decode("utf-8")
    except ValueError as e:
        # UnicodeDecodeError is a ValueError subclass
        raise DecryptionError(f"Decryption failed - invalid key or corrupt data: {e}")


def unhex(value: str, label: str) -> bytes:
    """Parse a hex segment of an envelope, raising DecryptionError on junk."""
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise DecryptionError(f"Envelope {label} is not valid hex: {e}")
