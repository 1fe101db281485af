"""Client-side encryption for backup archives.

The relay stores backups as opaque ciphertext; devices encrypt before
upload and decrypt after download.

Blob format: MAGIC (4) || salt (16) || nonce (12) || ciphertext || tag (16)

Security notes:
- Uses `cryptography` library (well-audited, NIST recommended)
- Scrypt stretches the shared passphrase into a 32-byte key
- Random salt and nonce per backup
"""

import secrets

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ourmem.errors import CryptoError

__all__ = [
    "CryptoError",
    "decrypt_backup",
    "derive_backup_key",
    "encrypt_backup",
]

# Constants
MAGIC = b"OMB1"
KEY_LENGTH = 32  # 256 bits
SALT_LENGTH = 16
NONCE_LENGTH = 12  # 96 bits for AES-GCM
TAG_LENGTH = 16  # 128 bits for AES-GCM tag

SCRYPT_N = 2**15
SCRYPT_R = 8
SCRYPT_P = 1

HEADER_LENGTH = len(MAGIC) + SALT_LENGTH + NONCE_LENGTH


def derive_backup_key(passphrase: str, salt: bytes) -> bytes:
    """Derive a 32-byte AES key from a passphrase.

    Args:
        passphrase: Secret shared by both partners.
        salt: 16-byte random salt stored with the blob.

    Returns:
        32-byte key.

    Raises:
        ValueError: If passphrase is empty or salt has the wrong length.
    """
    if not passphrase:
        raise ValueError("Passphrase must not be empty")
    if len(salt) != SALT_LENGTH:
        raise ValueError(f"Salt must be {SALT_LENGTH} bytes")

    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt_backup(passphrase: str, plaintext: bytes) -> bytes:
    """Encrypt a backup archive.

    The same plaintext produces different output every time (fresh salt
    and nonce).

    Args:
        passphrase: Secret shared by both partners.
        plaintext: Archive bytes (can be empty).

    Returns:
        Encrypted blob in the format described in the module docstring.
    """
    salt = secrets.token_bytes(SALT_LENGTH)
    nonce = secrets.token_bytes(NONCE_LENGTH)
    key = derive_backup_key(passphrase, salt)

    ciphertext = AESGCM(key).encrypt(nonce, plaintext, MAGIC)
    return MAGIC + salt + nonce + ciphertext


def decrypt_backup(passphrase: str, blob: bytes) -> bytes:
    """Decrypt a backup blob produced by encrypt_backup.

    Raises:
        CryptoError: If the blob is malformed, the passphrase is wrong or
            the data was tampered with.
    """
    if len(blob) < HEADER_LENGTH + TAG_LENGTH:
        raise CryptoError(
            f"Backup too short (minimum {HEADER_LENGTH + TAG_LENGTH} bytes)"
        )
    if not blob.startswith(MAGIC):
        raise CryptoError("Not an encrypted backup")

    offset = len(MAGIC)
    salt = blob[offset : offset + SALT_LENGTH]
    offset += SALT_LENGTH
    nonce = blob[offset : offset + NONCE_LENGTH]
    ciphertext = blob[offset + NONCE_LENGTH :]

    key = derive_backup_key(passphrase, salt)
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, MAGIC)
    except Exception as e:
        raise CryptoError(f"Decryption failed: {e}") from e
