"""
PManager - Cryptography Module

This single file contains ALL cryptographic primitives used by the store.
Nothing here touches the disk or asks the user anything; the key cache and
the storage engine build on top of it.

Security Architecture:
    1. Passphrase + per-store salt -> scrypt -> Store Key (32 bytes)
    2. Store Key + fresh random nonce -> AES-256-GCM -> nonce||ciphertext||tag
    3. On disk: salt || nonce || ciphertext || tag

Why this is secure:
    - scrypt is memory-hard (resists GPU attacks)
    - The random salt means equal passphrases do not give equal keys
    - AES-256-GCM detects any tampering with the file (auth tag)
    - A new nonce on every write, so a (key, nonce) pair is never reused
"""

import os
import hashlib
import json
from typing import Any, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import AuthenticationError, StorageError


# =============================================================================
# Configuration
# =============================================================================

KEY_SIZE = 32            # 256-bit key
SALT_SIZE = 16           # 128-bit per-store salt
NONCE_SIZE = 12          # 96-bit nonce for AES-GCM
TAG_SIZE = 16            # 128-bit authentication tag

# scrypt parameters (tuned for ~250ms on modern CPU)
# N = CPU/memory cost (power of 2), r = block size, p = parallelization
SCRYPT_N = 2**17
SCRYPT_R = 8
SCRYPT_P = 1


# =============================================================================
# Key Derivation
# =============================================================================

def new_salt() -> bytes:
    """Random salt for a freshly created (or re-keyed) store."""
    return os.urandom(SALT_SIZE)


def derive_key(passphrase: str, salt: bytes, n: Optional[int] = None) -> bytes:
    """
    Derive the store key from a passphrase using scrypt.

    The empty passphrase is valid: a new store works without friction
    until the user sets a real one.

    Args:
        passphrase: User's passphrase (may be "")
        salt: SALT_SIZE bytes read from the store header (NOT secret)
        n: scrypt cost override, defaults to SCRYPT_N

    Returns:
        32-byte store key
    """
    kdf = Scrypt(
        salt=salt,
        length=KEY_SIZE,
        n=n or SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
    )
    return kdf.derive(passphrase.encode('utf-8'))


# =============================================================================
# Canonical JSON
# =============================================================================

def canonical_json(obj: Any) -> bytes:
    """
    Convert a JSON value to canonical bytes.

    Format:
    - Keys sorted lexicographically
    - No whitespace (compact)
    - UTF-8 encoding without escaping non-ASCII

    Same store ALWAYS produces same bytes, which is what hashcode needs.
    """
    json_str = json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return json_str.encode('utf-8')


def hashcode(obj: Any) -> str:
    """SHA-256 hex digest of the canonical serialization."""
    return hashlib.sha256(canonical_json(obj)).hexdigest()


# =============================================================================
# Encryption (AES-256-GCM)
# =============================================================================

def encrypt(key: bytes, plaintext: bytes) -> bytes:
    """
    Encrypt data with AES-256-GCM (Authenticated Encryption).

    Args:
        key: 32-byte store key
        plaintext: Serialized store

    Returns:
        nonce || ciphertext || tag
        - nonce: NONCE_SIZE random bytes
        - tag: TAG_SIZE bytes appended by AESGCM
    """
    # Generate random nonce (NEVER reuse with same key!)
    nonce = os.urandom(NONCE_SIZE)

    aesgcm = AESGCM(key)
    return nonce + aesgcm.encrypt(nonce, plaintext, None)


def decrypt(key: bytes, payload: bytes) -> bytes:
    """
    Decrypt a payload produced by encrypt().

    Args:
        key: Same 32-byte key used for encryption
        payload: nonce || ciphertext || tag

    Returns:
        Plaintext bytes

    Raises:
        AuthenticationError: wrong key, truncated or tampered payload
    """
    if len(payload) < NONCE_SIZE + TAG_SIZE:
        raise AuthenticationError("Encrypted payload is truncated.")

    nonce = payload[:NONCE_SIZE]
    ciphertext = payload[NONCE_SIZE:]

    aesgcm = AESGCM(key)
    try:
        return aesgcm.decrypt(nonce, ciphertext, None)
    except InvalidTag:
        raise AuthenticationError("Failed to decrypt data, wrong passphrase or corrupted file.")


# =============================================================================
# Store File Framing
# =============================================================================

def pack_store(salt: bytes, payload: bytes) -> bytes:
    """Prefix the encrypted payload with the store salt."""
    return salt + payload


def unpack_store(blob: bytes) -> Tuple[bytes, bytes]:
    """
    Split a store file into (salt, payload).

    Raises:
        StorageError: file too short to hold salt, nonce and tag
    """
    if len(blob) < SALT_SIZE + NONCE_SIZE + TAG_SIZE:
        raise StorageError("Data storage file is corrupted (too short).")
    return blob[:SALT_SIZE], blob[SALT_SIZE:]
