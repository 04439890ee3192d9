"""
PManager - Crypto + Key Cache Self-Tests

Run with: python test_simple.py   (or: pytest test_simple.py)

This script proves the encryption layer works and shows how the common
failures are caught:
- Wrong passphrase (authentication fails, user is asked again)
- Tampering with the ciphertext (GCM tag mismatch)
- Truncated store files
- Expired key cache (falls back to the empty passphrase, then asks)
"""

import os
import tempfile
import time
from pathlib import Path

from pmanager import crypto, keycache
from pmanager.exceptions import AuthenticationError, StorageError
from pmanager.keycache import KeyCache

FAST_N = 2**10


def test_kdf():
    """Test key derivation from passphrase."""
    print("Testing KDF (Key Derivation)...")

    salt = crypto.new_salt()
    assert len(salt) == crypto.SALT_SIZE

    # Derive key twice with same inputs
    key1 = crypto.derive_key("test_passphrase", salt, n=FAST_N)
    key2 = crypto.derive_key("test_passphrase", salt, n=FAST_N)

    assert key1 == key2, "KDF should be deterministic"
    assert len(key1) == 32, "Key should be 32 bytes"

    key3 = crypto.derive_key("different_passphrase", salt, n=FAST_N)
    assert key1 != key3, "Different passphrases should give different keys"

    # Same passphrase, other store
    key4 = crypto.derive_key("test_passphrase", crypto.new_salt(), n=FAST_N)
    assert key1 != key4, "Different salts should give different keys"

    # Empty passphrase is allowed (fresh stores)
    assert len(crypto.derive_key("", salt, n=FAST_N)) == 32

    print("  [OK] KDF works correctly")


def test_encryption():
    """Test AES-GCM encryption/decryption."""
    print("Testing Encryption...")

    key = os.urandom(32)
    plaintext = '{"scope": [{"k": "secret ü"}]}'.encode('utf-8')

    payload = crypto.encrypt(key, plaintext)
    assert len(payload) == crypto.NONCE_SIZE + len(plaintext) + crypto.TAG_SIZE
    assert plaintext not in payload, "Ciphertext should not contain plaintext"

    assert crypto.decrypt(key, payload) == plaintext, "Decryption should recover plaintext"
    print("  [OK] Encryption/decryption works")

    # Fresh nonce every call
    again = crypto.encrypt(key, plaintext)
    assert payload[:crypto.NONCE_SIZE] != again[:crypto.NONCE_SIZE], "Nonce must never repeat"
    assert payload != again
    print("  [OK] Nonces are unique per call")

    # Flip a bit in ciphertext
    tampered = bytearray(payload)
    tampered[crypto.NONCE_SIZE] ^= 1
    try:
        crypto.decrypt(key, bytes(tampered))
        assert False, "Should have detected tampering"
    except AuthenticationError:
        print("  [OK] Tampering detection works")

    # Wrong key
    try:
        crypto.decrypt(os.urandom(32), payload)
        assert False, "Should have rejected wrong key"
    except AuthenticationError:
        print("  [OK] Wrong key detected")

    # Truncated payload
    try:
        crypto.decrypt(key, payload[:crypto.NONCE_SIZE + 3])
        assert False, "Should have rejected truncated payload"
    except AuthenticationError:
        print("  [OK] Truncated payload rejected")


def test_store_framing():
    """Test salt || payload framing of the store file."""
    print("Testing Store Framing...")

    salt = crypto.new_salt()
    payload = crypto.encrypt(os.urandom(32), b"{}")
    blob = crypto.pack_store(salt, payload)

    assert crypto.unpack_store(blob) == (salt, payload)

    try:
        crypto.unpack_store(blob[:crypto.SALT_SIZE + 4])
        assert False, "Should reject short files"
    except StorageError:
        print("  [OK] Short store file rejected")


def test_canonical_json():
    """Test canonical serialization and hashcode."""
    print("Testing Canonical JSON...")

    a = {"b": [{"y": "1", "x": "2"}], "a": [{"k": "ü"}]}
    b = {"a": [{"k": "ü"}], "b": [{"x": "2", "y": "1"}]}

    assert crypto.canonical_json(a) == crypto.canonical_json(b), "Key order should not matter"
    assert crypto.canonical_json({"k": "ü"}) == '{"k":"ü"}'.encode('utf-8')
    assert crypto.hashcode(a) == crypto.hashcode(b)
    assert crypto.hashcode(a) != crypto.hashcode({"a": [{"k": "u"}]})
    assert len(crypto.hashcode(a)) == 64
    print("  [OK] Canonical JSON works")


class _Answers:
    def __init__(self, *answers):
        self.answers = list(answers)
        self.asked = 0

    def __call__(self, prompt):
        self.asked += 1
        return self.answers.pop(0)


def _fast(func):
    """Run func with cheap scrypt and no backoff sleep."""
    saved = crypto.SCRYPT_N, keycache.BACKOFF_STEP
    crypto.SCRYPT_N, keycache.BACKOFF_STEP = FAST_N, 0
    try:
        func()
    finally:
        crypto.SCRYPT_N, keycache.BACKOFF_STEP = saved


def test_key_cache_freshness():
    """Test cache expiry based on file mtime."""
    print("Testing Key Cache Expiry...")

    def run():
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "sub" / "KEYCACHE"
            salt = crypto.new_salt()

            cache = KeyCache(path, 60, _Answers())
            assert not cache.is_fresh(), "Missing cache is never fresh"

            # Missing cache -> empty passphrase, no prompt
            key = cache.prepare(salt)
            assert key == crypto.derive_key("", salt)
            assert path.read_bytes() == key
            assert cache.is_fresh()

            # Old mtime -> stale
            old = time.time() - 120
            os.utime(path, (old, old))
            assert not cache.is_fresh(), "Cache older than expiry is stale"

            # Expiry 0 never expires
            assert KeyCache(path, 0, _Answers()).is_fresh()

            # Stale cache -> re-derived with empty passphrase
            stale = KeyCache(path, 60, _Answers())
            path.write_bytes(os.urandom(32))
            os.utime(path, (old, old))
            assert stale.prepare(salt) == crypto.derive_key("", salt)

            # Lock removes the file and the active key
            stale.lock()
            assert not path.exists()
            assert stale.active_key is None
            stale.lock()  # twice is fine

    _fast(run)
    print("  [OK] Key cache expiry works")


def test_key_cache_permissions():
    """Test the key file and its directory are private to the user."""
    print("Testing Key Cache Permissions...")
    if os.name != "posix":
        print("  [SKIP] POSIX permissions only")
        return

    def run():
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "pmanager" / "KEYCACHE"
            salt = crypto.new_salt()

            KeyCache(path, 300, _Answers()).prepare(salt)
            assert path.stat().st_mode & 0o777 == 0o600
            assert path.parent.stat().st_mode & 0o777 == 0o700

            # An existing, wider file is tightened on the next flush
            os.chmod(path, 0o644)
            KeyCache(path, 300, _Answers()).set_key("new", salt)
            assert path.stat().st_mode & 0o777 == 0o600
            assert path.read_bytes() == crypto.derive_key("new", salt)

    _fast(run)
    print("  [OK] Key cache is private")


def test_key_cache_retry():
    """Test re-prompt on wrong passphrase and the trial limit."""
    print("Testing Wrong Passphrase Retry...")

    def run():
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "KEYCACHE"
            salt = crypto.new_salt()
            payload = crypto.encrypt(crypto.derive_key("right", salt), b"data")

            # Empty passphrase fails, then two wrong answers, then the right one
            answers = _Answers("wrong1", "wrong2", "right")
            cache = KeyCache(path, 300, answers)
            assert cache.decrypt(salt, payload) == b"data"
            assert answers.asked == 3
            assert path.read_bytes() == crypto.derive_key("right", salt)
            print("  [OK] Re-prompt after wrong passphrase works")

            # Next session reuses the cache without asking
            quiet = _Answers()
            assert KeyCache(path, 300, quiet).decrypt(salt, payload) == b"data"
            assert quiet.asked == 0
            print("  [OK] Cached key reused")

            # Too many wrong answers
            path.unlink()
            stubborn = _Answers(*(["nope"] * keycache.PASSPHRASE_TRIAL_LIMIT))
            try:
                KeyCache(path, 300, stubborn).decrypt(salt, payload)
                assert False, "Should give up after the trial limit"
            except AuthenticationError as e:
                assert "Maximum passphrase trial" in str(e)
                assert stubborn.asked == keycache.PASSPHRASE_TRIAL_LIMIT
                print("  [OK] Trial limit enforced")

    _fast(run)


def run_all_tests():
    """Run all tests."""
    print("=" * 70)
    print("PManager - Crypto + Key Cache Test Suite")
    print("=" * 70)
    print()

    tests = [
        test_kdf,
        test_encryption,
        test_store_framing,
        test_canonical_json,
        test_key_cache_freshness,
        test_key_cache_permissions,
        test_key_cache_retry,
    ]

    failed = []

    for test in tests:
        try:
            test()
            print()
        except Exception as e:
            print(f"  [FAIL] TEST FAILED: {e}")
            failed.append((test.__name__, e))
            print()

    print("=" * 70)
    if not failed:
        print("[OK] ALL TESTS PASSED!")
    else:
        print(f"[FAIL] {len(failed)} TESTS FAILED:")
        for name, error in failed:
            print(f"  - {name}: {error}")
    print("=" * 70)

    return len(failed) == 0


if __name__ == "__main__":
    import sys
    success = run_all_tests()
    sys.exit(0 if success else 1)
