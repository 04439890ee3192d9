"""
PManager - Key Cache

Keeps the derived store key around so the user is not asked for the
passphrase on every command:

- The key is written to a small file in the temp directory
- The file's mtime decides whether it is still fresh (expiry in seconds)
- Expiry 0 means the cache never expires while the file exists
- When the cache is missing or stale, the empty passphrase is tried first

Decryption failures drop the active key and re-prompt, with an increasing
delay, up to PASSPHRASE_TRIAL_LIMIT times.
"""

import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional

from . import crypto
from .exceptions import AuthenticationError, StorageError

logger = logging.getLogger(__name__)


PASSPHRASE_TRIAL_LIMIT = 5
BACKOFF_STEP = 0.5       # seconds added per failed trial
PASSPHRASE_PROMPT = 'Passphrase (not displayed): '


class KeyCache:
    """
    Holds the active key for one process.

    Usage:
        cache = KeyCache(config.key_cache_path, config.passphrase_expiry, ask_secret)
        plaintext = cache.decrypt(salt, payload)
        payload = cache.encrypt(salt, plaintext)
    """

    def __init__(self, path, expiry: int, ask_secret: Callable[[str], str]):
        self.path = Path(path)
        self.expiry = int(expiry)
        self.ask_secret = ask_secret
        self.active_key: Optional[bytes] = None

    def is_fresh(self) -> bool:
        """True if the cache file exists and has not expired."""
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return False
        if self.expiry == 0:
            return True
        return time.time() - mtime <= self.expiry

    def flush(self, salt: bytes, passphrase: Optional[str] = None) -> bytes:
        """
        Derive a key and write it to the cache file.

        Args:
            salt: Store salt
            passphrase: If None, ask the user
        """
        if passphrase is None:
            passphrase = self.ask_secret(PASSPHRASE_PROMPT)
        key = crypto.derive_key(passphrase, salt)
        try:
            self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, 'wb') as f:
                # the mode above only applies when the file is new
                os.chmod(self.path, 0o600)
                f.write(key)
        except OSError as e:
            raise StorageError(f"Failed to write to key cache file: {e}")
        logger.debug("Key cache flushed at %s", self.path)
        self.active_key = key
        return key

    def prepare(self, salt: bytes, force_flush: bool = False) -> bytes:
        """
        Make sure there is an active key and return it.

        Order:
        1. Already active -> reuse
        2. force_flush -> ask the user
        3. Cache missing or expired -> try the empty passphrase
        4. Otherwise read the cached key
        """
        if self.active_key is not None:
            return self.active_key

        if force_flush:
            return self.flush(salt)
        if not self.is_fresh():
            logger.debug("Key cache missing or expired, trying empty passphrase")
            return self.flush(salt, '')

        try:
            key = self.path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read key cache file: {e}")
        if len(key) != crypto.KEY_SIZE:
            logger.debug("Key cache has wrong size, discarding")
            return self.flush(salt, '')

        logger.debug("Using cached key from %s", self.path)
        self.active_key = key
        return key

    def set_key(self, passphrase: str, salt: bytes) -> None:
        """Replace the active key with one derived from passphrase."""
        self.active_key = None
        self.flush(salt, passphrase)

    def lock(self) -> None:
        """Forget the active key and remove the cache file."""
        self.active_key = None
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to remove key cache file: {e}")
        logger.debug("Key cache removed")

    def encrypt(self, salt: bytes, plaintext: bytes) -> bytes:
        """Encrypt with the active key (prepared for salt if needed)."""
        key = self.prepare(salt)
        return crypto.encrypt(key, plaintext)

    def decrypt(self, salt: bytes, payload: bytes,
                trial_limit: int = PASSPHRASE_TRIAL_LIMIT) -> bytes:
        """
        Decrypt payload, re-prompting on authentication failure.

        Trial 0 uses the active/cached key (or the empty passphrase);
        trials 1..trial_limit ask the user. Before each retry the process
        sleeps BACKOFF_STEP * trial seconds.

        Raises:
            AuthenticationError: trial_limit exceeded
        """
        for trial in range(trial_limit + 1):
            key = self.prepare(salt, force_flush=trial > 0)
            try:
                return crypto.decrypt(key, payload)
            except AuthenticationError:
                self.active_key = None
                if trial > 0:
                    logger.warning("Wrong passphrase (attempt %d of %d)", trial, trial_limit)
                time.sleep(BACKOFF_STEP * trial)
        raise AuthenticationError("Maximum passphrase trial reached.")
