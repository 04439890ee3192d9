"""
PManager - Configuration

User settings live in a small JSON file in the platform data directory:

    Windows: %APPDATA%/pmanager/config.json
    macOS:   ~/Library/Preferences/pmanager/config.json
    Other:   $XDG_DATA_HOME (or ~/.local/share)/pmanager/config.json

PMANAGER_HOME overrides the whole directory (handy for tests and for
keeping several stores apart).

Known keys:
    store_path         where the encrypted store is written
    passphrase_expiry  seconds a cached key stays valid (0 = never expires)
"""

import json
import logging
import os
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from .exceptions import StorageError, ValidationError

logger = logging.getLogger(__name__)


APP_NAME = 'pmanager'
CONFIG_FILE = 'config.json'
STORE_FILE = 'PMDATA'
KEY_CACHE_FILE = 'KEYCACHE'
DEFAULT_PASSPHRASE_EXPIRY = 300

CONFIG_KEYS = ('store_path', 'passphrase_expiry')


def data_dir() -> Path:
    """Directory holding config.json and, by default, the store."""
    override = os.environ.get('PMANAGER_HOME')
    if override:
        return Path(override).expanduser()
    if os.environ.get('APPDATA'):
        base = Path(os.environ['APPDATA'])
    elif sys.platform == 'darwin':
        base = Path.home() / 'Library' / 'Preferences'
    else:
        base = Path(os.environ.get('XDG_DATA_HOME') or Path.home() / '.local' / 'share')
    return base / APP_NAME


def default_config_path() -> Path:
    return data_dir() / CONFIG_FILE


def default_key_cache_path() -> Path:
    return Path(tempfile.gettempdir()) / APP_NAME / KEY_CACHE_FILE


@dataclass
class Config:
    """Resolved settings consumed by the storage engine."""

    store_path: Path
    passphrase_expiry: int = DEFAULT_PASSPHRASE_EXPIRY
    key_cache_path: Optional[Path] = None

    def __post_init__(self):
        self.store_path = Path(self.store_path).expanduser()
        if self.key_cache_path is None:
            self.key_cache_path = default_key_cache_path()
        self.key_cache_path = Path(self.key_cache_path)

    def as_dict(self) -> Dict:
        return {
            'store_path': str(self.store_path),
            'passphrase_expiry': self.passphrase_expiry,
        }


def defaults() -> Dict:
    return {
        'store_path': str(data_dir() / STORE_FILE),
        'passphrase_expiry': DEFAULT_PASSPHRASE_EXPIRY,
    }


def read_user_config(path: Optional[Path] = None) -> Dict:
    """
    Read the user config file, creating an empty one if missing.

    Raises:
        StorageError: unreadable file or invalid JSON
    """
    path = Path(path) if path else default_config_path()
    if not path.exists():
        write_user_config({}, path)
    try:
        user = json.loads(path.read_text(encoding='utf-8'))
    except (OSError, ValueError) as e:
        raise StorageError(f"Failed to read or parse user config file: {e}")
    if not isinstance(user, dict):
        raise StorageError(f"User config file {path} must hold a JSON object.")
    return user


def write_user_config(user: Dict, path: Optional[Path] = None) -> None:
    path = Path(path) if path else default_config_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(user, indent=2), encoding='utf-8')
    except OSError as e:
        raise StorageError(f"Failed to write to user config file: {e}")


def _parse_expiry(value) -> int:
    try:
        expiry = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'passphrase_expiry must be a whole number of seconds, got "{value}".')
    if expiry < 0:
        raise ValidationError('passphrase_expiry cannot be negative.')
    return expiry


def load_config(path: Optional[Path] = None) -> Config:
    """Merge user settings over the built-in defaults."""
    merged = defaults()
    merged.update(read_user_config(path))
    logger.debug("Loaded config from %s", path or default_config_path())
    return Config(
        store_path=merged['store_path'],
        passphrase_expiry=_parse_expiry(merged['passphrase_expiry']),
    )


def update_config(key: str, value: Optional[str] = None, path: Optional[Path] = None) -> Dict:
    """
    Set a user config entry, or unset it when value is empty.

    Returns:
        The user config after the change
    """
    if key not in CONFIG_KEYS:
        raise ValidationError(f'Unknown config key "{key}". Known keys: {", ".join(CONFIG_KEYS)}.')
    user = read_user_config(path)
    if value is None or value == '':
        user.pop(key, None)
    elif key == 'passphrase_expiry':
        user[key] = _parse_expiry(value)
    else:
        user[key] = value
    write_user_config(user, path)
    return user
