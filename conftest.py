"""
Shared pytest fixtures for PManager tests.

scrypt is made cheap and retry backoff instant so the suite runs fast.
Every test gets its own store file and key cache under tmp_path.
"""

import io
import json

import pytest

from pmanager import config as pm_config
from pmanager import crypto, keycache
from pmanager.config import Config
from pmanager.storage import Storage


class Prompter:
    """Scripted ask_secret: hands out answers in order and records prompts."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.prompts = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        if not self.answers:
            raise AssertionError(f"unexpected passphrase prompt: {prompt}")
        return self.answers.pop(0)


@pytest.fixture(autouse=True)
def fast_crypto(monkeypatch):
    monkeypatch.setattr(crypto, "SCRYPT_N", 2**10)
    monkeypatch.setattr(keycache.time, "sleep", lambda seconds: None)


@pytest.fixture
def isolated_home(tmp_path, monkeypatch):
    """Point config, store and key cache at tmp_path."""
    monkeypatch.setenv("PMANAGER_HOME", str(tmp_path / "home"))
    monkeypatch.setattr(pm_config, "default_key_cache_path", lambda: tmp_path / "KEYCACHE")
    return tmp_path


@pytest.fixture
def make_storage(tmp_path):
    """Build a Storage on tmp_path with a scripted prompter."""
    def factory(prompter=None, expiry=300):
        cfg = Config(
            store_path=tmp_path / "PMDATA",
            passphrase_expiry=expiry,
            key_cache_path=tmp_path / "KEYCACHE",
        )
        return Storage(cfg, prompter or Prompter())
    return factory


@pytest.fixture
def store(make_storage):
    """Create a store (empty passphrase) holding data, return its Storage."""
    def factory(data):
        storage = make_storage(Prompter("", ""))
        res = storage.import_(stdin=io.StringIO(json.dumps(data)))
        assert res.success, res.message
        return storage
    return factory
