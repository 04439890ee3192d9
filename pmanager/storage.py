"""
PManager - Storage Engine

This file handles:
- Reading and writing the encrypted store file
- First-use initialization (passphrase + seed data)
- Query/mutation operations: get, set, delete, move, rename, search
- Import/export, hashcode, passphrase reset, lock

Every public operation loads the store from disk, works on the decrypted
dict in memory and, if it changed something, writes the whole store back.
Nothing is written when an operation fails, so a failure can never leave a
half-applied change behind.

Public operations never raise PManagerError; they return a Response.
"""

import copy
import functools
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, TextIO, Union

import httpx

from . import crypto
from .config import Config
from .exceptions import (
    AmbiguousError,
    ConflictError,
    ForceRequiredError,
    NotFoundError,
    PManagerError,
    StorageError,
    ValidationError,
)
from .keycache import KeyCache
from .model import (
    ALL,
    Store,
    check_scope_name,
    check_store,
    delete_doc,
    has_index,
    query_doc,
    resolve_scopes,
    search_obj,
    select_candidate,
    update_doc,
)

logger = logging.getLogger(__name__)


IMPORT_TIMEOUT = 30.0    # seconds, for imports from a URL

QUERY_HINT = 'Select candidate scope with flag "-n", or add "-U" for exact matching.'
SEARCH_HINT = 'Select candidate scope with flag "-n".'

SEED_DATA = {
    "scopeDemo": [
        {
            "name": "document1",
            "description": "This is a sample document.",
            "nestObj": {
                "tmpKey": "fetch me by key chain `scopeDemo nestObj tmpKey`"
            }
        }
    ]
}

Index = Union[int, str]


@dataclass
class Response:
    """Outcome of a storage operation."""

    success: bool
    message: Optional[str] = None
    data: Any = None
    kind: Optional[str] = None


def _responds(method):
    """Turn PManagerError raised by an operation into a failed Response."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except AmbiguousError as e:
            return Response(False, str(e), e.candidates, e.kind)
        except PManagerError as e:
            logger.debug("%s failed: %s", method.__name__, e)
            return Response(False, str(e), None, e.kind)
    return wrapper


def _check_index(index: Index, allow_all: bool = False) -> None:
    if allow_all and index == ALL:
        return
    if isinstance(index, bool) or not isinstance(index, int):
        raise ValidationError('Index can only be a number.')


class Storage:
    """
    The encrypted document store.

    Usage:
        storage = Storage(load_config(), ask_secret)
        res = storage.get("github", ALL, ["token"])
        if res.success:
            print(res.data)
    """

    def __init__(self, config: Config, ask_secret: Callable[[str], str],
                 key_cache: Optional[KeyCache] = None):
        self.config = config
        self.ask_secret = ask_secret
        self.keys = key_cache or KeyCache(
            config.key_cache_path, config.passphrase_expiry, ask_secret)
        self.salt: Optional[bytes] = None

    # =========================================================================
    # QUERY
    # =========================================================================

    @_responds
    def get(self, scope: str, index: Index = ALL, key_chain: Sequence[str] = (),
            candidate: Optional[int] = None, fuzzy: bool = True) -> Response:
        """
        Fetch a value by scope, index and key chain.

        Args:
            scope: Scope name, fuzzy-matched unless fuzzy is False
            index: 1-based document index, or ALL for every document
            key_chain: Keys leading to the value (empty = whole document)
            candidate: 1-based pick when several scopes match
            fuzzy: Case-insensitive substring matching of the scope
        """
        _check_index(index, allow_all=True)
        data = self._read()
        return self._get(data, scope, index, key_chain, candidate, fuzzy)

    def _get(self, data: Store, scope: str, index: Index, key_chain: Sequence[str],
             candidate: Optional[int], fuzzy: bool) -> Response:
        name = select_candidate(resolve_scopes(scope, data, fuzzy), candidate, QUERY_HINT)
        documents = data[name]

        if index == ALL:
            found = []
            for doc in documents:
                try:
                    found.append(query_doc(key_chain, doc))
                except NotFoundError:
                    continue
            if len(found) == 0:
                raise NotFoundError(f'No compliant objects found under scope "{name}".')
            if len(found) == 1:
                return Response(True, f'Scope: "{name}"', found[0])
            return Response(True, f'Scope: "{name}", {len(found)} documents/objects found', found)

        if not has_index(documents, index):
            raise NotFoundError(f'Scope "{name}" does not have index {index}.')
        value = query_doc(key_chain, documents[index - 1])
        message = f'Scope: "{name}"'
        if len(documents) > 1:
            message += f', document {index} ({len(documents)} in total)'
        return Response(True, message, value)

    @_responds
    def search(self, text: str, candidate: Optional[int] = None, fuzzy: bool = True) -> Response:
        """
        Find scopes whose documents contain text in a key or a leaf value.

        A single match (or a selected candidate) returns every document of
        that scope.
        """
        data = self._read()
        needle = text.lower() if fuzzy else text
        scopes = [
            scope for scope, documents in data.items()
            if any(search_obj(doc, needle, fuzzy) for doc in documents)
        ]
        if len(scopes) == 0:
            raise NotFoundError(f'No matching scope found by searching "{text}".')
        name = select_candidate(scopes, candidate, SEARCH_HINT)
        return self._get(data, name, ALL, [], None, fuzzy=False)

    # =========================================================================
    # MUTATION
    # =========================================================================

    @_responds
    def set(self, scope: str, index: int, key_chain: Sequence[str], value: Any,
            insert: bool = False, create: bool = False, force: bool = False) -> Response:
        """
        Modify (or create) a sentence.

        Args:
            scope: Exact scope name
            index: 1-based document index
            key_chain: Keys leading to the sentence (at least one)
            value: String, or object of strings
            insert: Insert a new document at index instead of editing; implies create
            create: Create missing scope, document, objects and sentence;
                    an existing sentence is then a conflict
            force: Allow overwriting a sentence that holds an object
        """
        _check_index(index)
        if insert:
            create = True

        data = self._read()
        if scope not in data:
            if not create:
                raise NotFoundError(f'Scope "{scope}" does not exist.')
            check_scope_name(scope)
            data[scope] = []
        documents = data[scope]

        if not has_index(documents, index):
            if not create:
                raise NotFoundError(f'Scope "{scope}" does not have index {index}.')
            documents.append({})
            position = len(documents)
        else:
            position = index
            if insert:
                documents.insert(index - 1, {})

        update_doc(key_chain, value, documents[position - 1], create, force)
        self._write(data)
        return Response(True)

    @_responds
    def delete(self, scope: str, index: int, key_chain: Sequence[str] = (),
               force: bool = False) -> Response:
        """
        Delete a sentence, or the whole document when key_chain is empty.

        Empty documents and scopes left behind are removed.
        """
        _check_index(index)
        data = self._read()
        documents = data.get(scope)
        if documents is None or not has_index(documents, index):
            raise NotFoundError(f'Scope "{scope}" or index {index} does not exist.')
        document = documents[index - 1]

        if key_chain:
            delete_doc(key_chain, document, force)
        elif not force:
            raise ForceRequiredError(
                f'Not allowed to delete document with index {index} under scope "{scope}".')

        # clean empty document and scope
        if not key_chain or len(document) == 0:
            del documents[index - 1]
            if len(documents) == 0:
                del data[scope]

        self._write(data)
        return Response(True)

    @_responds
    def move(self, scope1: str, index1: int, scope2: str, index2: int) -> Response:
        """
        Move a document to another position, possibly in another scope.

        The document is removed first and then inserted before index2 (or
        appended when index2 is out of range). The target scope is created
        if needed; an emptied source scope is removed.
        """
        _check_index(index1)
        _check_index(index2)
        data = self._read()
        if scope1 not in data or not has_index(data[scope1], index1):
            raise NotFoundError(f'Source scope "{scope1}" or index {index1} does not exist.')
        check_scope_name(scope2)

        document = data[scope1].pop(index1 - 1)
        target = data.setdefault(scope2, [])
        if has_index(target, index2):
            target.insert(index2 - 1, document)
        else:
            target.append(document)

        # clean empty source scope
        if len(data[scope1]) == 0:
            del data[scope1]

        self._write(data)
        return Response(True)

    @_responds
    def rename(self, scope1: str, scope2: str) -> Response:
        """Rename a scope. Source must exist, target must not."""
        data = self._read()
        if scope1 not in data:
            raise NotFoundError(f'Source scope "{scope1}" does not exist.')
        if scope2 in data:
            raise ConflictError(f'Target scope "{scope2}" already exists.')
        check_scope_name(scope2)

        data[scope2] = data.pop(scope1)
        self._write(data)
        return Response(True)

    # =========================================================================
    # IMPORT / EXPORT
    # =========================================================================

    @_responds
    def import_(self, source: Optional[str] = None, stdin: Optional[TextIO] = None) -> Response:
        """
        Replace the store with JSON from a file, a URL or standard input.

        The current store is read first so the passphrase is checked before
        anything else happens. Non-compliant input is rejected whole.
        """
        self._read()
        data = self._load_source(source, stdin)
        check_store(data)
        self._write(data)
        logger.info("Imported %d scopes from %s", len(data), source or "stdin")
        return Response(True, f'Imported {len(data)} scopes.')

    def _load_source(self, source: Optional[str], stdin: Optional[TextIO]) -> Any:
        try:
            if source is None:
                return json.loads((stdin or sys.stdin).read())
            if source.startswith(('http://', 'https://')):
                response = httpx.get(source, timeout=IMPORT_TIMEOUT, follow_redirects=True)
                response.raise_for_status()
                return response.json()
            return json.loads(Path(source).read_text(encoding='utf-8'))
        except httpx.HTTPError as e:
            raise StorageError(f'Failed to fetch "{source}": {e}')
        except (OSError, ValueError, RecursionError) as e:
            raise StorageError(f'Failed to read import data: {e}')

    @_responds
    def export(self, path: Optional[str] = None, out: Optional[TextIO] = None) -> Response:
        """Write the store as indented JSON to path, or to out (stdout)."""
        data = self._read()
        text = json.dumps(data, indent=2, ensure_ascii=False)
        if path is None:
            print(text, file=out or sys.stdout)
            return Response(True)
        try:
            Path(path).write_text(text, encoding='utf-8')
        except OSError as e:
            raise StorageError(f'Failed to write export file: {e}')
        return Response(True, f'Exported to "{path}".')

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    @_responds
    def hashcode(self) -> Response:
        """SHA-256 hex digest of the canonical store."""
        data = self._read()
        return Response(True, None, crypto.hashcode(data))

    @_responds
    def reset_passphrase(self) -> Response:
        """Ask for a new passphrase and re-encrypt the store with it."""
        data = self._read()
        self._set_passphrase_by_asking()
        self._write(data)
        return Response(True, 'Passphrase updated.')

    @_responds
    def lock(self) -> Response:
        """Forget the cached key; the next command asks again."""
        self.keys.lock()
        return Response(True, 'Key cache cleared.')

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _set_passphrase_by_asking(self) -> None:
        """Ask twice until both entries match, then key the store with it."""
        while True:
            passphrase = self.ask_secret('Set passphrase (not displayed): ')
            confirm = self.ask_secret('Confirm passphrase (not displayed): ')
            if passphrase == confirm:
                break
            logger.warning("Passphrases do not match, try again")
        self.salt = crypto.new_salt()
        self.keys.set_key(passphrase, self.salt)

    def _set_up(self) -> None:
        """Initialise the store file on first use."""
        if self.config.store_path.exists():
            return
        logger.info("No data storage at %s, initialising", self.config.store_path)
        self._set_passphrase_by_asking()
        self._write(copy.deepcopy(SEED_DATA))

    def _read(self) -> Store:
        self._set_up()
        try:
            blob = self.config.store_path.read_bytes()
        except OSError as e:
            raise StorageError(f'Failed to read data storage: {e}')

        salt, payload = crypto.unpack_store(blob)
        plaintext = self.keys.decrypt(salt, payload)
        self.salt = salt

        try:
            data = json.loads(plaintext.decode('utf-8'))
        except ValueError as e:
            raise StorageError(f'Data storage is not valid JSON: {e}')
        if not isinstance(data, dict):
            raise StorageError('Data storage does not hold a JSON object.')
        logger.debug("Read %d scopes from %s", len(data), self.config.store_path)
        return data

    def _write(self, data: Store) -> None:
        """Encrypt and atomically replace the store file."""
        plaintext = json.dumps(data, ensure_ascii=False).encode('utf-8')
        blob = crypto.pack_store(self.salt, self.keys.encrypt(self.salt, plaintext))

        path = self.config.store_path
        tmp_path = path.with_name(path.name + '.tmp')
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(blob)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f'Failed to write data storage: {e}')
        logger.debug("Wrote %d scopes to %s", len(data), path)
