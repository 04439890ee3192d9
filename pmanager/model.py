"""
PManager - Document Store Model

The decrypted store is plain JSON:

    {
        "<scope>": [                      # ordered, 1-based when addressed
            {"<key>": "<leaf>",           # a sentence with a string value
             "<key>": {"<key>": ...}},    # a sentence with a nested object
            ...
        ],
        ...
    }

A sentence value is exactly one of two shapes: a str (leaf) or a dict (node)
whose values follow the same rule. Lists, numbers, booleans and null are
never allowed.

This module is pure data: validation and key chain traversal over dicts.
It never reads or writes files.
"""

from typing import Any, Dict, List, Optional, Sequence

from .exceptions import (
    AmbiguousError,
    ConflictError,
    ForceRequiredError,
    NotFoundError,
    ValidationError,
)


ALL = 'all'              # index sentinel: every document of a scope
WILDCARD = '*'           # scope token for "all scopes" on the command line
NON_COMPLIANT = 'Non-compliant data input.'
MAX_DEPTH = 100          # deepest allowed object nesting in a document

Document = Dict[str, Any]
Store = Dict[str, List[Document]]


# =============================================================================
# Validation
# =============================================================================

def is_sentence_value(value: Any) -> bool:
    """
    True if value is a str, or a dict of str keys to sentence values.

    Walks the tree with an explicit stack; objects nested deeper than
    MAX_DEPTH are rejected.
    """
    pending = [(value, 1)]
    while pending:
        node, depth = pending.pop()
        if isinstance(node, str):
            continue
        if not isinstance(node, dict) or depth > MAX_DEPTH:
            return False
        for key, child in node.items():
            if not isinstance(key, str):
                return False
            pending.append((child, depth + 1))
    return True


def check_scope_name(name: str) -> None:
    """Scope names are never empty and never the wildcard."""
    if not isinstance(name, str) or not name.strip():
        raise ValidationError('Scope name cannot be empty.')
    if name == WILDCARD:
        raise ValidationError(f'Scope name cannot be "{WILDCARD}".')


def check_store(data: Any) -> Store:
    """
    Check that data is a compliant store.

    - top level is an object
    - every scope name is valid and maps to a non-empty list
    - every document is a non-empty object of sentence values

    Raises:
        ValidationError: on the first violation (whole input is rejected)
    """
    if not isinstance(data, dict):
        raise ValidationError(NON_COMPLIANT)
    for scope, documents in data.items():
        if not isinstance(scope, str) or not scope.strip() or scope == WILDCARD:
            raise ValidationError(NON_COMPLIANT)
        if not isinstance(documents, list) or len(documents) == 0:
            raise ValidationError(NON_COMPLIANT)
        for doc in documents:
            if not isinstance(doc, dict) or len(doc) == 0:
                raise ValidationError(NON_COMPLIANT)
            if not is_sentence_value(doc):
                raise ValidationError(NON_COMPLIANT)
    return data


# =============================================================================
# Scope Resolution
# =============================================================================

def resolve_scopes(target: str, store: Store, fuzzy: bool = True) -> List[str]:
    """
    Find scopes matching target.

    Exact: target must equal a scope name (case-sensitive).
    Fuzzy: case-insensitive substring; empty target matches every scope.
    """
    if not fuzzy:
        return [target] if target in store else []
    target = target.lower()
    return [scope for scope in store if target in scope.lower()]


def select_candidate(scopes: Sequence[str], candidate: Optional[int] = None,
                     hint: str = 'Select candidate scope with flag "-n".') -> str:
    """
    Reduce a list of matched scopes to one.

    Args:
        scopes: Matched scope names
        candidate: 1-based selection, used only when there are several
        hint: Appended to the ambiguity message

    Raises:
        NotFoundError: no scopes
        AmbiguousError: several scopes and no valid candidate
    """
    if len(scopes) == 0:
        raise NotFoundError('No scope found.')
    if len(scopes) == 1:
        return scopes[0]
    if candidate is None:
        raise AmbiguousError(f'{len(scopes)} scopes found. {hint}', list(scopes))
    if candidate < 1 or candidate > len(scopes):
        raise AmbiguousError(
            f'{len(scopes)} scopes found. Invalid candidate number {candidate}.', list(scopes))
    return scopes[candidate - 1]


# =============================================================================
# Document Access
# =============================================================================

def has_index(documents: List[Document], index: int) -> bool:
    """1-based index check (0 and negatives are never valid)."""
    return 1 <= index <= len(documents)


def _chain(key_chain: Sequence[str], upto: Optional[int] = None) -> str:
    return '.'.join(key_chain[:upto])


def query_doc(key_chain: Sequence[str], document: Document) -> Any:
    """
    Follow key_chain into document.

    An empty chain returns the document itself.

    Raises:
        NotFoundError: naming the shortest missing prefix
    """
    obj = document
    for i, key in enumerate(key_chain):
        if not isinstance(obj, dict) or key not in obj:
            raise NotFoundError(f'Key "{_chain(key_chain, i + 1)}" does not exist.')
        obj = obj[key]
    return obj


def update_doc(key_chain: Sequence[str], value: Any, document: Document,
               create: bool = False, force: bool = False) -> None:
    """
    Set the sentence at key_chain to value, in place.

    create: make missing intermediate objects and a missing final key;
            an existing final key is then a conflict (never overwritten)
    force:  allow overwriting a final key that holds an object
    """
    if len(key_chain) == 0:
        raise ValidationError('Key chain cannot be missing.')
    if len(key_chain) > MAX_DEPTH:
        raise ValidationError(f'Key chain cannot be longer than {MAX_DEPTH} keys.')
    if not is_sentence_value(value):
        raise ValidationError('Sentence value must be a string or an object of strings.')

    obj = document
    for i, key in enumerate(key_chain[:-1]):
        if key not in obj:
            if not create:
                raise NotFoundError(f'Key "{_chain(key_chain, i + 1)}" does not exist.')
            obj[key] = {}
        obj = obj[key]
        if not isinstance(obj, dict):
            raise ConflictError(f'Key "{_chain(key_chain, i + 1)}" is a sentence, not an object.')

    last = key_chain[-1]
    if last in obj:
        if create:
            raise ConflictError(f'Key "{_chain(key_chain)}" already exists.')
        if isinstance(obj[last], dict) and not force:
            raise ForceRequiredError(f'Not allowed to overwrite object under "{_chain(key_chain)}".')
        obj[last] = value
    elif create:
        obj[last] = value
    else:
        raise NotFoundError(f'Key "{_chain(key_chain)}" does not exist.')


def delete_doc(key_chain: Sequence[str], document: Document, force: bool = False) -> None:
    """
    Remove the sentence at key_chain, in place.

    A non-empty object needs force; an empty object or a leaf does not.
    """
    obj = document
    for i, key in enumerate(key_chain[:-1]):
        if not isinstance(obj, dict) or key not in obj:
            raise NotFoundError(f'Key "{_chain(key_chain, i + 1)}" does not exist.')
        obj = obj[key]

    last = key_chain[-1]
    if not isinstance(obj, dict) or last not in obj:
        raise NotFoundError(f'Key "{_chain(key_chain)}" does not exist.')
    target = obj[last]
    if isinstance(target, dict) and len(target) > 0 and not force:
        raise ForceRequiredError(f'Not allowed to delete non-empty object under "{_chain(key_chain)}".')
    del obj[last]


# =============================================================================
# Search
# =============================================================================

def search_obj(obj: Document, text: str, fuzzy: bool = True) -> bool:
    """
    True if any key, or any leaf string, in obj matches text.

    Fuzzy matching expects text already lowercased.
    """
    for key, value in obj.items():
        if _matches(key, text, fuzzy):
            return True
        if isinstance(value, str):
            if _matches(value, text, fuzzy):
                return True
        elif isinstance(value, dict) and search_obj(value, text, fuzzy):
            return True
    return False


def _matches(candidate: str, text: str, fuzzy: bool) -> bool:
    if fuzzy:
        return text in candidate.lower()
    return candidate == text
