"""
PManager - Local Secrets Manager

Keeps secret notes in one encrypted JSON file on your machine.

Key Features:
- Scopes: named groups of documents, matched fuzzily
- Documents: nested key-value sentences addressed by a key chain
- Strong crypto: AES-256-GCM + scrypt, per-store random salt
- Key cache: no passphrase prompt for a few minutes after unlocking
- Import/export as plain JSON (file, URL or stdin)

Components:
- crypto.py: Key derivation, AES-GCM, canonical JSON
- keycache.py: Cached store key with expiry and re-prompt on failure
- model.py: Structural rules and key chain traversal
- storage.py: The encrypted store and all its operations
- config.py: User configuration file
- cli.py: Command-line interface (uses built-in argparse)

Usage:
    pm scopeDemo nestObj tmpKey                   # Query a value
    pm -c github token ghp_xxx                    # Create a sentence
    pm -s token                                   # Search
    pm -d -f github                               # Delete a document
    pm --export backup.json                       # Export plain JSON
"""

__version__ = "1.0.0"
__author__ = "PManager Team"
