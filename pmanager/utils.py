"""
PManager - Terminal Helpers

Masked passphrase entry and result printing. The storage
engine never imports this module; the CLI passes ask_secret in.
"""

import getpass
import json
import sys
from typing import Any, TextIO


CANCEL_TOKEN = 'c'


def ask_secret(prompt: str) -> str:
    """
    Read a secret without echoing it.

    Typing the cancel token, Ctrl-C or closing stdin aborts the whole
    process with status 1.
    """
    try:
        secret = getpass.getpass(f"{prompt}[cancel? {CANCEL_TOKEN}] ")
    except (EOFError, KeyboardInterrupt):
        print(file=sys.stderr)
        sys.exit(1)
    if secret == CANCEL_TOKEN:
        sys.exit(1)
    return secret


def print_obj(obj: Any, out: TextIO = None) -> None:
    """Print strings as-is and everything else as indented JSON."""
    out = out or sys.stdout
    if isinstance(obj, str):
        print(obj, file=out)
    else:
        print(json.dumps(obj, indent=2, ensure_ascii=False), file=out)


HELP_EPILOG = """\
The "pm" command works under different modes based on the provided flags.
Without a mode flag it runs in query mode and fetches the sentence value at
<key chain> in the addressed document(s) of <scope>.

Querying <scope> supports fuzzy matching (case-insensitive substring); use
"*" to match every scope. One scope holds several documents told apart by
<index> (1-based, "all" for every document). A document contains sentences,
i.e. key-value pairs whose value is a string or a nested object. The
<key chain> is the list of keys, separated by spaces, leading to a value.

Values starting with "-" can be passed after "--".
"""
