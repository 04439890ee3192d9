"""
PManager - Guided CLI Journey (single run, no user input)

Run: python demo.py

This script simulates what a first-time user would see when using `pm` and
explains what happens under the hood. It walks through:
 - Store initialization (passphrase setup, seed document)
 - Querying with fuzzy scope matching
 - Creating, inserting and editing sentences
 - Candidate selection when several scopes match
 - Searching keys and values
 - Moving documents and renaming scopes
 - Deleting with automatic cleanup
 - Export, hashcode, passphrase reset and lock

All steps print the CLI-style output plus a short "behind the scenes" note.
"""

import io
import json
import tempfile
from pathlib import Path
from textwrap import indent

from pmanager.config import Config
from pmanager.model import ALL
from pmanager.storage import Storage
from pmanager.utils import print_obj


LINE = "=" * 70


def step(title: str, command: str, code_path: str):
    print(f"\n{LINE}\n{title}\n  $ {command}\n  (code: {code_path})\n{LINE}")


def explain(title: str, body: str):
    print(f"\n[Behind the scenes] {title}")
    print(indent(body.strip(), "  "))


def show(res):
    """Print a Response the way the CLI does."""
    print(f"Output: {res.message or ('OK' if res.success else 'FAILED')}")
    if res.data is not None:
        print_obj(res.data)


class ScriptedPrompt:
    """Answers passphrase prompts from a list, echoing what the user 'typed'."""

    def __init__(self, *answers):
        self.answers = list(answers)

    def __call__(self, prompt):
        answer = self.answers.pop(0)
        print(f"Prompt: {prompt}-> user types {'<empty>' if answer == '' else '*' * len(answer)}")
        return answer


def main():
    with tempfile.TemporaryDirectory() as tmp:
        tmp = Path(tmp)
        config = Config(
            store_path=tmp / "PMDATA",
            passphrase_expiry=300,
            key_cache_path=tmp / "KEYCACHE",
        )
        passphrase = "CorrectHorseBatteryStaple!"
        prompt = ScriptedPrompt(passphrase, passphrase)
        storage = Storage(config, prompt)

        # 1) First use
        step("First use: query the seed document", "pm scopedemo nestObj tmpKey",
             "pmanager/storage.py:_set_up")
        show(storage.get("scopedemo", ALL, ["nestObj", "tmpKey"]))
        explain(
            "Initialization",
            "No store file yet, so the passphrase is asked twice, a random 16-byte salt is drawn "
            "and scrypt (N=2^17, r=8, p=1) turns passphrase+salt into a 32-byte key. The key is "
            "cached in a temp file so the next commands do not ask again for 5 minutes. "
            "'scopedemo' matched 'scopeDemo' by case-insensitive substring.",
        )

        # 2) Create
        step("Create sentences", "pm -c github account token ghp_demo_token",
             "pmanager/storage.py:set / pmanager/model.py:update_doc")
        show(storage.set("github", 1, ["account", "token"], "ghp_demo_token", create=True))
        show(storage.set("github", 1, ["user"], "alice", create=True))
        show(storage.set("gitlab", 1, ["user"], "alice-lab", create=True))
        explain(
            "Create mode",
            "Missing scope, document and intermediate objects are created. Create never "
            "overwrites: running the same command again fails with 'already exists'.",
        )
        show(storage.set("github", 1, ["user"], "bob", create=True))

        # 3) Insert and edit
        step("Insert a second document, then edit it", "pm -i github:1 user bot && pm -e github:1 user robot",
             "pmanager/storage.py:set")
        show(storage.set("github", 1, ["user"], "bot", insert=True))
        show(storage.set("github", 1, ["user"], "robot"))
        show(storage.get("github", ALL, ["user"]))
        explain(
            "Insert vs edit",
            "Insert splices an empty document in at the index (shifting the rest). Edit overwrites "
            "leaves freely but needs -f to overwrite an object.",
        )
        show(storage.set("github", 2, ["account"], "flat"))

        # 4) Candidates
        step("Ambiguous scope", "pm git user   then   pm -n 2 git user",
             "pmanager/model.py:resolve_scopes / select_candidate")
        show(storage.get("git", ALL, ["user"]))
        show(storage.get("git", ALL, ["user"], candidate=2))

        # 5) Search
        step("Search", "pm -s ghp", "pmanager/storage.py:search / pmanager/model.py:search_obj")
        show(storage.search("ghp"))
        explain(
            "Search",
            "Every key and leaf value of every document is scanned. One matching scope returns all "
            "of its documents; several return the candidate list.",
        )

        # 6) Move and rename
        step("Move a document and rename a scope", "pm --move github:1 bots:1 && pm --move gitlab lab",
             "pmanager/storage.py:move / rename")
        show(storage.move("github", 1, "bots", 1))
        show(storage.rename("gitlab", "lab"))
        show(storage.rename("lab", "github"))
        explain(
            "Move vs rename",
            "Move pops the document, inserts it before the target index (or appends) and drops "
            "the source scope once empty. Rename refuses to overwrite an existing scope.",
        )

        # 7) Delete
        step("Delete with cleanup", "pm -d bots user", "pmanager/storage.py:delete")
        show(storage.delete("bots", 1, ["user"]))
        show(storage.get("bots", ALL, []))
        explain(
            "Cleanup",
            "Deleting the last sentence empties the document, so it is removed; the scope is then "
            "empty and removed too. Non-empty objects and whole documents need -f.",
        )
        show(storage.delete("github", 1, ["account"]))

        # 8) Export and hashcode
        step("Export and hashcode", "pm --export && pm --hashcode", "pmanager/storage.py:export / hashcode")
        out = io.StringIO()
        storage.export(out=out)
        print(out.getvalue())
        code = storage.hashcode().data
        print(f"Output: {int(code, 16) % 10**6}")
        explain(
            "Hashcode",
            "SHA-256 over canonical JSON (sorted keys, compact). Equal stores give equal codes, "
            "so scripts can cheaply check whether anything changed.",
        )

        # 9) Reset passphrase and lock
        step("Reset passphrase, lock, unlock", "pm --reset-passphrase && pm --lock && pm github:1 user",
             "pmanager/storage.py:reset_passphrase / pmanager/keycache.py:decrypt")
        new_passphrase = "NewPassphrase123!"
        storage.ask_secret = ScriptedPrompt(new_passphrase, new_passphrase)
        show(storage.reset_passphrase())
        show(storage.lock())
        fresh = Storage(config, ScriptedPrompt("wrong guess", new_passphrase))
        show(fresh.get("github", 1, ["user"]))
        explain(
            "Retry",
            "With no cached key the empty passphrase is tried first, then the user is asked. "
            "Each wrong answer waits a little longer; after 5 wrong answers the command fails.",
        )

        print(f"\nStore on disk: {config.store_path.stat().st_size} bytes (salt || nonce || ciphertext || tag)")
        print(json.dumps(config.as_dict(), indent=2))
    print("\nCleaned up temporary store.")


if __name__ == "__main__":
    main()
