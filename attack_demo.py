"""
PManager - Attack Demonstration

Run: python attack_demo.py

What it shows (and why attacks fail):
1) Wrong passphrase cannot decrypt the store, even after retries.
2) Ciphertext tampering is detected by AES-GCM.
3) Salt tampering derives a different key, so decryption fails.
4) A truncated store file is rejected before decryption.
5) Non-compliant import data is rejected and the store is left unchanged.
"""

import io
import json
import tempfile
from pathlib import Path

from pmanager.config import Config
from pmanager.crypto import NONCE_SIZE, SALT_SIZE
from pmanager.model import ALL
from pmanager.storage import Storage


LINE = "=" * 70


def section(title: str):
    print(f"\n{LINE}\n{title}\n{LINE}")


def answers(*values):
    """ask_secret replacement that replays values, then keeps giving the last one."""
    queue = list(values)

    def ask(prompt):
        return queue.pop(0) if len(queue) > 1 else queue[0]
    return ask


def main():
    with tempfile.TemporaryDirectory() as tmp:
        tmp = Path(tmp)
        config = Config(tmp / "PMDATA", 300, tmp / "KEYCACHE")
        passphrase = "CorrectHorseBatteryStaple!"

        # Initialize and add one sentence
        storage = Storage(config, answers(passphrase, passphrase))
        storage.set("example.com", 1, ["password"], "super_secret_password", create=True)
        original = config.store_path.read_bytes()

        # 1) Wrong passphrase
        section("Attack 1: Wrong passphrase")
        print("(each retry waits a little longer, this takes a few seconds)")
        storage.lock()
        res = Storage(config, answers("wrong_password")).get("example", ALL, ["password"])
        if res.success:
            print("Unexpected: decryption succeeded with wrong passphrase")
        else:
            print(f"Expected failure: wrong passphrase cannot decrypt ({res.message})")

        # 2) Ciphertext tampering (AES-GCM)
        section("Attack 2: Ciphertext tampering (AES-GCM)")
        blob = bytearray(original)
        blob[SALT_SIZE + NONCE_SIZE] ^= 1  # flip one bit of the first ciphertext byte
        config.store_path.write_bytes(bytes(blob))
        storage = Storage(config, answers(passphrase))
        res = storage.get("example", ALL, ["password"])
        if res.success:
            print("Unexpected: tampered ciphertext still decrypted")
        else:
            print(f"Expected failure: AES-GCM detected tampering ({res.message})")

        # 3) Salt tampering
        section("Attack 3: Salt tampering")
        storage.lock()
        blob = bytearray(original)
        blob[0] ^= 1
        config.store_path.write_bytes(bytes(blob))
        res = Storage(config, answers(passphrase)).get("example", ALL, ["password"])
        if res.success:
            print("Unexpected: store decrypted with a tampered salt")
        else:
            print(f"Expected failure: wrong salt gives the wrong key ({res.message})")

        # 4) Truncated store
        section("Attack 4: Truncated store file")
        config.store_path.write_bytes(original[:SALT_SIZE + 8])
        res = Storage(config, answers(passphrase)).get("example", ALL, ["password"])
        if res.success:
            print("Unexpected: truncated store was accepted")
        else:
            print(f"Expected failure: truncated store rejected ({res.message})")

        # Restore the store for the next step
        config.store_path.write_bytes(original)

        # 5) Non-compliant import
        section("Attack 5: Non-compliant import data")
        storage = Storage(config, answers(passphrase))
        before = storage.hashcode().data
        bad = {"example.com": [{"password": ["not", "a", "sentence"]}]}
        res = storage.import_(stdin=io.StringIO(json.dumps(bad)))
        after = storage.hashcode().data
        if res.success:
            print("Unexpected: non-compliant data was imported")
        else:
            print(f"Expected failure: import rejected ({res.message})")
        print(f"Store unchanged: {before == after}")

        storage.lock()
    print("\nDemo complete. All showcased attacks failed as expected.")


if __name__ == "__main__":
    main()
