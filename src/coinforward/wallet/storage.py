"""
On-disk wallet files.

<prefix>.mnemonic  BIP39 phrase (plaintext, mode 0600)
<prefix>.wallet    JSON bookkeeping: deposits already swept to the destination
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from loguru import logger

from coinforward.wallet.keys import generate_mnemonic, is_valid_mnemonic


class WalletStorage:
    def __init__(self, directory: Path, prefix: str):
        self.directory = directory
        self.prefix = prefix

    @property
    def mnemonic_file(self) -> Path:
        return self.directory / f"{self.prefix}.mnemonic"

    @property
    def state_file(self) -> Path:
        return self.directory / f"{self.prefix}.wallet"

    def load_or_create_mnemonic(self) -> str:
        if self.mnemonic_file.exists():
            words = " ".join(self.mnemonic_file.read_text().split())
            if not is_valid_mnemonic(words):
                raise ValueError(f"Invalid mnemonic in {self.mnemonic_file}")
            return words

        words = generate_mnemonic()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.mnemonic_file.write_text(words + "\n")
        os.chmod(self.mnemonic_file, 0o600)
        logger.warning(
            f"Created new wallet seed at {self.mnemonic_file} "
            "(PLAINTEXT - back it up and keep it private)"
        )
        return words

    def load_forwarded_deposits(self) -> set[str]:
        if not self.state_file.exists():
            return set()
        data = json.loads(self.state_file.read_text())
        return set(data.get("forwarded_deposits", []))

    def save_forwarded_deposits(self, txids: set[str]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = self.state_file.with_suffix(".tmp")
        tmp.write_text(json.dumps({"forwarded_deposits": sorted(txids)}, indent=2))
        tmp.replace(self.state_file)
