# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Key stores and credential resolution.

Credential files follow the near-cli layout, one JSON file per account under a
directory per network::

    ~/.near-credentials/testnet/series.testnet.json
    ./neardev/testnet/series.testnet.json

`resolve_credentials` looks in the user's credential directory first and falls back
to the project's ``neardev`` directory, which is where a dev deploy leaves its keys.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import unittest
from typing import Dict, List, Optional, Tuple

from . import ed25519
from .account import Account

DEFAULT_CREDENTIALS_DIR = os.path.join(os.path.expanduser("~"), ".near-credentials")
DEFAULT_FALLBACK_CREDENTIALS_DIR = os.path.join(".", "neardev")


def credentials_path(root: str, network_id: str, account_id: str) -> str:
    return os.path.join(root, network_id, f"{account_id}.json")


class KeyStore:
    """Keys held in memory, indexed by network and account id."""

    _keys: Dict[Tuple[str, str], ed25519.PrivateKey]

    def __init__(self):
        self._keys = {}

    def get_key(self, network_id: str, account_id: str) -> Optional[ed25519.PrivateKey]:
        return self._keys.get((network_id, account_id))

    def set_key(self, network_id: str, account_id: str, key: ed25519.PrivateKey):
        self._keys[(network_id, account_id)] = key


class FileKeyStore(KeyStore):
    """Keys persisted as near-cli credential files below `root`.

    Keys read from disk are cached; writes go to both the cache and the file.
    """

    root: str

    def __init__(self, root: str):
        super().__init__()
        self.root = root

    def get_key(self, network_id: str, account_id: str) -> Optional[ed25519.PrivateKey]:
        key = super().get_key(network_id, account_id)
        if key is not None:
            return key

        path = credentials_path(self.root, network_id, account_id)
        if not os.path.exists(path):
            return None
        with open(path) as file:
            data = json.load(file)
        key = ed25519.PrivateKey.from_str(data["private_key"])
        super().set_key(network_id, account_id, key)
        return key

    def set_key(self, network_id: str, account_id: str, key: ed25519.PrivateKey):
        super().set_key(network_id, account_id, key)
        path = credentials_path(self.root, network_id, account_id)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        Account(account_id, key).store(path)


def resolve_credentials(
    network_id: str,
    account_id: str,
    primary_dir: str = DEFAULT_CREDENTIALS_DIR,
    fallback_dir: str = DEFAULT_FALLBACK_CREDENTIALS_DIR,
) -> Account:
    """Load the credentials of `account_id`, preferring `primary_dir`.

    A missing or unreadable primary file is logged and the fallback is tried.

    Raises:
        CredentialResolutionError: If neither location yields a usable key.
    """
    searched: List[str] = []
    for root in [primary_dir, fallback_dir]:
        path = credentials_path(root, network_id, account_id)
        searched.append(path)
        try:
            with open(path) as file:
                data = json.load(file)
            return Account.load_key(account_id, data["private_key"])
        except (OSError, ValueError, KeyError) as e:
            if root == primary_dir:
                logging.warning(
                    f"credentials not found in {path} ({e}), looking in {fallback_dir}"
                )
            else:
                logging.warning(f"credentials not found in {path} ({e})")

    raise CredentialResolutionError(
        f"No credentials for {account_id} on {network_id}", account_id, searched
    )


class CredentialResolutionError(Exception):
    """Neither the primary nor the fallback location holds the account's key"""

    account_id: str
    searched: List[str]

    def __init__(self, message: str, account_id: str, searched: List[str]):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.account_id = account_id
        self.searched = searched


class Test(unittest.TestCase):
    def test_in_memory(self):
        store = KeyStore()
        key = ed25519.PrivateKey.random()
        self.assertIsNone(store.get_key("testnet", "alice.testnet"))
        store.set_key("testnet", "alice.testnet", key)
        self.assertEqual(store.get_key("testnet", "alice.testnet"), key)
        self.assertIsNone(store.get_key("mainnet", "alice.testnet"))

    def test_file_store_persists(self):
        with tempfile.TemporaryDirectory() as root:
            key = ed25519.PrivateKey.random()
            FileKeyStore(root).set_key("testnet", "owner.series.testnet", key)

            path = credentials_path(root, "testnet", "owner.series.testnet")
            self.assertTrue(os.path.exists(path))
            self.assertEqual(
                FileKeyStore(root).get_key("testnet", "owner.series.testnet"), key
            )

    def test_resolve_primary(self):
        with tempfile.TemporaryDirectory() as primary, tempfile.TemporaryDirectory() as fallback:
            key = ed25519.PrivateKey.random()
            FileKeyStore(primary).set_key("testnet", "series.testnet", key)
            account = resolve_credentials("testnet", "series.testnet", primary, fallback)
            self.assertEqual(account.private_key, key)
            self.assertEqual(account.account_id, "series.testnet")

    def test_resolve_fallback(self):
        with tempfile.TemporaryDirectory() as primary, tempfile.TemporaryDirectory() as fallback:
            key = ed25519.PrivateKey.random()
            FileKeyStore(fallback).set_key("testnet", "series.testnet", key)
            with self.assertLogs(level="WARNING"):
                account = resolve_credentials(
                    "testnet", "series.testnet", primary, fallback
                )
            self.assertEqual(account.private_key, key)

    def test_resolve_missing(self):
        with tempfile.TemporaryDirectory() as primary, tempfile.TemporaryDirectory() as fallback:
            with self.assertRaises(CredentialResolutionError) as cm:
                resolve_credentials("testnet", "series.testnet", primary, fallback)
            self.assertEqual(len(cm.exception.searched), 2)


if __name__ == "__main__":
    unittest.main()
