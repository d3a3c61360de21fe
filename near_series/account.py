# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
NEAR accounts: a named account id paired with the ed25519 key that signs for it.

Unlike key-derived addresses, a NEAR account id says nothing about its keys, so an
`Account` is simply the pair. Credentials are persisted in the JSON layout used by
``near-cli``::

    {
        "account_id": "owner.series.testnet",
        "public_key": "ed25519:<base58>",
        "private_key": "ed25519:<base58 seed + public key>"
    }

Examples:
    Create and persist an account key::

        account = Account.generate("alice.series.testnet")
        account.store("./alice.json")
        assert Account.load("./alice.json") == account

    Sign a transaction built elsewhere::

        signed = account.sign_transaction(transaction)
        await rpc_client.send_transaction(signed)
"""

from __future__ import annotations

import json
import tempfile
import unittest

from . import ed25519
from .account_id import AccountId
from .transactions import SignedTransaction, Transaction


class Account:
    """A NEAR account id and the private key holding full access to it.

    Attributes:
        account_id: The validated, human readable account id.
        private_key: The ed25519 key used to sign this account's transactions.
    """

    account_id: str
    private_key: ed25519.PrivateKey

    def __init__(self, account_id: str, private_key: ed25519.PrivateKey):
        self.account_id = AccountId.validate(account_id)
        self.private_key = private_key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Account):
            return NotImplemented
        return (
            self.account_id == other.account_id
            and self.private_key == other.private_key
        )

    def __repr__(self) -> str:
        return f"Account({self.account_id}, {self.public_key()})"

    @staticmethod
    def generate(account_id: str) -> Account:
        """Pair `account_id` with a freshly generated key.

        The account does not exist on chain until someone creates it and adds the
        public key, see `AccountProvisioner`.
        """
        return Account(account_id, ed25519.PrivateKey.random())

    @staticmethod
    def load_key(account_id: str, key: str) -> Account:
        return Account(account_id, ed25519.PrivateKey.from_str(key))

    @staticmethod
    def load(path: str) -> Account:
        """Load an account from a credential file.

        Raises:
            FileNotFoundError: If the file does not exist.
            json.JSONDecodeError: If the file contains invalid JSON.
            KeyError: If the file lacks ``account_id`` or ``private_key``.
        """
        with open(path) as file:
            data = json.load(file)
        return Account.load_key(data["account_id"], data["private_key"])

    def store(self, path: str):
        data = self.to_credentials()
        with open(path, "w") as file:
            json.dump(data, file)

    def to_credentials(self) -> dict:
        return {
            "account_id": self.account_id,
            "public_key": str(self.public_key()),
            "private_key": str(self.private_key),
        }

    def sign(self, data: bytes) -> ed25519.Signature:
        return self.private_key.sign(data)

    def sign_transaction(self, transaction: Transaction) -> SignedTransaction:
        """Sign the sha256 digest of the Borsh encoded transaction."""
        return SignedTransaction(transaction, self.sign(transaction.hash()))

    def public_key(self) -> ed25519.PublicKey:
        return self.private_key.public_key()


class Test(unittest.TestCase):
    def test_load_and_store(self):
        (file, path) = tempfile.mkstemp()
        start = Account.generate("owner.series.testnet")
        start.store(path)
        load = Account.load(path)

        self.assertEqual(start, load)
        with open(path) as credentials:
            data = json.load(credentials)
        self.assertEqual(data["public_key"], str(start.public_key()))

    def test_key(self):
        message = b"test message"
        account = Account.generate("alice.testnet")
        signature = account.sign(message)
        self.assertTrue(account.public_key().verify(message, signature))

    def test_invalid_account_id(self):
        with self.assertRaises(Exception):
            Account.generate("Not Valid")

    def test_sign_transaction(self):
        account = Account.generate("alice.testnet")
        transaction = Transaction(
            account.account_id,
            account.public_key(),
            1,
            "bob.testnet",
            bytes(32),
            [],
        )
        signed = account.sign_transaction(transaction)
        self.assertTrue(signed.verify())


if __name__ == "__main__":
    unittest.main()
