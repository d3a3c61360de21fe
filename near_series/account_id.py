# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Account id rules for the NEAR protocol.

NEAR accounts are named, not derived from keys. A name is 2 to 64 characters of
lowercase alphanumerics separated by ``-``, ``_`` or ``.``; the dots make ids
hierarchical, so ``alice.series.testnet`` is a sub-account of ``series.testnet`` and
can only be created by it.

Examples:
    Validate and compose ids::

        AccountId.validate("series.testnet")             # "series.testnet"
        AccountId.sub_account("market", "series.testnet")  # "market.series.testnet"
        AccountId.is_sub_account_of("market.series.testnet", "series.testnet")  # True

    Reject malformed ids::

        try:
            AccountId.validate("Alice..near")
        except InvalidAccountId as e:
            print(e)
"""

from __future__ import annotations

import re
import unittest
from typing import Optional

ACCOUNT_ID_PATTERN = re.compile(r"^(([a-z\d]+[\-_])*[a-z\d]+\.)*([a-z\d]+[\-_])*[a-z\d]+$")


class InvalidAccountId(Exception):
    """Raised when a string is not a valid NEAR account id."""

    account_id: str

    def __init__(self, message: str, account_id: str):
        super().__init__(message)
        self.account_id = account_id


class AccountId:
    """Static helpers for NEAR account ids.

    Account ids travel as plain strings in contract arguments and RPC requests, so
    these helpers validate and compose strings rather than wrapping them.
    """

    MIN_LENGTH: int = 2
    MAX_LENGTH: int = 64

    @staticmethod
    def validate(account_id: str) -> str:
        """Return `account_id` unchanged if it is valid.

        Raises:
            InvalidAccountId: If the length or character rules are violated.
        """
        if not AccountId.MIN_LENGTH <= len(account_id) <= AccountId.MAX_LENGTH:
            raise InvalidAccountId(
                f"Account id must be {AccountId.MIN_LENGTH}-{AccountId.MAX_LENGTH} characters: {account_id}",
                account_id,
            )
        if not ACCOUNT_ID_PATTERN.match(account_id):
            raise InvalidAccountId(f"Malformed account id: {account_id}", account_id)
        return account_id

    @staticmethod
    def parent(account_id: str) -> Optional[str]:
        """Get the account that owns `account_id`, None for top level accounts."""
        if "." not in account_id:
            return None
        return account_id.split(".", 1)[1]

    @staticmethod
    def is_sub_account_of(account_id: str, parent: str) -> bool:
        return AccountId.parent(account_id) == parent

    @staticmethod
    def sub_account(prefix: str, parent: str) -> str:
        return AccountId.validate(f"{prefix}.{parent}")


class Test(unittest.TestCase):
    def test_valid_ids(self):
        for account_id in [
            "ok",
            "bo_b",
            "alice-1700000000000.series.testnet",
            "market.series.testnet",
            "a" * 64,
        ]:
            self.assertEqual(AccountId.validate(account_id), account_id)

    def test_invalid_ids(self):
        for account_id in [
            "a",
            "a" * 65,
            "Alice.near",
            "alice..near",
            ".alice",
            "alice.",
            "alice-.near",
            "al ice",
        ]:
            with self.assertRaises(InvalidAccountId):
                AccountId.validate(account_id)

    def test_hierarchy(self):
        self.assertEqual(AccountId.parent("market.series.testnet"), "series.testnet")
        self.assertIsNone(AccountId.parent("testnet"))
        self.assertTrue(
            AccountId.is_sub_account_of("market.series.testnet", "series.testnet")
        )
        self.assertFalse(AccountId.is_sub_account_of("market.series.testnet", "testnet"))
        self.assertEqual(
            AccountId.sub_account("owner", "series.testnet"), "owner.series.testnet"
        )


if __name__ == "__main__":
    unittest.main()
