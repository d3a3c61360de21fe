# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Post-condition checks for the series-market workflow.

Each check compares what was observed on chain with what should have happened and
raises `AssertionFailure` with both values when they differ. The payout helpers
reproduce the contract's royalty arithmetic: shares are in basis points out of
10000, every division truncates, and the owner receives whatever share the
royalties leave over.
"""

from __future__ import annotations

import unittest
from typing import Any, Dict, Iterable, Optional

from .series_client import ROYALTY_DENOMINATOR, Payout, SourceMetadata, Token
from .units import format_near_amount, parse_near_amount


def expect_equal(name: str, actual: Any, expected: Any):
    if actual != expected:
        raise AssertionFailure(
            f"{name}: expected {expected}, got {actual}", name, expected, actual
        )


def expect_not_equal(name: str, actual: Any, unexpected: Any):
    if actual == unexpected:
        raise AssertionFailure(
            f"{name}: expected anything but {unexpected}", name, unexpected, actual
        )


def expect_token_listed(tokens: Iterable[Token], token_id: str) -> Token:
    """Return the token with `token_id` from a listing, failing if it is absent."""
    tokens = list(tokens)
    listed = [token.token_id for token in tokens]
    for token in tokens:
        if token.token_id == token_id:
            return token
    raise AssertionFailure(
        f"token {token_id} not in listing of {len(listed)} tokens",
        "nft_tokens",
        token_id,
        listed,
    )


def expect_source_metadata_patched(
    before: Optional[SourceMetadata], after: Optional[SourceMetadata], patch: SourceMetadata
):
    """
    Check that `after` holds every field set in `patch` and keeps the other fields
    of `before`.
    """
    if after is None:
        raise AssertionFailure(
            "contract_source_metadata is missing", "contract_source_metadata", patch, None
        )
    before = before or SourceMetadata()
    for field in ("version", "commit_hash", "link"):
        patched = getattr(patch, field)
        expected = patched if patched is not None else getattr(before, field)
        expect_equal(f"source_metadata.{field}", getattr(after, field), expected)


def expect_balance_delta(name: str, before: int, after: int, expected: int):
    delta = after - before
    if delta != expected:
        raise AssertionFailure(
            f"{name}: balance changed by {delta} yoctoNEAR, expected {expected}",
            name,
            expected,
            delta,
        )


def royalty_share(basis_points: int, balance: int) -> int:
    return basis_points * balance // ROYALTY_DENOMINATOR


def expected_payout(royalties: Dict[str, int], owner_id: str, balance: int) -> Payout:
    """
    The payout the contract computes for a token owned by `owner_id` sold for
    `balance` yoctoNEAR.

    Royalty entries naming the owner are skipped. The owner gets the remaining
    share of the balance and is left out when that share is zero.
    """
    payout: Payout = {}
    total = 0
    for account_id, basis_points in royalties.items():
        if account_id == owner_id:
            continue
        payout[account_id] = royalty_share(basis_points, balance)
        total += basis_points
    owner_share = royalty_share(ROYALTY_DENOMINATOR - total, balance)
    if owner_share > 0:
        payout[owner_id] = owner_share
    return payout


def expect_payout(actual: Payout, expected: Payout):
    """Compare two payouts in human readable NEAR, the way the amounts are shown."""
    expect_equal(
        "nft_payout",
        {account_id: format_near_amount(amount) for account_id, amount in actual.items()},
        {
            account_id: format_near_amount(amount)
            for account_id, amount in expected.items()
        },
    )


def expect_payout_conserves(payout: Payout, balance: int):
    """The payout may lose at most one yoctoNEAR per recipient to truncation."""
    total = sum(payout.values())
    if total > balance or balance - total > len(payout):
        raise AssertionFailure(
            f"payout totals {total}, balance was {balance}", "payout_total", balance, total
        )


class AssertionFailure(AssertionError):
    """An observed value differs from the expected one"""

    name: str
    expected: Any
    actual: Any

    def __init__(self, message: str, name: str, expected: Any, actual: Any):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.name = name
        self.expected = expected
        self.actual = actual


class Test(unittest.TestCase):
    def test_expect_equal(self):
        expect_equal("base_uri", "https://ipfs.io", "https://ipfs.io")
        with self.assertRaises(AssertionFailure) as cm:
            expect_equal("base_uri", None, "https://ipfs.io")
        self.assertEqual(cm.exception.expected, "https://ipfs.io")
        self.assertIsNone(cm.exception.actual)
        self.assertIsInstance(cm.exception, AssertionError)

        expect_not_equal("code_hash", "abc", "1" * 32)
        with self.assertRaises(AssertionFailure):
            expect_not_equal("code_hash", "1" * 32, "1" * 32)

    def test_token_listed(self):
        tokens = [
            Token("test:1", "alice.testnet", None, {}, "test", {}),
            Token("test:2", "bob.testnet", None, {}, "test", {}),
        ]
        self.assertEqual(expect_token_listed(tokens, "test:2").owner_id, "bob.testnet")
        with self.assertRaises(AssertionFailure):
            expect_token_listed(tokens, "test:3")

    def test_source_metadata(self):
        before = SourceMetadata("1.0.0", "a" * 40, "https://example.com")
        patch = SourceMetadata(version="2.0.0")
        expect_source_metadata_patched(
            before, SourceMetadata("2.0.0", "a" * 40, "https://example.com"), patch
        )
        with self.assertRaises(AssertionFailure) as cm:
            expect_source_metadata_patched(
                before, SourceMetadata("2.0.0", "b" * 40, "https://example.com"), patch
            )
        self.assertEqual(cm.exception.name, "source_metadata.commit_hash")
        with self.assertRaises(AssertionFailure):
            expect_source_metadata_patched(before, None, patch)

    def test_balance_delta(self):
        one = parse_near_amount("1")
        expect_balance_delta("bob", one, one + 10**23, 10**23)
        with self.assertRaises(AssertionFailure):
            expect_balance_delta("bob", one, one, 10**23)

    def test_expected_payout(self):
        balance = parse_near_amount("1")
        self.assertEqual(
            expected_payout({"bob": 1000}, "market", balance),
            {"bob": parse_near_amount("0.1"), "market": parse_near_amount("0.9")},
        )
        self.assertEqual(
            expected_payout({"bob": 1000, "market": 500}, "market", balance),
            {"bob": parse_near_amount("0.1"), "market": parse_near_amount("0.9")},
        )
        self.assertEqual(
            expected_payout({"bob": 4000, "carol": 6000}, "market", 100),
            {"bob": 40, "carol": 60},
        )
        self.assertEqual(royalty_share(1000, 15), 1)

    def test_expect_payout(self):
        expect_payout(
            {"bob": 10**23, "market": 9 * 10**23},
            {"bob": parse_near_amount("0.1"), "market": parse_near_amount("0.9")},
        )
        with self.assertRaises(AssertionFailure):
            expect_payout({"bob": 10**23}, {"bob": 2 * 10**23})

    def test_payout_conserves(self):
        expect_payout_conserves({"bob": 1, "carol": 13}, 15)
        expect_payout_conserves(expected_payout({"bob": 333}, "market", 1000), 1000)
        with self.assertRaises(AssertionFailure):
            expect_payout_conserves({"bob": 10}, 20)
        with self.assertRaises(AssertionFailure):
            expect_payout_conserves({"bob": 30}, 20)


if __name__ == "__main__":
    unittest.main()
