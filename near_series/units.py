# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Conversions between NEAR and yoctoNEAR, the 10^-24 unit every balance, deposit and
payout is denominated in on chain.

`format_near_amount` renders amounts the way near-cli and wallets do: thousands
separators in the whole part and no trailing zeros, so 10**23 yocto is ``"0.1"``.
"""

import re
import unittest

NEAR_NOMINATION_EXP = 24
NEAR_NOMINATION = 10**NEAR_NOMINATION_EXP

ONE_YOCTO = 1
TGAS = 10**12

_AMOUNT_PATTERN = re.compile(r"^\d+(\.\d*)?$|^\.\d+$")


def parse_near_amount(amount: str) -> int:
    """Convert a human readable NEAR amount such as ``"0.1"`` to yoctoNEAR.

    Raises:
        ValueError: If the string is not a non-negative decimal, or carries more
            than 24 fractional digits.
    """
    value = amount.strip().replace(",", "")
    if not _AMOUNT_PATTERN.match(value):
        raise ValueError(f"Invalid NEAR amount: {amount}")
    whole, _, fraction = value.partition(".")
    if len(fraction) > NEAR_NOMINATION_EXP:
        raise ValueError(f"Cannot parse {amount}, more than 24 fractional digits")
    return int(whole or "0") * NEAR_NOMINATION + int(
        fraction.ljust(NEAR_NOMINATION_EXP, "0")
    )


def format_near_amount(amount: int, frac_digits: int = NEAR_NOMINATION_EXP) -> str:
    """Convert yoctoNEAR to a human readable amount, rounding half up to
    `frac_digits` fractional digits."""
    if amount < 0:
        raise ValueError(f"Cannot format negative amount: {amount}")
    if frac_digits < NEAR_NOMINATION_EXP:
        step = 10 ** (NEAR_NOMINATION_EXP - frac_digits)
        amount = (amount + step // 2) // step * step

    whole, fraction = divmod(amount, NEAR_NOMINATION)
    fraction_str = str(fraction).rjust(NEAR_NOMINATION_EXP, "0")[:frac_digits]
    fraction_str = fraction_str.rstrip("0")
    if fraction_str:
        return f"{whole:,}.{fraction_str}"
    return f"{whole:,}"


class Test(unittest.TestCase):
    def test_parse(self):
        self.assertEqual(parse_near_amount("1"), NEAR_NOMINATION)
        self.assertEqual(parse_near_amount("0.1"), 10**23)
        self.assertEqual(parse_near_amount("0.01"), 10**22)
        self.assertEqual(parse_near_amount("1,000.5"), 1000 * 10**24 + 5 * 10**23)
        self.assertEqual(parse_near_amount(".5"), 5 * 10**23)
        self.assertEqual(parse_near_amount("0.000000000000000000000001"), 1)

    def test_parse_rejects(self):
        for amount in ["", "abc", "-1", "1.2.3", "0." + "0" * 24 + "1"]:
            with self.assertRaises(ValueError):
                parse_near_amount(amount)

    def test_format(self):
        self.assertEqual(format_near_amount(10**23), "0.1")
        self.assertEqual(format_near_amount(9 * 10**23), "0.9")
        self.assertEqual(format_near_amount(NEAR_NOMINATION), "1")
        self.assertEqual(format_near_amount(0), "0")
        self.assertEqual(format_near_amount(1), "0.000000000000000000000001")
        self.assertEqual(format_near_amount(1234 * NEAR_NOMINATION), "1,234")

    def test_format_rounding(self):
        self.assertEqual(format_near_amount(15 * 10**22, 1), "0.2")
        self.assertEqual(format_near_amount(14 * 10**22, 1), "0.1")
        self.assertEqual(format_near_amount(1, 5), "0")


if __name__ == "__main__":
    unittest.main()
