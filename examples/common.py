# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Shared configuration for the examples, overridable with environment variables:

    NEAR_ENV: Network id, ``testnet`` by default.
    NEAR_NODE_URL: JSON-RPC endpoint of that network.
    NEAR_CONTRACT_NAME: Account holding the NFT series contract.
    NEAR_MARKET_NAME: Account holding the marketplace, ``market.{contract}`` by
        default.
"""

import os

NETWORK_ID = os.getenv("NEAR_ENV", "testnet")

# :!:>section_1
NODE_URL = os.getenv("NEAR_NODE_URL", f"https://rpc.{NETWORK_ID}.near.org")

CONTRACT_NAME = os.getenv("NEAR_CONTRACT_NAME", "series.testnet")

MARKET_NAME = os.getenv("NEAR_MARKET_NAME", f"market.{CONTRACT_NAME}")
# <:!:section_1
