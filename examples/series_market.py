# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Mint a token on the NFT series contract, list it on the marketplace and buy it.

The contract account funds two fresh accounts: alice, who receives and sells the
token, and bob, who holds a 10% royalty on it. The contract account then buys the
token and the example prints how the price was split.

The series contract must already be deployed and initialised and the marketplace
must list tokens of this contract; ``python -m near_series.cli run-scenario`` sets
both up.
"""

import asyncio
import time

from near_series.async_client import RpcClient
from near_series.key_store import resolve_credentials
from near_series.provisioner import AccountProvisioner
from near_series.series_client import (
    MarketClient,
    SaleArgs,
    SeriesClient,
    TokenMetadata,
    make_token_id,
)
from near_series.units import format_near_amount, parse_near_amount

from .common import CONTRACT_NAME, MARKET_NAME, NETWORK_ID, NODE_URL


async def main():
    # :!:>section_1
    rpc_client = RpcClient(NODE_URL)
    contract = resolve_credentials(NETWORK_ID, CONTRACT_NAME)
    series = SeriesClient(rpc_client, CONTRACT_NAME)
    market = MarketClient(rpc_client, MARKET_NAME)
    # <:!:section_1

    # :!:>section_2
    provisioner = AccountProvisioner(
        rpc_client, contract, network_id=NETWORK_ID, initial_balance=parse_near_amount("2")
    )
    alice = await provisioner.create_ephemeral_account("alice")
    bob = await provisioner.create_ephemeral_account("bob")
    # <:!:section_2

    print("\n=== Accounts ===")
    print(f"Alice: {alice.account_id}")
    print(f"Bob: {bob.account_id}")

    now = str(int(time.time() * 1000))
    token_id = make_token_id("test", now)
    price = parse_near_amount("1")

    # :!:>section_3
    await series.nft_mint(
        contract,
        token_id,
        TokenMetadata(
            media="https://media.giphy.com/media/h2ZVjT3kt193cxnwm1/giphy.gif",
            issued_at=now,
        ),
        "test",
        {bob.account_id: 1000},
        receiver_id=alice.account_id,
    )
    # <:!:section_3
    token = await series.nft_token(token_id)
    print(f"\nMinted {token_id} to {token.owner_id}")

    # :!:>section_4
    await series.nft_approve(
        alice, token_id, MARKET_NAME, SaleArgs({"near": str(price)}, "test")
    )
    # <:!:section_4
    print(f"Listed {token_id} for {format_near_amount(price)} NEAR")

    alice_before = (await rpc_client.account_balance(alice.account_id)).total
    bob_before = (await rpc_client.account_balance(bob.account_id)).total

    # :!:>section_5
    await market.offer(contract, CONTRACT_NAME, token_id, price)
    # <:!:section_5

    alice_after = (await rpc_client.account_balance(alice.account_id)).total
    bob_after = (await rpc_client.account_balance(bob.account_id)).total
    token = await series.nft_token(token_id)

    print("\n=== Sale ===")
    print(f"New owner: {token.owner_id}")
    print(f"Alice received: {format_near_amount(alice_after - alice_before)} NEAR")
    print(f"Bob received: {format_near_amount(bob_after - bob_before)} NEAR")

    await rpc_client.close()


if __name__ == "__main__":
    asyncio.run(main())
