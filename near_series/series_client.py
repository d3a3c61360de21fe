# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Typed wrappers for the NFT series contract and its marketplace.

The series contract is a NEP-171 non-fungible token contract where every token
belongs to a *token type* (its series) and token ids are ``"{token_type}:{suffix}"``.
Tokens carry perpetual royalties in basis points that the contract applies when a
marketplace asks for a payout. The marketplace contract lists a token once its owner
approves it with a JSON sale descriptor and settles a purchase with ``offer``.

Both clients only shape arguments and parse results; signing, submission and error
classification are done by `RpcClient`.

Examples:
    Mint and list a token::

        series = SeriesClient(rpc_client, "series.testnet")
        token_id = make_token_id("test", str(int(time.time() * 1000)))
        await series.nft_mint(
            owner,
            token_id,
            TokenMetadata(media="https://example.com/1.gif", issued_at="1700000000000"),
            "test",
            {"bob.testnet": 1000},
        )
        await series.nft_approve(
            owner,
            token_id,
            "market.series.testnet",
            SaleArgs({"near": str(parse_near_amount("1"))}, "test"),
        )

        market = MarketClient(rpc_client, "market.series.testnet")
        await market.offer(buyer, "series.testnet", token_id, parse_near_amount("1"))
"""

from __future__ import annotations

import json
import unittest
from typing import Any, Dict, List, Optional

from .account import Account
from .async_client import RpcClient
from .units import ONE_YOCTO, parse_near_amount

TOKEN_DELIMITER = ":"
ROYALTY_DENOMINATOR = 10_000

DEFAULT_PATCH_DEPOSIT = parse_near_amount("0.1")
DEFAULT_MINT_DEPOSIT = parse_near_amount("1")
DEFAULT_APPROVE_DEPOSIT = parse_near_amount("0.01")

Payout = Dict[str, int]


def make_token_id(token_type: str, suffix: str) -> str:
    return f"{token_type}{TOKEN_DELIMITER}{suffix}"


def validate_royalties(royalties: Dict[str, int]) -> Dict[str, int]:
    """Check perpetual royalties before they are sent to the contract.

    Raises:
        ValueError: If a share is negative or the shares exceed 10000 basis points.
    """
    for account_id, share in royalties.items():
        if share < 0:
            raise ValueError(f"Negative royalty for {account_id}: {share}")
    total = sum(royalties.values())
    if total > ROYALTY_DENOMINATOR:
        raise ValueError(
            f"Royalties total {total} basis points, more than {ROYALTY_DENOMINATOR}"
        )
    return royalties


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


class TokenMetadata:
    """Per token metadata (NEP-177). Unset fields are omitted on the wire."""

    title: Optional[str]
    description: Optional[str]
    media: Optional[str]
    media_hash: Optional[str]
    copies: Optional[int]
    issued_at: Optional[str]
    extra: Optional[str]
    reference: Optional[str]

    def __init__(
        self,
        media: Optional[str] = None,
        issued_at: Optional[str] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
        media_hash: Optional[str] = None,
        copies: Optional[int] = None,
        extra: Optional[str] = None,
        reference: Optional[str] = None,
    ):
        self.media = media
        self.issued_at = issued_at
        self.title = title
        self.description = description
        self.media_hash = media_hash
        self.copies = copies
        self.extra = extra
        self.reference = reference

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TokenMetadata):
            return NotImplemented
        return self.to_json() == other.to_json()

    def __str__(self) -> str:
        return f"TokenMetadata{self.to_json()}"

    def to_json(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "title": self.title,
                "description": self.description,
                "media": self.media,
                "media_hash": self.media_hash,
                "copies": self.copies,
                "issued_at": self.issued_at,
                "extra": self.extra,
                "reference": self.reference,
            }
        )

    @staticmethod
    def parse(resource: Dict[str, Any]) -> TokenMetadata:
        return TokenMetadata(
            resource.get("media"),
            resource.get("issued_at"),
            resource.get("title"),
            resource.get("description"),
            resource.get("media_hash"),
            resource.get("copies"),
            resource.get("extra"),
            resource.get("reference"),
        )


class Token:
    """A minted token as returned by ``nft_token`` and ``nft_tokens``.

    Attributes:
        token_id: ``"{token_type}:{suffix}"``, unique within the contract.
        owner_id: Current owner.
        metadata: Token metadata.
        royalty: Perpetual royalties in basis points, by account.
        token_type: The series the token belongs to.
        approved_account_ids: Approval id per approved account.
    """

    token_id: str
    owner_id: str
    metadata: TokenMetadata
    royalty: Dict[str, int]
    token_type: Optional[str]
    approved_account_ids: Dict[str, int]

    def __init__(
        self,
        token_id: str,
        owner_id: str,
        metadata: TokenMetadata,
        royalty: Dict[str, int],
        token_type: Optional[str],
        approved_account_ids: Dict[str, int],
    ):
        self.token_id = token_id
        self.owner_id = owner_id
        self.metadata = metadata
        self.royalty = royalty
        self.token_type = token_type
        self.approved_account_ids = approved_account_ids

    def __str__(self) -> str:
        return f"Token[token_id: {self.token_id}, owner_id: {self.owner_id}, token_type: {self.token_type}, royalty: {self.royalty}]"

    @staticmethod
    def parse(resource: Dict[str, Any]) -> Token:
        return Token(
            resource["token_id"],
            resource["owner_id"],
            TokenMetadata.parse(resource.get("metadata") or {}),
            {k: int(v) for k, v in (resource.get("royalty") or {}).items()},
            resource.get("token_type"),
            {k: int(v) for k, v in (resource.get("approved_account_ids") or {}).items()},
        )


class ContractMetadata:
    """Contract level metadata (NEP-177) returned by ``nft_metadata``."""

    spec: str
    name: str
    symbol: str
    base_uri: Optional[str]
    reference: Optional[str]

    def __init__(
        self,
        spec: str,
        name: str,
        symbol: str,
        base_uri: Optional[str] = None,
        reference: Optional[str] = None,
    ):
        self.spec = spec
        self.name = name
        self.symbol = symbol
        self.base_uri = base_uri
        self.reference = reference

    def __str__(self) -> str:
        return f"ContractMetadata[spec: {self.spec}, name: {self.name}, symbol: {self.symbol}, base_uri: {self.base_uri}]"

    @staticmethod
    def parse(resource: Dict[str, Any]) -> ContractMetadata:
        return ContractMetadata(
            resource["spec"],
            resource["name"],
            resource["symbol"],
            resource.get("base_uri"),
            resource.get("reference"),
        )


class SourceMetadata:
    """Contract source metadata. As a patch, None fields are left untouched."""

    version: Optional[str]
    commit_hash: Optional[str]
    link: Optional[str]

    def __init__(
        self,
        version: Optional[str] = None,
        commit_hash: Optional[str] = None,
        link: Optional[str] = None,
    ):
        self.version = version
        self.commit_hash = commit_hash
        self.link = link

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SourceMetadata):
            return NotImplemented
        return (
            self.version == other.version
            and self.commit_hash == other.commit_hash
            and self.link == other.link
        )

    def __str__(self) -> str:
        return f"SourceMetadata[version: {self.version}, commit_hash: {self.commit_hash}, link: {self.link}]"

    def to_json(self) -> Dict[str, Any]:
        return _drop_none(
            {"version": self.version, "commit_hash": self.commit_hash, "link": self.link}
        )

    @staticmethod
    def parse(resource: Dict[str, Any]) -> SourceMetadata:
        return SourceMetadata(
            resource.get("version"), resource.get("commit_hash"), resource.get("link")
        )


class SaleArgs:
    """The sale descriptor a token owner passes to the marketplace as the
    ``msg`` of ``nft_approve``.

    Attributes:
        sale_conditions: Price per currency in its smallest unit, e.g.
            ``{"near": "1000000000000000000000000"}``.
        token_type: Series of the token being listed.
        is_auction: Whether the listing takes bids instead of a fixed price.
    """

    sale_conditions: Dict[str, str]
    token_type: str
    is_auction: bool

    def __init__(
        self, sale_conditions: Dict[str, str], token_type: str, is_auction: bool = False
    ):
        self.sale_conditions = sale_conditions
        self.token_type = token_type
        self.is_auction = is_auction

    def to_msg(self) -> str:
        return json.dumps(
            {
                "sale_conditions": self.sale_conditions,
                "token_type": self.token_type,
                "is_auction": self.is_auction,
            }
        )

    @staticmethod
    def parse(msg: str) -> SaleArgs:
        data = json.loads(msg)
        return SaleArgs(
            dict(data["sale_conditions"]),
            data["token_type"],
            bool(data.get("is_auction", False)),
        )


def parse_payout(resource: Dict[str, Any]) -> Payout:
    """Parse ``nft_payout``'s ``{"payout": {account: "yocto"}}`` into integers."""
    payout = resource.get("payout", resource)
    return {account_id: int(amount) for account_id, amount in payout.items()}


class SeriesClient:
    """A wrapper around the NFT series contract deployed at `contract_id`"""

    client: RpcClient
    contract_id: str

    def __init__(self, client: RpcClient, contract_id: str):
        self.client = client
        self.contract_id = contract_id

    async def new_default_meta(
        self, signer: Account, owner_id: str, supply_cap_by_type: Dict[str, str]
    ) -> Any:
        """Initialise the contract with its default metadata.

        Raises:
            AlreadyInitializedError: If the contract is already initialised.
        """
        return await self.client.function_call(
            signer,
            self.contract_id,
            "new_default_meta",
            {"owner_id": owner_id, "supply_cap_by_type": supply_cap_by_type},
        )

    async def patch_base_uri(
        self, signer: Account, base_uri: str, deposit: int = DEFAULT_PATCH_DEPOSIT
    ) -> Any:
        return await self.client.function_call(
            signer,
            self.contract_id,
            "patch_base_uri",
            {"base_uri": base_uri},
            deposit=deposit,
        )

    async def nft_metadata(self) -> ContractMetadata:
        return ContractMetadata.parse(
            await self.client.view_function(self.contract_id, "nft_metadata")
        )

    async def contract_source_metadata(self) -> Optional[SourceMetadata]:
        resource = await self.client.view_function(
            self.contract_id, "contract_source_metadata"
        )
        return SourceMetadata.parse(resource) if resource is not None else None

    async def patch_contract_source_metadata(
        self,
        signer: Account,
        patch: SourceMetadata,
        deposit: int = DEFAULT_PATCH_DEPOSIT,
    ) -> Any:
        """
        Update the fields of the source metadata that are set in `patch`.

        Unset fields are not sent, so the contract keeps their current values.
        """
        return await self.client.function_call(
            signer,
            self.contract_id,
            "patch_contract_source_metadata",
            {"new_source_metadata": patch.to_json()},
            deposit=deposit,
        )

    async def nft_mint(
        self,
        signer: Account,
        token_id: str,
        metadata: TokenMetadata,
        token_type: str,
        perpetual_royalties: Dict[str, int],
        deposit: int = DEFAULT_MINT_DEPOSIT,
        receiver_id: Optional[str] = None,
    ) -> Any:
        """Mint `token_id` of series `token_type`.

        The deposit pays for the token's storage; the contract refunds the excess.

        Raises:
            ValueError: If the royalties are negative or exceed 10000 basis points.
                Nothing is sent in that case.
        """
        args: Dict[str, Any] = {
            "token_id": token_id,
            "metadata": metadata.to_json(),
            "token_type": token_type,
            "perpetual_royalties": validate_royalties(perpetual_royalties),
        }
        if receiver_id is not None:
            args["receiver_id"] = receiver_id
        return await self.client.function_call(
            signer, self.contract_id, "nft_mint", args, deposit=deposit
        )

    async def nft_tokens(self, from_index: int = 0, limit: int = 100) -> List[Token]:
        resources = await self.client.view_function(
            self.contract_id,
            "nft_tokens",
            {"from_index": str(from_index), "limit": limit},
        )
        return [Token.parse(resource) for resource in resources or []]

    async def all_tokens(self, page_size: int = 100) -> List[Token]:
        """Walk ``nft_tokens`` page by page until a short page is returned."""
        tokens: List[Token] = []
        while True:
            page = await self.nft_tokens(len(tokens), page_size)
            tokens.extend(page)
            if len(page) < page_size:
                return tokens

    async def nft_token(self, token_id: str) -> Optional[Token]:
        resource = await self.client.view_function(
            self.contract_id, "nft_token", {"token_id": token_id}
        )
        return Token.parse(resource) if resource is not None else None

    async def nft_transfer(
        self,
        signer: Account,
        receiver_id: str,
        token_id: str,
        approval_id: Optional[int] = None,
        memo: Optional[str] = None,
    ) -> Any:
        """Transfer a token. Exactly one yoctoNEAR is attached, as NEP-171 requires."""
        args = _drop_none(
            {
                "receiver_id": receiver_id,
                "token_id": token_id,
                "approval_id": approval_id,
                "memo": memo,
            }
        )
        return await self.client.function_call(
            signer, self.contract_id, "nft_transfer", args, deposit=ONE_YOCTO
        )

    async def nft_approve(
        self,
        signer: Account,
        token_id: str,
        account_id: str,
        sale: Optional[SaleArgs] = None,
        deposit: int = DEFAULT_APPROVE_DEPOSIT,
    ) -> Any:
        """
        Approve `account_id` to transfer `token_id`.

        With `sale`, the contract forwards the descriptor to ``account_id``'s
        ``nft_on_approve``, which lists the token on a marketplace.
        """
        args: Dict[str, Any] = {"token_id": token_id, "account_id": account_id}
        if sale is not None:
            args["msg"] = sale.to_msg()
        return await self.client.function_call(
            signer, self.contract_id, "nft_approve", args, deposit=deposit
        )

    async def nft_payout(
        self, token_id: str, balance: int, max_len_payout: int
    ) -> Payout:
        resource = await self.client.view_function(
            self.contract_id,
            "nft_payout",
            {
                "token_id": token_id,
                "balance": str(balance),
                "max_len_payout": max_len_payout,
            },
        )
        return parse_payout(resource)


class MarketClient:
    """A wrapper around the marketplace contract deployed at `contract_id`"""

    client: RpcClient
    contract_id: str

    def __init__(self, client: RpcClient, contract_id: str):
        self.client = client
        self.contract_id = contract_id

    @staticmethod
    def init_args(owner_id: str) -> Dict[str, Any]:
        return {"owner_id": owner_id}

    async def offer(
        self, signer: Account, nft_contract_id: str, token_id: str, deposit: int
    ) -> Any:
        """Buy a listed token, attaching the full price as `deposit`."""
        return await self.client.function_call(
            signer,
            self.contract_id,
            "offer",
            {"nft_contract_id": nft_contract_id, "token_id": token_id},
            deposit=deposit,
        )


class Test(unittest.TestCase):
    def test_token_id(self):
        token_id = make_token_id("test", "1700000000000")
        self.assertEqual(token_id, "test:1700000000000")

    def test_validate_royalties(self):
        self.assertEqual(validate_royalties({"bob.testnet": 1000}), {"bob.testnet": 1000})
        self.assertEqual(validate_royalties({"a.testnet": 5000, "b.testnet": 5000}), {"a.testnet": 5000, "b.testnet": 5000})
        with self.assertRaises(ValueError):
            validate_royalties({"a.testnet": 6000, "b.testnet": 4001})
        with self.assertRaises(ValueError):
            validate_royalties({"a.testnet": -1})

    def test_source_metadata_patch_omits_unset(self):
        self.assertEqual(SourceMetadata(version="2").to_json(), {"version": "2"})
        self.assertEqual(
            SourceMetadata("2", "1" * 63, "updatedLink").to_json(),
            {"version": "2", "commit_hash": "1" * 63, "link": "updatedLink"},
        )

    def test_sale_args_msg(self):
        sale = SaleArgs({"near": str(10**24)}, "test")
        self.assertEqual(
            json.loads(sale.to_msg()),
            {
                "sale_conditions": {"near": "1000000000000000000000000"},
                "token_type": "test",
                "is_auction": False,
            },
        )
        parsed = SaleArgs.parse(sale.to_msg())
        self.assertEqual(parsed.sale_conditions, sale.sale_conditions)
        self.assertFalse(parsed.is_auction)

    def test_parse_token(self):
        token = Token.parse(
            {
                "token_id": "test:1",
                "owner_id": "alice.testnet",
                "metadata": {"media": "https://example.com/1.gif", "issued_at": "1"},
                "royalty": {"bob.testnet": 1000},
                "token_type": "test",
                "approved_account_ids": {"market.testnet": 0},
            }
        )
        self.assertEqual(token.owner_id, "alice.testnet")
        self.assertEqual(token.metadata.media, "https://example.com/1.gif")
        self.assertEqual(token.royalty, {"bob.testnet": 1000})
        self.assertEqual(token.approved_account_ids, {"market.testnet": 0})

    def test_parse_payout(self):
        self.assertEqual(
            parse_payout({"payout": {"bob.testnet": "100", "series.testnet": "900"}}),
            {"bob.testnet": 100, "series.testnet": 900},
        )


if __name__ == "__main__":
    unittest.main()
