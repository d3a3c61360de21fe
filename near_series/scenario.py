# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
The series-market integration scenario.

Runs the full life of one token against a deployed NFT series contract and its
marketplace, checking the result of every step before moving on:

1. provision_accounts: alice and bob are created fresh for the run, market and
   owner are sub-accounts of the contract reused across runs.
2. deploy_market: deploy and initialise the marketplace if it has no code yet.
3. init_contract: initialise the series contract, tolerating an earlier init.
4. patch_base_uri
5. patch_full_source_metadata
6. patch_single_source_metadata
7. mint_token: the owner mints a token carrying a royalty for bob.
8. transfer_token: the owner gives the token to alice.
9. approve_market: alice lists the token on the marketplace, retried on
   transient network errors.
10. purchase_token: the contract account buys the token; bob must receive his
    royalty share of the price.
11. verify_payout: ``nft_payout`` must match the royalty arithmetic.

Examples:
    Run against testnet::

        client = RpcClient("https://rpc.testnet.near.org")
        contract = resolve_credentials("testnet", "series.testnet")
        report = await run_scenario(client, contract, ScenarioSettings())
        print(report)
"""

from __future__ import annotations

import logging
import time
import unittest
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional

from .account import Account
from .async_client import AlreadyInitializedError, RpcClient, TransientNetworkError
from .key_store import KeyStore
from .provisioner import (
    EMPTY_CODE_HASH,
    AccountProvisioner,
    ContractCode,
    DeployOutcome,
    DriftPolicy,
)
from .series_client import (
    MarketClient,
    SaleArgs,
    SeriesClient,
    SourceMetadata,
    TokenMetadata,
    make_token_id,
)
from .units import format_near_amount, parse_near_amount
from .verification import (
    expect_balance_delta,
    expect_equal,
    expect_not_equal,
    expect_payout,
    expect_payout_conserves,
    expect_source_metadata_patched,
    expect_token_listed,
    expected_payout,
    royalty_share,
)
from .workflow import RetryPolicy, RunContext, Step, Workflow, WorkflowReport

DEFAULT_MEDIA = "https://media.giphy.com/media/h2ZVjT3kt193cxnwm1/giphy.gif"


def _now_ms() -> str:
    return str(int(time.time() * 1000))


@dataclass
class ScenarioSettings:
    """Parameters of a scenario run. Amounts are human readable NEAR."""

    token_type: str = "test"
    supply_cap: str = "1000000"
    bob_royalty: int = 1000
    sale_price: str = "1"
    approval_attempts: int = 2
    base_uri: str = "https://ipfs.io"
    media: str = DEFAULT_MEDIA
    source_commit_hash: str = "1" * 63
    source_link: str = "updatedLink"
    market_wasm_path: str = "./out/market.wasm"
    patch_deposit: str = "0.1"
    mint_deposit: str = "1"
    approve_deposit: str = "0.01"
    payout_balance: str = "1"
    max_len_payout: int = 9
    drift_policy: DriftPolicy = DriftPolicy.IGNORE
    timeout_in_seconds: float = 120.0

    @staticmethod
    def parse(resource: Dict[str, Any]) -> ScenarioSettings:
        """Build settings from a JSON object; unknown keys are rejected."""
        known = {field.name for field in fields(ScenarioSettings)}
        unknown = set(resource) - known
        if unknown:
            raise ValueError(f"Unknown scenario settings: {sorted(unknown)}")
        values = dict(resource)
        if "drift_policy" in values:
            values["drift_policy"] = DriftPolicy(values["drift_policy"])
        return ScenarioSettings(**values)


class ScenarioContext(RunContext):
    """Everything the scenario's steps share: clients, accounts and the token."""

    client: RpcClient
    contract: Account
    settings: ScenarioSettings
    provisioner: AccountProvisioner
    series: SeriesClient
    market_code: ContractCode
    run_id: str
    token_id: str

    alice: Account
    bob: Account
    owner: Account
    market: Account
    deploy_outcome: Optional[DeployOutcome]

    def __init__(
        self,
        client: RpcClient,
        contract: Account,
        settings: ScenarioSettings,
        key_store: Optional[KeyStore] = None,
        network_id: str = "testnet",
        market_code: Optional[ContractCode] = None,
        run_id: Optional[str] = None,
    ):
        super().__init__()
        self.client = client
        self.contract = contract
        self.settings = settings
        self.provisioner = AccountProvisioner(client, contract, key_store, network_id)
        self.series = SeriesClient(client, contract.account_id)
        self.market_code = (
            market_code
            if market_code is not None
            else lambda: read_wasm(settings.market_wasm_path)
        )
        self.run_id = run_id if run_id is not None else _now_ms()
        self.token_id = make_token_id(settings.token_type, self.run_id)
        self.deploy_outcome = None

    @property
    def contract_id(self) -> str:
        return self.contract.account_id

    def market_client(self) -> MarketClient:
        return MarketClient(self.client, self.market.account_id)


def read_wasm(path: str) -> bytes:
    with open(path, "rb") as file:
        return file.read()


async def provision_accounts(context: ScenarioContext):
    provisioner = context.provisioner
    context.alice = await provisioner.create_ephemeral_account(
        "alice", suffix=context.run_id
    )
    context.bob = await provisioner.create_ephemeral_account("bob", suffix=context.run_id)
    context.owner = await provisioner.get_or_create_account(
        f"owner.{context.contract_id}"
    )
    context.market = await provisioner.get_or_create_account(
        f"market.{context.contract_id}"
    )
    logging.info(f"alice: {context.alice.account_id}, bob: {context.bob.account_id}")


async def deploy_market(context: ScenarioContext) -> DeployOutcome:
    context.deploy_outcome = await context.provisioner.ensure_contract_deployed(
        context.market,
        context.market_code,
        "new",
        MarketClient.init_args(context.contract_id),
        context.settings.drift_policy,
    )
    logging.info(f"{context.market.account_id}: {context.deploy_outcome.value}")
    return context.deploy_outcome


async def init_contract(context: ScenarioContext):
    settings = context.settings
    try:
        await context.series.new_default_meta(
            context.contract,
            context.contract_id,
            {settings.token_type: settings.supply_cap},
        )
    except AlreadyInitializedError:
        logging.info(f"{context.contract_id} is already initialized")

    state = await context.client.view_account(context.contract_id)
    expect_not_equal("code_hash", state["code_hash"], EMPTY_CODE_HASH)


async def patch_base_uri(context: ScenarioContext):
    settings = context.settings
    await context.series.patch_base_uri(
        context.contract, settings.base_uri, parse_near_amount(settings.patch_deposit)
    )
    metadata = await context.series.nft_metadata()
    expect_equal("nft_metadata.base_uri", metadata.base_uri, settings.base_uri)


async def _patch_source_metadata(context: ScenarioContext, patch: SourceMetadata):
    before = await context.series.contract_source_metadata()
    await context.series.patch_contract_source_metadata(
        context.contract, patch, parse_near_amount(context.settings.patch_deposit)
    )
    after = await context.series.contract_source_metadata()
    expect_source_metadata_patched(before, after, patch)


async def patch_full_source_metadata(context: ScenarioContext):
    await _patch_source_metadata(
        context,
        SourceMetadata(
            _now_ms(), context.settings.source_commit_hash, context.settings.source_link
        ),
    )


async def patch_single_source_metadata(context: ScenarioContext):
    await _patch_source_metadata(context, SourceMetadata(version=_now_ms()))


async def mint_token(context: ScenarioContext):
    settings = context.settings
    await context.series.nft_mint(
        context.owner,
        context.token_id,
        TokenMetadata(media=settings.media, issued_at=context.run_id),
        settings.token_type,
        {context.bob.account_id: settings.bob_royalty},
        parse_near_amount(settings.mint_deposit),
    )
    tokens = await context.series.all_tokens()
    token = expect_token_listed(tokens, context.token_id)
    expect_equal("minted token owner", token.owner_id, context.owner.account_id)


async def transfer_token(context: ScenarioContext):
    await context.series.nft_transfer(
        context.owner, context.alice.account_id, context.token_id
    )
    token = await context.series.nft_token(context.token_id)
    expect_not_equal("nft_token", token, None)
    expect_equal("token owner", token.owner_id, context.alice.account_id)


async def approve_market(context: ScenarioContext):
    settings = context.settings
    sale = SaleArgs(
        {"near": str(parse_near_amount(settings.sale_price))}, settings.token_type
    )
    await context.series.nft_approve(
        context.alice,
        context.token_id,
        context.market.account_id,
        sale,
        parse_near_amount(settings.approve_deposit),
    )


async def purchase_token(context: ScenarioContext):
    price = parse_near_amount(context.settings.sale_price)
    bob_id = context.bob.account_id

    before = (await context.client.account_balance(bob_id)).total
    await context.market_client().offer(
        context.contract, context.contract_id, context.token_id, price
    )
    after = (await context.client.account_balance(bob_id)).total

    expect_balance_delta(
        "bob royalty",
        before,
        after,
        royalty_share(context.settings.bob_royalty, price),
    )
    logging.info(f"{bob_id} received {format_near_amount(after - before)} NEAR")
    token = await context.series.nft_token(context.token_id)
    expect_not_equal("nft_token", token, None)
    expect_equal("token owner", token.owner_id, context.contract_id)


async def verify_payout(context: ScenarioContext):
    settings = context.settings
    balance = parse_near_amount(settings.payout_balance)
    payout = await context.series.nft_payout(
        context.token_id, balance, settings.max_len_payout
    )
    expect_payout(
        payout,
        expected_payout(
            {context.bob.account_id: settings.bob_royalty}, context.contract_id, balance
        ),
    )
    expect_payout_conserves(payout, balance)


def build_workflow(settings: ScenarioSettings) -> Workflow:
    return Workflow(
        "series-market",
        [
            Step("provision_accounts", provision_accounts),
            Step("deploy_market", deploy_market),
            Step("init_contract", init_contract),
            Step("patch_base_uri", patch_base_uri),
            Step("patch_full_source_metadata", patch_full_source_metadata),
            Step("patch_single_source_metadata", patch_single_source_metadata),
            Step("mint_token", mint_token),
            Step("transfer_token", transfer_token),
            Step(
                "approve_market",
                approve_market,
                RetryPolicy(settings.approval_attempts, (TransientNetworkError,)),
            ),
            Step("purchase_token", purchase_token),
            Step("verify_payout", verify_payout),
        ],
    )


async def run_scenario(
    client: RpcClient,
    contract: Account,
    settings: ScenarioSettings,
    key_store: Optional[KeyStore] = None,
    network_id: str = "testnet",
    market_code: Optional[ContractCode] = None,
) -> WorkflowReport:
    """Run the scenario once with `contract` as the funding and purchasing account.

    Raises:
        StepFailed: On the first failing step.
        WorkflowTimeoutError: If the run exceeds `settings.timeout_in_seconds`.
    """
    context = ScenarioContext(
        client, contract, settings, key_store, network_id, market_code
    )
    return await build_workflow(settings).run(context, settings.timeout_in_seconds)


STEP_NAMES: List[str] = [step.name for step in build_workflow(ScenarioSettings()).steps]


class Test(unittest.IsolatedAsyncioTestCase):
    MARKET_CODE = b"\x00asm market"

    async def asyncSetUp(self):
        from .testing import FakeMarketContract, FakeRpcClient, FakeSeriesContract

        self.chain = FakeRpcClient()
        self.contract = Account.generate("series.testnet")
        self.chain.add_account(
            self.contract.account_id,
            self.contract.public_key(),
            parse_near_amount("1000"),
            FakeSeriesContract(),
        )
        self.chain.register_code(self.MARKET_CODE, FakeMarketContract)
        self.key_store = KeyStore()

    def context(self, run_id: str, settings: ScenarioSettings = ScenarioSettings()):
        return ScenarioContext(
            self.chain,
            self.contract,
            settings,
            self.key_store,
            market_code=self.MARKET_CODE,
            run_id=run_id,
        )

    async def test_full_run(self):
        context = self.context("1700000000000")
        report = await build_workflow(context.settings).run(context)

        self.assertEqual(report.step_names(), STEP_NAMES)
        self.assertEqual(context.deploy_outcome, DeployOutcome.DEPLOYED)
        self.assertEqual(context.alice.account_id, "alice-1700000000000.series.testnet")
        self.assertEqual(context.market.account_id, "market.series.testnet")
        self.assertEqual(context.token_id, "test:1700000000000")

        token = await context.series.nft_token(context.token_id)
        self.assertEqual(token.owner_id, "series.testnet")
        self.assertEqual(token.royalty, {context.bob.account_id: 1000})
        self.assertEqual(
            self.chain.balance_of(context.bob.account_id),
            parse_near_amount("10.1"),
        )
        metadata = await context.series.contract_source_metadata()
        self.assertEqual(metadata.commit_hash, "1" * 63)
        self.assertEqual(metadata.link, "updatedLink")

    async def test_second_run_reuses_accounts(self):
        await build_workflow(ScenarioSettings()).run(self.context("1"))
        context = self.context("2")
        await build_workflow(context.settings).run(context)

        self.assertEqual(context.deploy_outcome, DeployOutcome.ALREADY_DEPLOYED)
        self.assertEqual(
            [call[2] for call in self.chain.calls].count("new_default_meta"), 2
        )
        self.assertEqual([call[2] for call in self.chain.calls].count("new"), 1)
        self.assertEqual(
            len(await context.series.all_tokens()), 2
        )

    async def test_transient_approval_is_retried(self):
        self.chain.fail_next("nft_approve")
        with self.assertLogs(level="WARNING"):
            report = await build_workflow(ScenarioSettings()).run(self.context("1"))
        approve = report.steps[STEP_NAMES.index("approve_market")]
        self.assertEqual(approve.attempts, 2)

    async def test_approval_landed_despite_timeout(self):
        self.chain.fail_next("nft_approve", after_apply=True)
        context = self.context("1")
        with self.assertLogs(level="WARNING"):
            report = await build_workflow(context.settings).run(context)
        approve = report.steps[STEP_NAMES.index("approve_market")]
        self.assertEqual(approve.attempts, 2)

        methods = [call[2] for call in self.chain.calls]
        self.assertEqual(methods.count("nft_approve"), 2)
        self.assertEqual(methods.count("offer"), 1)
        self.assertEqual(self.chain.contract_of(context.market.account_id).sales, {})
        self.assertEqual(
            self.chain.balance_of(context.bob.account_id),
            parse_near_amount("10.1"),
        )
        token = await context.series.nft_token(context.token_id)
        self.assertEqual(token.owner_id, self.contract.account_id)

    async def test_approval_retries_exhausted(self):
        from .workflow import RetryExhaustedError, StepFailed

        self.chain.fail_next("nft_approve", times=2)
        context = self.context("1")
        with self.assertRaises(StepFailed) as cm:
            await build_workflow(context.settings).run(context)
        self.assertEqual(cm.exception.step_name, "approve_market")
        self.assertIsInstance(cm.exception.cause, RetryExhaustedError)
        self.assertEqual(cm.exception.cause.attempts, 2)
        self.assertNotIn("purchase_token", cm.exception.report.step_names())

        token = await context.series.nft_token(context.token_id)
        self.assertEqual(token.owner_id, context.alice.account_id)

    async def test_rejected_approval_is_not_retried(self):
        from .async_client import RemoteRejectionError
        from .workflow import StepFailed

        self.chain.fail_next("nft_approve", RemoteRejectionError("Unauthorized", None))
        with self.assertRaises(StepFailed) as cm:
            await build_workflow(ScenarioSettings()).run(self.context("1"))
        self.assertIsInstance(cm.exception.cause, RemoteRejectionError)

    async def test_missing_market_wasm(self):
        from .workflow import StepFailed

        settings = ScenarioSettings(market_wasm_path="./does/not/exist.wasm")
        context = ScenarioContext(
            self.chain, self.contract, settings, self.key_store, run_id="1"
        )
        with self.assertRaises(StepFailed) as cm:
            await build_workflow(settings).run(context)
        self.assertEqual(cm.exception.step_name, "deploy_market")
        self.assertIsInstance(cm.exception.cause, FileNotFoundError)

    def test_settings(self):
        settings = ScenarioSettings.parse(
            {"sale_price": "2", "drift_policy": "fail", "approval_attempts": 3}
        )
        self.assertEqual(settings.sale_price, "2")
        self.assertEqual(settings.drift_policy, DriftPolicy.FAIL)
        self.assertEqual(settings.token_type, "test")
        with self.assertRaises(ValueError):
            ScenarioSettings.parse({"sale_prize": "2"})


if __name__ == "__main__":
    unittest.main()
