# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Account and contract provisioning for integration runs.

`AccountProvisioner` makes sure the accounts a run needs exist, creating them as
sub-accounts of a funding account when they do not, and deploys a contract only
when the target account has no code yet. The deploy and the contract's init call
travel in one transaction so a failing init leaves no half-initialised contract
behind.

An account with no code reports the code hash ``11111111111111111111111111111111``,
the base58 encoding of 32 zero bytes.

Examples:
    Provision the marketplace::

        provisioner = AccountProvisioner(rpc_client, contract_account, key_store)
        market = await provisioner.get_or_create_account("market.series.testnet")
        outcome = await provisioner.ensure_contract_deployed(
            market,
            lambda: open("./out/market.wasm", "rb").read(),
            "new",
            {"owner_id": "series.testnet"},
        )
        print(outcome)  # DeployOutcome.DEPLOYED on the first run
"""

from __future__ import annotations

import hashlib
import logging
import time
import unittest
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

import base58

from .account import Account
from .account_id import AccountId
from .async_client import AccountBalance, RpcClient, RemoteRejectionError, encode_args
from .key_store import KeyStore
from .transactions import Action, DeployContract, FunctionCall
from .units import parse_near_amount

EMPTY_CODE_HASH = "11111111111111111111111111111111"
DEFAULT_INITIAL_BALANCE = parse_near_amount("10")

ContractCode = Union[bytes, Callable[[], bytes]]


def code_hash(code: bytes) -> str:
    """The code hash NEAR reports for deployed `code`: base58(sha256(code))."""
    return base58.b58encode(hashlib.sha256(code).digest()).decode()


class DriftPolicy(Enum):
    """What to do when an account already runs code other than what would be
    deployed."""

    IGNORE = "ignore"
    FAIL = "fail"
    REDEPLOY = "redeploy"


class DeployOutcome(Enum):
    DEPLOYED = "DEPLOYED"
    ALREADY_DEPLOYED = "ALREADY_DEPLOYED"
    REDEPLOYED = "REDEPLOYED"


class AccountProvisioner:
    """Creates or reuses accounts funded by `funder` and deploys contracts to them.

    Keys of accounts created here are saved in `key_store`. Accounts that already
    exist sign with their stored key, or with the funder's key when none is stored,
    which is how accounts created by the near-cli dev tooling are set up.
    """

    client: RpcClient
    funder: Account
    key_store: KeyStore
    network_id: str
    initial_balance: int

    def __init__(
        self,
        client: RpcClient,
        funder: Account,
        key_store: Optional[KeyStore] = None,
        network_id: str = "testnet",
        initial_balance: int = DEFAULT_INITIAL_BALANCE,
    ):
        self.client = client
        self.funder = funder
        self.key_store = key_store if key_store is not None else KeyStore()
        self.network_id = network_id
        self.initial_balance = initial_balance

    async def get_or_create_account(
        self, account_id: str, initial_balance: Optional[int] = None
    ) -> Account:
        """Return `account_id`, creating it first if it does not exist.

        Args:
            account_id: Full account id, a sub-account of the funder when it has
                to be created.
            initial_balance: yoctoNEAR moved from the funder on creation.

        Raises:
            InvalidAccountId: If `account_id` is malformed.
            RemoteRejectionError: If creation is refused.
        """
        AccountId.validate(account_id)
        if not await self.client.account_exists(account_id):
            return await self._create(account_id, initial_balance)

        key = self.key_store.get_key(self.network_id, account_id)
        if key is None:
            logging.info(
                f"no stored key for {account_id}, signing with the key of {self.funder.account_id}"
            )
            key = self.funder.private_key
        return Account(account_id, key)

    async def create_ephemeral_account(
        self,
        prefix: str,
        initial_balance: Optional[int] = None,
        suffix: Optional[str] = None,
    ) -> Account:
        """Create ``{prefix}-{suffix}.{funder}``, an account no earlier run can have
        created. `suffix` defaults to the current time in milliseconds."""
        if suffix is None:
            suffix = str(int(time.time() * 1000))
        account_id = AccountId.sub_account(f"{prefix}-{suffix}", self.funder.account_id)
        return await self._create(account_id, initial_balance)

    async def _create(self, account_id: str, initial_balance: Optional[int]) -> Account:
        account = Account.generate(account_id)
        balance = self.initial_balance if initial_balance is None else initial_balance
        await self.client.create_account(
            self.funder, account_id, account.public_key(), balance
        )
        self.key_store.set_key(self.network_id, account_id, account.private_key)
        logging.info(f"created {account_id} with {balance} yoctoNEAR")
        return account

    async def ensure_contract_deployed(
        self,
        account: Account,
        code: ContractCode,
        init_method: Optional[str] = None,
        init_args: Optional[Dict[str, Any]] = None,
        drift_policy: DriftPolicy = DriftPolicy.IGNORE,
    ) -> DeployOutcome:
        """Deploy `code` to `account` unless it already runs a contract.

        A fresh deploy is sent as one transaction holding the deploy and, when
        `init_method` is given, the init call; if init fails the network rolls the
        deploy back too.

        Args:
            code: The wasm bytes, or a callable producing them. A callable is only
                invoked when the bytes are needed.
            drift_policy: How to treat an account whose code differs from `code`.
                IGNORE skips the comparison entirely.

        Raises:
            ContractDriftError: On differing code with DriftPolicy.FAIL.
        """
        state = await self.client.view_account(account.account_id)
        deployed_hash = state["code_hash"]

        if deployed_hash == EMPTY_CODE_HASH:
            wasm = _load(code)
            actions = [Action(DeployContract(wasm))]
            if init_method is not None:
                actions.append(
                    Action(
                        FunctionCall(
                            init_method,
                            encode_args(init_args),
                            self.client.client_config.gas,
                            0,
                        )
                    )
                )
            logging.info(f"deploying {len(wasm)} bytes to {account.account_id}")
            await self.client.sign_and_send_transaction(
                account, account.account_id, actions
            )
            return DeployOutcome.DEPLOYED

        if drift_policy == DriftPolicy.IGNORE:
            return DeployOutcome.ALREADY_DEPLOYED

        wasm = _load(code)
        expected_hash = code_hash(wasm)
        if deployed_hash == expected_hash:
            return DeployOutcome.ALREADY_DEPLOYED
        if drift_policy == DriftPolicy.FAIL:
            raise ContractDriftError(
                f"{account.account_id} runs {deployed_hash}, expected {expected_hash}",
                account.account_id,
                deployed_hash,
                expected_hash,
            )

        logging.warning(
            f"redeploying {account.account_id}: {deployed_hash} -> {expected_hash}"
        )
        await self.client.sign_and_send_transaction(
            account, account.account_id, [Action(DeployContract(wasm))]
        )
        return DeployOutcome.REDEPLOYED

    async def account_balance(self, account_id: str) -> AccountBalance:
        return await self.client.account_balance(account_id)


def _load(code: ContractCode) -> bytes:
    return code() if callable(code) else code


class ContractDriftError(Exception):
    """The deployed contract differs from the code that would be deployed"""

    account_id: str
    deployed_hash: str
    expected_hash: str

    def __init__(
        self, message: str, account_id: str, deployed_hash: str, expected_hash: str
    ):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.account_id = account_id
        self.deployed_hash = deployed_hash
        self.expected_hash = expected_hash


class Test(unittest.IsolatedAsyncioTestCase):
    MARKET_CODE = b"\x00asm market v1"

    async def asyncSetUp(self):
        from .testing import FakeMarketContract, FakeRpcClient

        self.chain = FakeRpcClient()
        self.funder = Account.generate("series.testnet")
        self.chain.add_account(self.funder.account_id, self.funder.public_key())
        self.chain.register_code(self.MARKET_CODE, FakeMarketContract)
        self.key_store = KeyStore()
        self.provisioner = AccountProvisioner(self.chain, self.funder, self.key_store)

    async def test_creates_then_reuses(self):
        owner = await self.provisioner.get_or_create_account("owner.series.testnet")
        self.assertEqual(
            self.chain.balance_of("owner.series.testnet"), DEFAULT_INITIAL_BALANCE
        )
        self.assertEqual(
            self.key_store.get_key("testnet", "owner.series.testnet"), owner.private_key
        )

        again = await self.provisioner.get_or_create_account("owner.series.testnet")
        self.assertEqual(again, owner)
        self.assertEqual(self.chain.calls, [])

    async def test_reuse_without_stored_key_uses_funder_key(self):
        self.chain.add_account("market.series.testnet", self.funder.public_key())
        market = await self.provisioner.get_or_create_account("market.series.testnet")
        self.assertEqual(market.private_key, self.funder.private_key)

    async def test_ephemeral_accounts_are_fresh(self):
        alice = await self.provisioner.create_ephemeral_account("alice")
        self.assertTrue(alice.account_id.startswith("alice-"))
        self.assertTrue(AccountId.is_sub_account_of(alice.account_id, "series.testnet"))
        self.assertIn(alice.account_id, self.chain.accounts)

    async def test_deploys_once(self):
        market = await self.provisioner.get_or_create_account("market.series.testnet")
        loads = []

        def load():
            loads.append(1)
            return self.MARKET_CODE

        outcome = await self.provisioner.ensure_contract_deployed(
            market, load, "new", {"owner_id": "series.testnet"}
        )
        self.assertEqual(outcome, DeployOutcome.DEPLOYED)
        state = await self.chain.view_account(market.account_id)
        self.assertEqual(state["code_hash"], code_hash(self.MARKET_CODE))
        self.assertEqual(self.chain.contract_of(market.account_id).owner_id, "series.testnet")

        outcome = await self.provisioner.ensure_contract_deployed(
            market, load, "new", {"owner_id": "series.testnet"}
        )
        self.assertEqual(outcome, DeployOutcome.ALREADY_DEPLOYED)
        self.assertEqual(len(loads), 1)
        self.assertEqual([call[2] for call in self.chain.calls], ["new"])

    async def test_failed_init_leaves_no_code(self):
        market = await self.provisioner.get_or_create_account("market.series.testnet")
        with self.assertRaises(RemoteRejectionError):
            await self.provisioner.ensure_contract_deployed(
                market, self.MARKET_CODE, "new", {"unexpected": True}
            )
        state = await self.chain.view_account(market.account_id)
        self.assertEqual(state["code_hash"], EMPTY_CODE_HASH)

    async def test_drift_policies(self):
        market = await self.provisioner.get_or_create_account("market.series.testnet")
        await self.provisioner.ensure_contract_deployed(
            market, self.MARKET_CODE, "new", {"owner_id": "series.testnet"}
        )
        new_code = b"\x00asm market v2"

        self.assertEqual(
            await self.provisioner.ensure_contract_deployed(market, new_code),
            DeployOutcome.ALREADY_DEPLOYED,
        )
        self.assertEqual(
            await self.provisioner.ensure_contract_deployed(
                market, self.MARKET_CODE, drift_policy=DriftPolicy.FAIL
            ),
            DeployOutcome.ALREADY_DEPLOYED,
        )
        with self.assertRaises(ContractDriftError) as cm:
            await self.provisioner.ensure_contract_deployed(
                market, new_code, drift_policy=DriftPolicy.FAIL
            )
        self.assertEqual(cm.exception.expected_hash, code_hash(new_code))

        outcome = await self.provisioner.ensure_contract_deployed(
            market, new_code, drift_policy=DriftPolicy.REDEPLOY
        )
        self.assertEqual(outcome, DeployOutcome.REDEPLOYED)
        state = await self.chain.view_account(market.account_id)
        self.assertEqual(state["code_hash"], code_hash(new_code))


if __name__ == "__main__":
    unittest.main()
