# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
An in-memory NEAR node for tests.

`FakeRpcClient` is an `RpcClient` whose JSON-RPC transport is replaced by a small
simulated chain. Everything above the transport runs for real: transactions are
Borsh encoded, signed, decoded again, checked against the signer's access key and
nonce, and their actions applied atomically. Contract code is simulated by Python
classes registered against the hash of the code that deploys them:

- `FakeSeriesContract` mirrors the NFT series contract: typed tokens, perpetual
  royalties, approvals and payouts.
- `FakeMarketContract` mirrors the marketplace: listings created through
  ``nft_on_approve`` and purchases settled with ``offer``.

Failures can be injected per contract method with `FakeRpcClient.fail_next`, which
makes the next call of that method raise either before it reaches the chain or
after its transaction has been applied.

Examples:
    Build a chain with a deployed series contract::

        contract = Account.generate("series.testnet")
        chain = FakeRpcClient()
        chain.add_account(
            contract.account_id, contract.public_key(), contract=FakeSeriesContract()
        )
        chain.register_code(market_wasm, FakeMarketContract)

        series = SeriesClient(chain, contract.account_id)
"""

from __future__ import annotations

import base64
import copy
import json
import unittest
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import base58

from .account import Account
from .account_id import AccountId
from .async_client import (
    AlreadyInitializedError,
    ApiError,
    ClientConfig,
    RemoteExecutionError,
    RemoteRejectionError,
    RpcClient,
    TransientNetworkError,
    classify_rpc_error,
)
from .borsh import Deserializer
from .ed25519 import PublicKey
from .provisioner import EMPTY_CODE_HASH, code_hash
from .series_client import (
    MarketClient,
    SaleArgs,
    SeriesClient,
    SourceMetadata,
    TokenMetadata,
)
from .transactions import (
    Action,
    AddKey,
    CreateAccount,
    DeployContract,
    FunctionCall,
    SignedTransaction,
    Transaction,
    Transfer,
)
from .units import ONE_YOCTO, parse_near_amount

FAKE_BLOCK_HASH = base58.b58encode(bytes(range(32))).decode()
STORAGE_AMOUNT_PER_BYTE = 10**19
DEFAULT_STORAGE_USAGE = 182
DEFAULT_BALANCE = parse_near_amount("100")

MINTER_ROYALTY_CAP = 2000
CONTRACT_ROYALTY_CAP = 1000
MINT_STORAGE_COST = parse_near_amount("0.01")
MARKET_DELIMITER = "||"


class ContractPanic(Exception):
    """Raised by fake contract code; becomes a ``Smart contract panicked`` failure."""


class MethodNotFound(Exception):
    pass


class _ActionFailure(Exception):
    index: int
    kind: Dict[str, Any]

    def __init__(self, index: int, kind: Dict[str, Any]):
        super().__init__(json.dumps(kind))
        self.index = index
        self.kind = kind


@dataclass
class FakeAccountState:
    amount: int
    locked: int = 0
    code_hash: str = EMPTY_CODE_HASH
    storage_usage: int = DEFAULT_STORAGE_USAGE
    keys: Dict[str, int] = field(default_factory=dict)
    contract: Optional[FakeContract] = None


class CallContext:
    """What a fake contract method sees of the chain while it runs."""

    chain: FakeRpcClient
    contract_id: str
    predecessor_id: str
    signer_id: str
    attached_deposit: int

    def __init__(
        self,
        chain: FakeRpcClient,
        contract_id: str,
        predecessor_id: str,
        signer_id: str,
        attached_deposit: int,
    ):
        self.chain = chain
        self.contract_id = contract_id
        self.predecessor_id = predecessor_id
        self.signer_id = signer_id
        self.attached_deposit = attached_deposit

    def transfer(self, receiver_id: str, amount: int):
        self.chain.transfer(self.contract_id, receiver_id, amount)

    def call(
        self, contract_id: str, method_name: str, args: Dict[str, Any], deposit: int = 0
    ) -> Any:
        return self.chain.call_contract(
            self.contract_id, self.signer_id, contract_id, method_name, args, deposit
        )


class FakeContract:
    """Base for simulated contracts: dispatches by method name to the methods
    listed in `CALL_METHODS` and `VIEW_METHODS`."""

    CALL_METHODS: Tuple[str, ...] = ()
    VIEW_METHODS: Tuple[str, ...] = ()

    owner_id: Optional[str] = None

    def call(self, context: CallContext, method_name: str, args: Dict[str, Any]) -> Any:
        if method_name not in self.CALL_METHODS:
            raise MethodNotFound(method_name)
        return self._invoke(method_name, context, **args)

    def view(self, method_name: str, args: Dict[str, Any]) -> Any:
        if method_name not in self.VIEW_METHODS:
            raise MethodNotFound(method_name)
        return self._invoke(method_name, **args)

    def _invoke(self, method_name: str, *args: Any, **kwargs: Any) -> Any:
        try:
            return getattr(self, method_name)(*args, **kwargs)
        except TypeError as e:
            raise ContractPanic(f"Failed to deserialize input from JSON: {e}") from e

    def _init(self, owner_id: str):
        if self.owner_id is not None:
            raise ContractPanic("The contract has already been initialized")
        self.owner_id = owner_id

    def _require_initialized(self):
        if self.owner_id is None:
            raise ContractPanic("The contract is not initialized")

    def _assert_owner(self, context: CallContext):
        self._require_initialized()
        if context.predecessor_id != self.owner_id:
            raise ContractPanic("Unauthorized")


class FakeSeriesContract(FakeContract):
    CALL_METHODS = (
        "new_default_meta",
        "patch_base_uri",
        "patch_contract_source_metadata",
        "nft_mint",
        "nft_transfer",
        "nft_approve",
        "nft_transfer_payout",
    )
    VIEW_METHODS = (
        "nft_metadata",
        "contract_source_metadata",
        "nft_tokens",
        "nft_token",
        "nft_payout",
    )

    metadata: Dict[str, Any]
    source_metadata: Dict[str, Any]
    supply_cap_by_type: Dict[str, int]
    tokens: Dict[str, Dict[str, Any]]

    def __init__(self):
        self.metadata = {}
        self.source_metadata = {}
        self.supply_cap_by_type = {}
        self.tokens = {}

    def new_default_meta(
        self, context: CallContext, owner_id: str, supply_cap_by_type: Dict[str, str]
    ):
        self._init(owner_id)
        self.metadata = {
            "spec": "nft-1.0.0",
            "name": "Series",
            "symbol": "SERIES",
            "base_uri": None,
            "reference": None,
        }
        self.source_metadata = {
            "version": "1.0.0",
            "commit_hash": "0" * 40,
            "link": "https://example.com/nft-series",
        }
        self.supply_cap_by_type = {k: int(v) for k, v in supply_cap_by_type.items()}

    def patch_base_uri(self, context: CallContext, base_uri: str):
        self._assert_owner(context)
        self.metadata["base_uri"] = base_uri

    def nft_metadata(self) -> Dict[str, Any]:
        self._require_initialized()
        return dict(self.metadata)

    def contract_source_metadata(self) -> Optional[Dict[str, Any]]:
        return dict(self.source_metadata) if self.source_metadata else None

    def patch_contract_source_metadata(
        self, context: CallContext, new_source_metadata: Dict[str, Any]
    ):
        self._assert_owner(context)
        for key in ("version", "commit_hash", "link"):
            if new_source_metadata.get(key) is not None:
                self.source_metadata[key] = new_source_metadata[key]

    def nft_mint(
        self,
        context: CallContext,
        token_id: str,
        metadata: Dict[str, Any],
        perpetual_royalties: Optional[Dict[str, int]] = None,
        receiver_id: Optional[str] = None,
        token_type: Optional[str] = None,
    ):
        self._require_initialized()
        if token_id in self.tokens:
            raise ContractPanic("Token already exists")
        if token_type is None or token_type not in self.supply_cap_by_type:
            raise ContractPanic("Token type must have supply cap.")
        minted = sum(1 for t in self.tokens.values() if t["token_type"] == token_type)
        if minted >= self.supply_cap_by_type[token_type]:
            raise ContractPanic("Cannot mint anymore of token type.")
        royalty = dict(perpetual_royalties or {})
        if sum(royalty.values()) > MINTER_ROYALTY_CAP + CONTRACT_ROYALTY_CAP:
            raise ContractPanic("Royalties should not be more than caps")
        if context.attached_deposit < MINT_STORAGE_COST:
            raise ContractPanic("Must attach enough NEAR to cover storage")

        self.tokens[token_id] = {
            "owner_id": receiver_id or context.predecessor_id,
            "metadata": dict(metadata),
            "royalty": royalty,
            "token_type": token_type,
            "approved_account_ids": {},
            "next_approval_id": 0,
        }
        refund = context.attached_deposit - MINT_STORAGE_COST
        if refund > 0:
            context.transfer(context.predecessor_id, refund)

    def _json_token(self, token_id: str) -> Dict[str, Any]:
        token = self.tokens[token_id]
        metadata = dict(token["metadata"])
        metadata.setdefault("title", token_id)
        return {
            "token_id": token_id,
            "owner_id": token["owner_id"],
            "metadata": metadata,
            "royalty": dict(token["royalty"]),
            "approved_account_ids": dict(token["approved_account_ids"]),
            "token_type": token["token_type"],
        }

    def nft_tokens(
        self, from_index: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        start = int(from_index or "0")
        token_ids = list(self.tokens)[start:]
        if limit is not None:
            token_ids = token_ids[:limit]
        return [self._json_token(token_id) for token_id in token_ids]

    def nft_token(self, token_id: str) -> Optional[Dict[str, Any]]:
        if token_id not in self.tokens:
            return None
        return self._json_token(token_id)

    def _transfer_token(
        self,
        sender_id: str,
        receiver_id: str,
        token_id: str,
        approval_id: Optional[int],
    ) -> Dict[str, Any]:
        if token_id not in self.tokens:
            raise ContractPanic("Token not found")
        token = self.tokens[token_id]
        if sender_id != token["owner_id"]:
            if sender_id not in token["approved_account_ids"]:
                raise ContractPanic("Unauthorized")
            if (
                approval_id is not None
                and token["approved_account_ids"][sender_id] != approval_id
            ):
                raise ContractPanic("Sender is not approved account")
        if receiver_id == token["owner_id"]:
            raise ContractPanic("The token owner and the receiver should be different")

        previous = copy.deepcopy(token)
        token["owner_id"] = receiver_id
        token["approved_account_ids"] = {}
        return previous

    def nft_transfer(
        self,
        context: CallContext,
        receiver_id: str,
        token_id: str,
        approval_id: Optional[int] = None,
        memo: Optional[str] = None,
    ):
        if context.attached_deposit != ONE_YOCTO:
            raise ContractPanic("Requires attached deposit of exactly 1 yoctoNEAR")
        self._transfer_token(context.predecessor_id, receiver_id, token_id, approval_id)

    def nft_approve(
        self,
        context: CallContext,
        token_id: str,
        account_id: str,
        msg: Optional[str] = None,
    ) -> Any:
        if context.attached_deposit < ONE_YOCTO:
            raise ContractPanic("Requires attached deposit of at least 1 yoctoNEAR")
        if token_id not in self.tokens:
            raise ContractPanic("Token not found")
        token = self.tokens[token_id]
        if context.predecessor_id != token["owner_id"]:
            raise ContractPanic("Predecessor must be the token owner.")

        approval_id = token["next_approval_id"]
        token["approved_account_ids"][account_id] = approval_id
        token["next_approval_id"] += 1
        if msg:
            return context.call(
                account_id,
                "nft_on_approve",
                {
                    "token_id": token_id,
                    "owner_id": token["owner_id"],
                    "approval_id": approval_id,
                    "msg": msg,
                },
            )
        return None

    @staticmethod
    def _payout(
        owner_id: str, royalty: Dict[str, int], balance: int, max_len_payout: int
    ) -> Dict[str, Any]:
        if len(royalty) > max_len_payout:
            raise ContractPanic("Market cannot payout to that many receivers")
        payout: Dict[str, str] = {}
        total = 0
        for account_id, share in royalty.items():
            if account_id != owner_id:
                payout[account_id] = str(share * balance // 10_000)
                total += share
        owner_payout = (10_000 - total) * balance // 10_000
        if owner_payout > 0:
            payout[owner_id] = str(owner_payout)
        return {"payout": payout}

    def nft_payout(
        self, token_id: str, balance: str, max_len_payout: int
    ) -> Dict[str, Any]:
        if token_id not in self.tokens:
            raise ContractPanic("no token")
        token = self.tokens[token_id]
        return self._payout(
            token["owner_id"], token["royalty"], int(balance), max_len_payout
        )

    def nft_transfer_payout(
        self,
        context: CallContext,
        receiver_id: str,
        token_id: str,
        approval_id: Optional[int],
        balance: str,
        max_len_payout: int,
        memo: Optional[str] = None,
    ) -> Dict[str, Any]:
        if context.attached_deposit != ONE_YOCTO:
            raise ContractPanic("Requires attached deposit of exactly 1 yoctoNEAR")
        previous = self._transfer_token(
            context.predecessor_id, receiver_id, token_id, approval_id
        )
        return self._payout(
            previous["owner_id"], previous["royalty"], int(balance), max_len_payout
        )


class FakeMarketContract(FakeContract):
    CALL_METHODS = ("new", "nft_on_approve", "offer")
    VIEW_METHODS = ("get_sale",)

    sales: Dict[str, Dict[str, Any]]

    def __init__(self):
        self.sales = {}

    def new(
        self,
        context: CallContext,
        owner_id: str,
        ft_token_ids: Optional[List[str]] = None,
        bid_history_length: Optional[int] = None,
    ):
        self._init(owner_id)

    def nft_on_approve(
        self,
        context: CallContext,
        token_id: str,
        owner_id: str,
        approval_id: int,
        msg: str,
    ):
        self._require_initialized()
        sale = SaleArgs.parse(msg)
        self.sales[f"{context.predecessor_id}{MARKET_DELIMITER}{token_id}"] = {
            "nft_contract_id": context.predecessor_id,
            "token_id": token_id,
            "owner_id": owner_id,
            "approval_id": approval_id,
            "sale_conditions": sale.sale_conditions,
            "token_type": sale.token_type,
            "is_auction": sale.is_auction,
        }

    def get_sale(self, nft_contract_id: str, token_id: str) -> Optional[Dict[str, Any]]:
        return self.sales.get(f"{nft_contract_id}{MARKET_DELIMITER}{token_id}")

    def offer(self, context: CallContext, nft_contract_id: str, token_id: str):
        self._require_initialized()
        key = f"{nft_contract_id}{MARKET_DELIMITER}{token_id}"
        if key not in self.sales:
            raise ContractPanic("No sale")
        sale = self.sales[key]
        buyer_id = context.predecessor_id
        if buyer_id == sale["owner_id"]:
            raise ContractPanic("Cannot bid on your own sale.")
        if "near" not in sale["sale_conditions"]:
            raise ContractPanic("Not for sale in NEAR")
        price = int(sale["sale_conditions"]["near"])
        if context.attached_deposit < price:
            raise ContractPanic("Attached deposit less than price")

        del self.sales[key]
        result = context.call(
            nft_contract_id,
            "nft_transfer_payout",
            {
                "receiver_id": buyer_id,
                "token_id": token_id,
                "approval_id": sale["approval_id"],
                "balance": str(price),
                "max_len_payout": 10,
            },
            ONE_YOCTO,
        )
        for account_id, amount in result["payout"].items():
            context.transfer(account_id, int(amount))
        if context.attached_deposit > price:
            context.transfer(buyer_id, context.attached_deposit - price)


class FakeRpcClient(RpcClient):
    """An `RpcClient` backed by an in-memory chain instead of an RPC node.

    Attributes:
        accounts: Chain state by account id.
        calls: ``(signer_id, receiver_id, method_name)`` for every function call
            that reached the chain, in order.
    """

    accounts: Dict[str, FakeAccountState]
    calls: List[Tuple[str, str, str]]
    code_registry: Dict[str, Callable[[], FakeContract]]
    block_height: int
    _failures: Dict[str, List[Tuple[Exception, bool]]]

    def __init__(self, client_config: ClientConfig = ClientConfig()):
        self.node_url = "memory://"
        self.client_config = client_config
        self._storage_amount_per_byte = None
        self._nonces = {}
        self.accounts = {}
        self.calls = []
        self.code_registry = {}
        self.block_height = 1
        self._failures = {}

    async def close(self):
        pass

    def add_account(
        self,
        account_id: str,
        public_key: Optional[PublicKey] = None,
        amount: int = DEFAULT_BALANCE,
        contract: Optional[FakeContract] = None,
    ) -> FakeAccountState:
        state = FakeAccountState(amount)
        if public_key is not None:
            state.keys[str(public_key)] = 0
        if contract is not None:
            state.contract = contract
            state.code_hash = code_hash(type(contract).__name__.encode())
        self.accounts[account_id] = state
        return state

    def register_code(self, code: bytes, factory: Callable[[], FakeContract]) -> str:
        """Make deploying `code` instantiate `factory`; returns the code hash."""
        hashed = code_hash(code)
        self.code_registry[hashed] = factory
        return hashed

    def fail_next(
        self,
        method_name: str,
        error: Optional[Exception] = None,
        times: int = 1,
        after_apply: bool = False,
    ):
        """Make the next `times` calls of contract method `method_name` raise
        `error`, a timeout by default.

        Args:
            after_apply: Raise only once the transaction has been applied, the
                way a client sees a timeout for a transaction that still landed.
                Views always fail before running.
        """
        for _ in range(times):
            self._failures.setdefault(method_name, []).append(
                (error or TransientNetworkError("Timeout", None), after_apply)
            )

    def balance_of(self, account_id: str) -> int:
        return self.accounts[account_id].amount

    def contract_of(self, account_id: str) -> Optional[FakeContract]:
        return self.accounts[account_id].contract

    def transfer(self, sender_id: str, receiver_id: str, amount: int):
        sender = self.accounts[sender_id]
        if receiver_id not in self.accounts:
            raise ContractPanic(f"Account {receiver_id} does not exist")
        if amount > sender.amount:
            raise ContractPanic(f"Not enough balance on {sender_id}")
        sender.amount -= amount
        self.accounts[receiver_id].amount += amount

    def call_contract(
        self,
        predecessor_id: str,
        signer_id: str,
        contract_id: str,
        method_name: str,
        args: Dict[str, Any],
        deposit: int,
    ) -> Any:
        if contract_id not in self.accounts:
            raise ContractPanic(f"Account {contract_id} does not exist")
        contract = self.accounts[contract_id].contract
        if contract is None:
            raise ContractPanic(f"Contract {contract_id} is not deployed")
        self.transfer(predecessor_id, contract_id, deposit)
        context = CallContext(self, contract_id, predecessor_id, signer_id, deposit)
        return contract.call(context, method_name, args)

    #
    # Simulated node
    #

    async def _rpc(self, method: str, params: Any) -> Any:
        if method == "query":
            return self._query(params)
        if method == "block":
            return {"header": {"hash": FAKE_BLOCK_HASH, "height": self.block_height}}
        if method == "EXPERIMENTAL_protocol_config":
            return {
                "runtime_config": {
                    "storage_amount_per_byte": str(STORAGE_AMOUNT_PER_BYTE)
                }
            }
        if method == "broadcast_tx_commit":
            return self._broadcast(params[0])
        raise ApiError(f"{method}: Method not found", 404)

    def _handler_error(
        self, cause: str, message: Any, info: Optional[Dict[str, Any]] = None
    ) -> RemoteExecutionError:
        return classify_rpc_error(
            {
                "name": "HANDLER_ERROR",
                "cause": {"name": cause, "info": info or {}},
                "data": message,
            }
        )

    def _take_failure(self, method_name: str) -> Optional[Exception]:
        """Raise the next failure injected for `method_name`, or return it when it
        is meant to fire after the transaction is applied."""
        failures = self._failures.get(method_name)
        if not failures:
            return None
        error, after_apply = failures.pop(0)
        if not after_apply:
            raise error
        return error

    def _query(self, params: Dict[str, Any]) -> Dict[str, Any]:
        account_id = params["account_id"]
        if account_id not in self.accounts:
            raise self._handler_error(
                "UNKNOWN_ACCOUNT",
                f"account {account_id} does not exist while viewing",
                {"requested_account_id": account_id},
            )
        state = self.accounts[account_id]
        block = {"block_height": self.block_height, "block_hash": FAKE_BLOCK_HASH}

        request_type = params["request_type"]
        if request_type == "view_account":
            return {
                "amount": str(state.amount),
                "locked": str(state.locked),
                "code_hash": state.code_hash,
                "storage_usage": state.storage_usage,
                "storage_paid_at": 0,
                **block,
            }
        if request_type == "view_access_key":
            public_key = params["public_key"]
            if public_key not in state.keys:
                raise self._handler_error(
                    "UNKNOWN_ACCESS_KEY",
                    f"access key {public_key} does not exist while viewing",
                )
            return {"nonce": state.keys[public_key], "permission": "FullAccess", **block}
        if request_type == "call_function":
            method_name = params["method_name"]
            error = self._take_failure(method_name)
            if error is not None:
                raise error
            if state.contract is None:
                raise self._handler_error(
                    "CONTRACT_EXECUTION_ERROR",
                    "wasm execution failed with error: CompilationError(CodeDoesNotExist)",
                )
            raw = base64.b64decode(params["args_base64"])
            try:
                value = state.contract.view(method_name, json.loads(raw or b"{}"))
            except MethodNotFound:
                raise self._handler_error(
                    "CONTRACT_EXECUTION_ERROR",
                    "wasm execution failed with error: MethodResolveError(MethodNotFound)",
                )
            except ContractPanic as e:
                raise self._handler_error(
                    "CONTRACT_EXECUTION_ERROR",
                    f"wasm execution failed with error: Smart contract panicked: {e}",
                )
            return {"result": list(json.dumps(value).encode()), "logs": [], **block}
        raise self._handler_error("UNKNOWN_REQUEST", f"unknown request {request_type}")

    def _invalid_transaction(self, error: Dict[str, Any]) -> RemoteExecutionError:
        return self._handler_error(
            "INVALID_TRANSACTION", {"TxExecutionError": {"InvalidTxError": error}}
        )

    def _broadcast(self, encoded: str) -> Dict[str, Any]:
        signed = SignedTransaction.deserialize(Deserializer(base64.b64decode(encoded)))
        transaction = signed.transaction
        if not signed.verify():
            raise self._invalid_transaction({"InvalidSignature": None})
        if transaction.signer_id not in self.accounts:
            raise self._invalid_transaction(
                {"SignerDoesNotExist": {"signer_id": transaction.signer_id}}
            )
        signer = self.accounts[transaction.signer_id]
        public_key = str(transaction.public_key)
        if public_key not in signer.keys:
            raise self._invalid_transaction(
                {"InvalidAccessKeyError": {"AccessKeyNotFound": {"public_key": public_key}}}
            )
        if transaction.nonce <= signer.keys[public_key]:
            raise self._invalid_transaction(
                {
                    "InvalidNonce": {
                        "tx_nonce": transaction.nonce,
                        "ak_nonce": signer.keys[public_key],
                    }
                }
            )
        late_errors: List[Exception] = []
        for action in transaction.actions:
            if isinstance(action.value, FunctionCall):
                error = self._take_failure(action.value.method_name)
                if error is not None:
                    late_errors.append(error)

        signer.keys[public_key] = transaction.nonce
        self.block_height += 1

        snapshot = copy.deepcopy(self.accounts)
        value = b""
        try:
            for index, action in enumerate(transaction.actions):
                value = self._apply(transaction, index, action.value)
        except _ActionFailure as e:
            self.accounts = snapshot
            status: Dict[str, Any] = {
                "Failure": {"ActionError": {"index": e.index, "kind": e.kind}}
            }
        else:
            status = {"SuccessValue": base64.b64encode(value).decode()}

        if late_errors:
            raise late_errors[0]
        return {
            "status": status,
            "transaction": {
                "hash": signed.hash(),
                "signer_id": transaction.signer_id,
                "receiver_id": transaction.receiver_id,
                "nonce": transaction.nonce,
            },
            "transaction_outcome": {"id": signed.hash(), "block_hash": FAKE_BLOCK_HASH},
            "receipts_outcome": [],
        }

    def _apply(self, transaction: Transaction, index: int, action: Any) -> bytes:
        signer_id = transaction.signer_id
        receiver_id = transaction.receiver_id

        if isinstance(action, CreateAccount):
            if receiver_id in self.accounts:
                raise _ActionFailure(
                    index, {"AccountAlreadyExists": {"account_id": receiver_id}}
                )
            if not AccountId.is_sub_account_of(receiver_id, signer_id):
                raise _ActionFailure(
                    index,
                    {
                        "CreateAccountNotAllowed": {
                            "account_id": receiver_id,
                            "predecessor_id": signer_id,
                        }
                    },
                )
            self.accounts[receiver_id] = FakeAccountState(0)
            return b""

        if receiver_id not in self.accounts:
            raise _ActionFailure(
                index, {"AccountDoesNotExist": {"account_id": receiver_id}}
            )
        receiver = self.accounts[receiver_id]

        try:
            if isinstance(action, DeployContract):
                if receiver_id != signer_id:
                    raise _ActionFailure(
                        index,
                        {"ActorNoPermission": {"account_id": receiver_id, "actor_id": signer_id}},
                    )
                receiver.code_hash = code_hash(action.code)
                factory = self.code_registry.get(receiver.code_hash, FakeContract)
                receiver.contract = factory()
            elif isinstance(action, FunctionCall):
                self.calls.append((signer_id, receiver_id, action.method_name))
                args = json.loads(action.args or b"{}")
                result = self.call_contract(
                    signer_id,
                    signer_id,
                    receiver_id,
                    action.method_name,
                    args,
                    action.deposit,
                )
                return json.dumps(result).encode() if result is not None else b""
            elif isinstance(action, Transfer):
                self.transfer(signer_id, receiver_id, action.deposit)
            elif isinstance(action, AddKey):
                receiver.keys[str(action.public_key)] = action.access_key.nonce
            else:
                raise _ActionFailure(index, {"UnsupportedAction": str(action)})
        except MethodNotFound:
            raise _ActionFailure(
                index, {"FunctionCallError": {"MethodResolveError": "MethodNotFound"}}
            )
        except ContractPanic as e:
            raise _ActionFailure(
                index,
                {"FunctionCallError": {"ExecutionError": f"Smart contract panicked: {e}"}},
            )
        return b""


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.chain = FakeRpcClient()
        self.contract = Account.generate("series.testnet")
        self.chain.add_account(
            self.contract.account_id,
            self.contract.public_key(),
            contract=FakeSeriesContract(),
        )
        self.series = SeriesClient(self.chain, self.contract.account_id)
        await self.series.new_default_meta(
            self.contract, self.contract.account_id, {"test": "1000000"}
        )

    async def _create(self, prefix: str) -> Account:
        account = Account.generate(f"{prefix}.{self.contract.account_id}")
        await self.chain.create_account(
            self.contract, account.account_id, account.public_key(), parse_near_amount("10")
        )
        return account

    async def test_init_twice(self):
        with self.assertRaises(AlreadyInitializedError):
            await self.series.new_default_meta(
                self.contract, self.contract.account_id, {"test": "1"}
            )

    async def test_patch_metadata(self):
        await self.series.patch_base_uri(self.contract, "https://ipfs.io")
        self.assertEqual((await self.series.nft_metadata()).base_uri, "https://ipfs.io")

        before = await self.series.contract_source_metadata()
        await self.series.patch_contract_source_metadata(
            self.contract, SourceMetadata(version="2")
        )
        after = await self.series.contract_source_metadata()
        self.assertEqual(after, SourceMetadata("2", before.commit_hash, before.link))

    async def test_unauthorized_patch(self):
        stranger = await self._create("stranger")
        with self.assertRaises(RemoteRejectionError) as cm:
            await self.series.patch_base_uri(stranger, "https://example.com")
        self.assertIn("Unauthorized", str(cm.exception))

    async def test_sale_pays_royalty(self):
        alice = await self._create("alice")
        bob = await self._create("bob")
        market = await self._create("market")
        market_code = b"\x00asm market"
        self.chain.register_code(market_code, FakeMarketContract)
        await self.chain.sign_and_send_transaction(
            market,
            market.account_id,
            [
                Action(DeployContract(market_code)),
                Action(
                    FunctionCall(
                        "new", json.dumps({"owner_id": "series.testnet"}).encode(), 10, 0
                    )
                ),
            ],
        )

        await self.series.nft_mint(
            self.contract,
            "test:1",
            TokenMetadata(media="https://example.com/1.gif", issued_at="1"),
            "test",
            {bob.account_id: 1000},
        )
        await self.series.nft_transfer(self.contract, alice.account_id, "test:1")
        await self.series.nft_approve(
            alice,
            "test:1",
            market.account_id,
            SaleArgs({"near": str(parse_near_amount("1"))}, "test"),
        )

        bob_before = self.chain.balance_of(bob.account_id)
        alice_before = self.chain.balance_of(alice.account_id)
        await MarketClient(self.chain, market.account_id).offer(
            self.contract, self.contract.account_id, "test:1", parse_near_amount("1")
        )
        self.assertEqual(
            self.chain.balance_of(bob.account_id) - bob_before, parse_near_amount("0.1")
        )
        self.assertEqual(
            self.chain.balance_of(alice.account_id) - alice_before,
            parse_near_amount("0.9"),
        )
        token = await self.series.nft_token("test:1")
        self.assertEqual(token.owner_id, self.contract.account_id)

        payout = await self.series.nft_payout("test:1", parse_near_amount("1"), 9)
        self.assertEqual(
            payout,
            {
                bob.account_id: parse_near_amount("0.1"),
                self.contract.account_id: parse_near_amount("0.9"),
            },
        )

    async def test_failed_actions_roll_back(self):
        market = await self._create("market")
        code = b"\x00asm market"
        self.chain.register_code(code, FakeMarketContract)
        with self.assertRaises(RemoteRejectionError):
            await self.chain.sign_and_send_transaction(
                market,
                market.account_id,
                [
                    Action(DeployContract(code)),
                    Action(FunctionCall("missing_init", b"{}", 10, 0)),
                ],
            )
        state = await self.chain.view_account(market.account_id)
        self.assertEqual(state["code_hash"], EMPTY_CODE_HASH)

    async def test_fail_next(self):
        self.chain.fail_next("nft_metadata")
        metadata = await self.series.nft_metadata()
        self.assertEqual(metadata.spec, "nft-1.0.0")

        self.chain.fail_next("patch_base_uri")
        with self.assertRaises(TransientNetworkError):
            await self.series.patch_base_uri(self.contract, "https://ipfs.io")
        await self.series.patch_base_uri(self.contract, "https://ipfs.io")
        self.assertEqual(
            [call[2] for call in self.chain.calls],
            ["new_default_meta", "patch_base_uri"],
        )

    async def test_fail_after_apply(self):
        self.chain.fail_next("patch_base_uri", after_apply=True)
        with self.assertRaises(TransientNetworkError):
            await self.series.patch_base_uri(self.contract, "https://ipfs.io")
        self.assertEqual((await self.series.nft_metadata()).base_uri, "https://ipfs.io")
        self.assertEqual(
            [call[2] for call in self.chain.calls],
            ["new_default_meta", "patch_base_uri"],
        )

    async def test_pagination(self):
        for suffix in range(5):
            await self.series.nft_mint(
                self.contract, f"test:{suffix}", TokenMetadata(), "test", {}
            )
        tokens = await self.series.all_tokens(page_size=2)
        self.assertEqual([t.token_id for t in tokens], [f"test:{i}" for i in range(5)])


if __name__ == "__main__":
    unittest.main()
