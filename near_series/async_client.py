# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Asynchronous JSON-RPC client for NEAR nodes.

`RpcClient` wraps the small part of the NEAR JSON-RPC API that contract integration
needs: state queries, read-only contract views, and signed transaction submission.
Every remote failure is translated into one of a few exception types so callers can
decide what to retry:

    RemoteExecutionError
    ├── TransientNetworkError   timeouts, overloaded nodes, stale nonce or block hash
    ├── RemoteRejectionError    the network or the contract refused the request
    │   └── AlreadyInitializedError
    └── AccountNotFound

Only view calls are retried by the client, and only on `TransientNetworkError`.
Mutating calls are submitted once; whether to try again is the caller's decision
because a timed out transaction may still have been applied.

Examples:
    Read and call a contract::

        client = RpcClient("https://rpc.testnet.near.org")
        metadata = await client.view_function("series.testnet", "nft_metadata")

        owner = Account.load("./owner.json")
        await client.function_call(
            owner,
            "series.testnet",
            "patch_base_uri",
            {"base_uri": "https://ipfs.io"},
            deposit=parse_near_amount("0.1"),
        )
        await client.close()
"""

from __future__ import annotations

import base64
import json
import logging
import re
import unittest
import unittest.mock
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import base58
import httpx

from .account import Account
from .borsh import Deserializer
from .ed25519 import PublicKey
from .metadata import Metadata
from .transactions import (
    AccessKey,
    Action,
    AddKey,
    CreateAccount,
    FunctionCall,
    SignedTransaction,
    Transaction,
    Transfer,
)
from .units import TGAS

ALREADY_INITIALIZED = re.compile(r"already been initialized", re.IGNORECASE)
TRANSIENT_STATUS_CODES = (408, 429)
# InvalidTxError variants that a fresh nonce, block hash or a later attempt can fix.
TRANSIENT_TX_ERRORS = ("InvalidNonce", "Expired", "ShardCongested", "ShardStuck")
TRANSIENT_RPC_CAUSES = ("TIMEOUT_ERROR", "NO_SYNCED_BLOCKS", "NOT_SYNCED_YET")


@dataclass
class ClientConfig:
    """Configuration parameters for `RpcClient`.

    Attributes:
        gas: Prepaid gas attached to function calls when the caller gives none.
        view_attempts: Total attempts for a view call that keeps failing with
            `TransientNetworkError`.
        view_finality: Finality used for contract views.
        state_finality: Finality used for account and access key queries.
            ``optimistic`` sees the effects of a transaction as soon as
            ``broadcast_tx_commit`` returns; ``final`` lags a few blocks behind.
        timeout_in_seconds: Per request HTTP timeout; ``broadcast_tx_commit`` waits
            for execution, so keep this above the node's own timeout.
        http2: Enable HTTP/2.
        api_key: Optional bearer token for hosted RPC providers.
    """

    gas: int = 200 * TGAS
    view_attempts: int = 2
    view_finality: str = "optimistic"
    state_finality: str = "optimistic"
    timeout_in_seconds: float = 60.0
    http2: bool = True
    api_key: Optional[str] = None


@dataclass
class AccountBalance:
    """Balances of an account in yoctoNEAR.

    `total` is the liquid amount plus the locked (validator staked) amount,
    `state_staked` is what storage currently pins, and `available` is what the
    account can still spend.
    """

    total: int
    state_staked: int
    staked: int
    available: int


class RpcClient:
    """Async client for a NEAR JSON-RPC endpoint.

    Nonces are tracked per ``(account_id, public_key)``: each transaction uses one
    more than the larger of the last nonce this client signed with and the nonce
    the node reports, so consecutive transactions never reuse a nonce while the
    node's view of the access key lags behind.
    """

    _nonces: Dict[Tuple[str, str], int]
    _storage_amount_per_byte: Optional[int]
    client: httpx.AsyncClient
    client_config: ClientConfig
    node_url: str

    def __init__(self, node_url: str, client_config: ClientConfig = ClientConfig()):
        self.node_url = node_url
        # Default limits
        limits = httpx.Limits()
        # No pool timeout: queued requests wait as long as others make progress.
        timeout = httpx.Timeout(client_config.timeout_in_seconds, pool=None)
        # Default headers
        headers = {Metadata.CLIENT_HEADER: Metadata.get_client_header_val()}
        self.client = httpx.AsyncClient(
            http2=client_config.http2,
            limits=limits,
            timeout=timeout,
            headers=headers,
        )
        self.client_config = client_config
        self._storage_amount_per_byte = None
        self._nonces = {}
        if client_config.api_key:
            self.client.headers["Authorization"] = f"Bearer {client_config.api_key}"

    async def close(self):
        await self.client.aclose()

    #
    # State queries
    #

    async def query(self, request_type: str, **params: Any) -> Dict[str, Any]:
        """Run a ``query`` request, defaulting to ``client_config.state_finality``."""
        params = {"request_type": request_type, **params}
        if "block_id" not in params:
            params.setdefault("finality", self.client_config.state_finality)
        return await self._rpc("query", params)

    async def view_account(self, account_id: str) -> Dict[str, Any]:
        """Fetch the on-chain record of an account.

        Args:
            account_id: Account to look up.

        Returns:
            ``amount``, ``locked``, ``code_hash``, ``storage_usage`` and the block the
            state was read at.

        Raises:
            AccountNotFound: If the account does not exist.
        """
        return await self.query("view_account", account_id=account_id)

    async def account_exists(self, account_id: str) -> bool:
        try:
            await self.view_account(account_id)
        except AccountNotFound:
            return False
        return True

    async def account_balance(self, account_id: str) -> AccountBalance:
        state = await self.view_account(account_id)
        if self._storage_amount_per_byte is None:
            config = await self.protocol_config()
            self._storage_amount_per_byte = int(
                config["runtime_config"]["storage_amount_per_byte"]
            )

        state_staked = int(state["storage_usage"]) * self._storage_amount_per_byte
        staked = int(state["locked"])
        total = int(state["amount"]) + staked
        available = total - max(staked, state_staked)
        return AccountBalance(total, state_staked, staked, available)

    async def view_access_key(
        self, account_id: str, public_key: PublicKey
    ) -> Dict[str, Any]:
        return await self.query(
            "view_access_key", account_id=account_id, public_key=str(public_key)
        )

    async def view_function(
        self,
        contract_id: str,
        method_name: str,
        args: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Call a read-only contract method.

        Retried up to ``client_config.view_attempts`` times on
        `TransientNetworkError`; any other failure propagates immediately.

        Returns:
            The JSON-decoded return value, or None when the method returns nothing.
        """
        args_base64 = base64.b64encode(encode_args(args)).decode()
        attempts = max(1, self.client_config.view_attempts)
        attempt = 1
        while True:
            try:
                result = await self.query(
                    "call_function",
                    finality=self.client_config.view_finality,
                    account_id=contract_id,
                    method_name=method_name,
                    args_base64=args_base64,
                )
                return decode_result(bytes(result["result"]))
            except TransientNetworkError as e:
                if attempt >= attempts:
                    raise
                logging.warning(
                    f"view {contract_id}.{method_name} failed ({e}), attempt {attempt} of {attempts}"
                )
                attempt += 1

    async def block(
        self, finality: str = "final", block_id: Optional[Any] = None
    ) -> Dict[str, Any]:
        if block_id is not None:
            return await self._rpc("block", {"block_id": block_id})
        return await self._rpc("block", {"finality": finality})

    async def protocol_config(self, finality: str = "final") -> Dict[str, Any]:
        return await self._rpc("EXPERIMENTAL_protocol_config", {"finality": finality})

    #
    # Transactions
    #

    async def send_transaction(self, signed_transaction: SignedTransaction) -> Dict[str, Any]:
        """Submit a signed transaction and wait for its execution outcome.

        Returns:
            The final execution outcome returned by ``broadcast_tx_commit``.

        Raises:
            RemoteRejectionError: If the transaction or one of its receipts failed.
        """
        outcome = await self._rpc(
            "broadcast_tx_commit", [signed_transaction.to_base64()]
        )
        status = outcome.get("status", {})
        if isinstance(status, dict) and "Failure" in status:
            raise classify_failure(status["Failure"])
        return outcome

    async def sign_and_send_transaction(
        self, signer: Account, receiver_id: str, actions: List[Action]
    ) -> Dict[str, Any]:
        """Build, sign and submit a transaction from `signer` to `receiver_id`.

        The block hash comes from the same access key query that reports the
        nonce, so no separate block request is needed.
        """
        public_key = signer.public_key()
        access_key = await self.view_access_key(signer.account_id, public_key)
        block_hash = access_key.get("block_hash")
        if block_hash is None:
            block_hash = (await self.block())["header"]["hash"]

        # No await between reading and storing the nonce.
        nonce_key = (signer.account_id, str(public_key))
        nonce = max(int(access_key["nonce"]), self._nonces.get(nonce_key, 0)) + 1
        self._nonces[nonce_key] = nonce

        transaction = Transaction(
            signer.account_id,
            public_key,
            nonce,
            receiver_id,
            base58.b58decode(block_hash),
            actions,
        )
        logging.info(f"{signer.account_id} -> {receiver_id}: {actions}")
        return await self.send_transaction(signer.sign_transaction(transaction))

    async def function_call(
        self,
        signer: Account,
        contract_id: str,
        method_name: str,
        args: Optional[Dict[str, Any]] = None,
        deposit: int = 0,
        gas: Optional[int] = None,
    ) -> Any:
        """Call a state changing contract method. Never retried.

        Args:
            deposit: yoctoNEAR attached to the call.
            gas: Prepaid gas, ``client_config.gas`` when None.

        Returns:
            The JSON-decoded return value, or None.
        """
        action = FunctionCall(
            method_name,
            encode_args(args),
            self.client_config.gas if gas is None else gas,
            deposit,
        )
        outcome = await self.sign_and_send_transaction(
            signer, contract_id, [Action(action)]
        )
        return decode_success_value(outcome["status"])

    async def create_account(
        self,
        funder: Account,
        new_account_id: str,
        public_key: PublicKey,
        initial_balance: int,
    ) -> Dict[str, Any]:
        """Create `new_account_id` (a sub-account of `funder`), fund it and give
        `public_key` full access, in one transaction."""
        actions = [
            Action(CreateAccount()),
            Action(Transfer(initial_balance)),
            Action(AddKey(public_key, AccessKey.full_access())),
        ]
        return await self.sign_and_send_transaction(funder, new_account_id, actions)

    #
    # Http helpers
    #

    async def _rpc(self, method: str, params: Any) -> Any:
        try:
            response = await self._post(method, params)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method}: {e!r}", None) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("error"):
            raise classify_rpc_error(body["error"])
        if response.status_code in TRANSIENT_STATUS_CODES or response.status_code >= 500:
            raise TransientNetworkError(
                f"{method}: {response.status_code} {response.text}", None
            )
        if response.status_code >= 400 or not isinstance(body, dict):
            raise ApiError(f"{method}: {response.text}", response.status_code)

        result = body.get("result")
        # Older nodes report query failures inside the result.
        if isinstance(result, dict) and isinstance(result.get("error"), str):
            raise classify_rpc_error(
                {"name": "HANDLER_ERROR", "message": result["error"], "data": result["error"]}
            )
        return result

    async def _post(self, method: str, params: Any) -> httpx.Response:
        return await self.client.post(
            url=self.node_url,
            json={"jsonrpc": "2.0", "id": "dontcare", "method": method, "params": params},
        )


def encode_args(args: Optional[Dict[str, Any]]) -> bytes:
    return json.dumps(args if args is not None else {}).encode()


def decode_result(raw: bytes) -> Any:
    """JSON-decode a contract return value; empty means the method returned
    nothing."""
    if not raw:
        return None
    return json.loads(raw.decode())


def decode_success_value(status: Any) -> Any:
    if isinstance(status, dict) and "SuccessValue" in status:
        return decode_result(base64.b64decode(status["SuccessValue"]))
    return None


def execution_error_message(failure: Dict[str, Any]) -> Optional[str]:
    """Pull the contract panic message out of an ``ActionError`` failure."""
    kind = failure.get("ActionError", {}).get("kind", {})
    function_call_error = kind.get("FunctionCallError") if isinstance(kind, dict) else None
    if isinstance(function_call_error, dict):
        message = function_call_error.get("ExecutionError")
        if isinstance(message, str):
            return message
    return None


def invalid_tx_variant(failure: Any) -> Optional[str]:
    """Name of the ``InvalidTxError`` variant in a failure, None for any other
    failure."""
    if isinstance(failure, dict) and "TxExecutionError" in failure:
        failure = failure["TxExecutionError"]
    if not isinstance(failure, dict):
        return None
    invalid = failure.get("InvalidTxError")
    if isinstance(invalid, str):
        return invalid
    if isinstance(invalid, dict) and len(invalid) == 1:
        return next(iter(invalid))
    return None


def classify_failure(failure: Dict[str, Any]) -> RemoteExecutionError:
    """Map a transaction ``Failure`` status to an exception.

    Only the structure of the failure decides whether it is transient; the text of
    a contract panic never does.
    """
    panic = execution_error_message(failure)
    message = panic or json.dumps(failure)
    if panic is not None and ALREADY_INITIALIZED.search(panic):
        return AlreadyInitializedError(message, failure)
    if invalid_tx_variant(failure) in TRANSIENT_TX_ERRORS:
        return TransientNetworkError(message, failure)
    return RemoteRejectionError(message, failure)


def classify_rpc_error(error: Dict[str, Any]) -> RemoteExecutionError:
    """Map a JSON-RPC ``error`` object to an exception.

    Transaction failures reported as errors are classified by `classify_failure`,
    so both paths apply the same rules in the same order.
    """
    cause = error.get("cause") if isinstance(error.get("cause"), dict) else {}
    cause_name = cause.get("name")
    data = error.get("data")
    message = data if isinstance(data, str) else error.get("message") or json.dumps(error)

    if error.get("name") in TRANSIENT_RPC_CAUSES or cause_name in TRANSIENT_RPC_CAUSES:
        return TransientNetworkError(message, error)
    if cause_name == "UNKNOWN_ACCOUNT" or (
        cause_name is None
        and re.search(r"account \S+ does not exist while viewing", message)
    ):
        info = cause.get("info") or {}
        return AccountNotFound(message, info.get("requested_account_id"), error)
    if isinstance(data, dict) and "TxExecutionError" in data:
        return classify_failure(data["TxExecutionError"])
    if ALREADY_INITIALIZED.search(message):
        return AlreadyInitializedError(message, error)
    return RemoteRejectionError(message, error)


class ApiError(Exception):
    """The node returned a non-success status code without a JSON-RPC error"""

    status_code: int

    def __init__(self, message: str, status_code: int):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.status_code = status_code


class RemoteExecutionError(Exception):
    """A request reached the network and failed"""

    data: Any

    def __init__(self, message: str, data: Any):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.data = data


class TransientNetworkError(RemoteExecutionError):
    """The failure may go away on retry: timeout, overload, nonce or block expiry"""


class RemoteRejectionError(RemoteExecutionError):
    """The network or the contract refused the request"""


class AlreadyInitializedError(RemoteRejectionError):
    """The contract's init method was called on an initialized contract"""


class AccountNotFound(RemoteExecutionError):
    """The account does not exist"""

    account_id: Optional[str]

    def __init__(self, message: str, account_id: Optional[str], data: Any = None):
        super().__init__(message, data)
        self.account_id = account_id


def rpc_response(result: Any = None, error: Any = None, status_code: int = 200) -> httpx.Response:
    body: Dict[str, Any] = {"jsonrpc": "2.0", "id": "dontcare"}
    if error is not None:
        body["error"] = error
    else:
        body["result"] = result
    return httpx.Response(status_code, json=body)


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = RpcClient("https://rpc.testnet.near.org")

    async def asyncTearDown(self):
        await self.client.close()

    async def test_view_function_decodes_json(self):
        value = list(json.dumps({"base_uri": "https://ipfs.io"}).encode())
        with unittest.mock.patch(
            "near_series.async_client.RpcClient._post",
            return_value=rpc_response({"result": value, "logs": []}),
        ) as post:
            metadata = await self.client.view_function("series.testnet", "nft_metadata")

        self.assertEqual(metadata, {"base_uri": "https://ipfs.io"})
        method, params = post.call_args.args
        self.assertEqual(method, "query")
        self.assertEqual(params["request_type"], "call_function")
        self.assertEqual(params["finality"], "optimistic")
        self.assertEqual(base64.b64decode(params["args_base64"]), b"{}")

    async def test_view_function_empty_result(self):
        with unittest.mock.patch(
            "near_series.async_client.RpcClient._post",
            return_value=rpc_response({"result": [], "logs": []}),
        ):
            self.assertIsNone(await self.client.view_function("a.testnet", "noop"))

    async def test_view_function_retries_transient(self):
        timeout = rpc_response(
            error={"name": "HANDLER_ERROR", "cause": {"name": "TIMEOUT_ERROR"}}
        )
        ok = rpc_response({"result": list(b"7"), "logs": []})
        with unittest.mock.patch(
            "near_series.async_client.RpcClient._post", side_effect=[timeout, ok]
        ) as post:
            self.assertEqual(await self.client.view_function("a.testnet", "count"), 7)
        self.assertEqual(post.call_count, 2)

    async def test_view_function_gives_up(self):
        timeout = rpc_response(
            error={"name": "HANDLER_ERROR", "cause": {"name": "TIMEOUT_ERROR"}}
        )
        with unittest.mock.patch(
            "near_series.async_client.RpcClient._post", side_effect=[timeout, timeout]
        ):
            with self.assertRaises(TransientNetworkError):
                await self.client.view_function("a.testnet", "count")

    async def test_view_function_rejection_not_retried(self):
        rejection = rpc_response(
            error={
                "name": "HANDLER_ERROR",
                "cause": {"name": "CONTRACT_EXECUTION_ERROR"},
                "data": "wasm execution failed with error: MethodNotFound",
            }
        )
        with unittest.mock.patch(
            "near_series.async_client.RpcClient._post", side_effect=[rejection]
        ) as post:
            with self.assertRaises(RemoteRejectionError):
                await self.client.view_function("a.testnet", "missing")
        self.assertEqual(post.call_count, 1)

    async def test_unknown_account(self):
        unknown = rpc_response(
            error={
                "name": "HANDLER_ERROR",
                "cause": {
                    "name": "UNKNOWN_ACCOUNT",
                    "info": {"requested_account_id": "nobody.testnet"},
                },
            }
        )
        with unittest.mock.patch(
            "near_series.async_client.RpcClient._post", return_value=unknown
        ):
            with self.assertRaises(AccountNotFound) as cm:
                await self.client.view_account("nobody.testnet")
            self.assertEqual(cm.exception.account_id, "nobody.testnet")
            self.assertFalse(await self.client.account_exists("nobody.testnet"))

    async def test_http_errors(self):
        with unittest.mock.patch(
            "near_series.async_client.RpcClient._post",
            return_value=httpx.Response(503, text="unavailable"),
        ):
            with self.assertRaises(TransientNetworkError):
                await self.client.block()
        with unittest.mock.patch(
            "near_series.async_client.RpcClient._post",
            return_value=httpx.Response(404, text="not found"),
        ):
            with self.assertRaises(ApiError):
                await self.client.block()
        with unittest.mock.patch(
            "near_series.async_client.RpcClient._post",
            side_effect=httpx.ConnectError("refused"),
        ):
            with self.assertRaises(TransientNetworkError):
                await self.client.block()

    async def test_account_balance(self):
        state = rpc_response(
            {"amount": "900", "locked": "100", "storage_usage": 3, "code_hash": "1"}
        )
        config = rpc_response({"runtime_config": {"storage_amount_per_byte": "10"}})
        with unittest.mock.patch(
            "near_series.async_client.RpcClient._post", side_effect=[state, config]
        ):
            balance = await self.client.account_balance("bob.testnet")
        self.assertEqual(balance, AccountBalance(1000, 30, 100, 900))

    async def test_function_call_signs_and_decodes(self):
        signer = Account.generate("owner.series.testnet")
        block_hash = base58.b58encode(bytes(32)).decode()
        access_key = rpc_response(
            {"nonce": 41, "permission": "FullAccess", "block_hash": block_hash}
        )
        outcome = rpc_response(
            {
                "status": {"SuccessValue": base64.b64encode(b'"done"').decode()},
                "transaction": {"hash": "x"},
            }
        )
        with unittest.mock.patch(
            "near_series.async_client.RpcClient._post", side_effect=[access_key, outcome]
        ) as post:
            result = await self.client.function_call(
                signer, "series.testnet", "nft_mint", {"token_id": "test:1"}, deposit=1
            )
        self.assertEqual(result, "done")

        method, params = post.call_args.args
        self.assertEqual(method, "broadcast_tx_commit")
        signed = SignedTransaction.deserialize(Deserializer(base64.b64decode(params[0])))
        self.assertTrue(signed.verify())
        self.assertEqual(signed.transaction.nonce, 42)
        self.assertEqual(signed.transaction.receiver_id, "series.testnet")
        call = signed.transaction.actions[0].value
        self.assertEqual(call.method_name, "nft_mint")
        self.assertEqual(call.gas, self.client.client_config.gas)
        self.assertEqual(call.deposit, 1)

    async def test_already_initialized_failure(self):
        signer = Account.generate("series.testnet")
        access_key = rpc_response(
            {"nonce": 1, "block_hash": base58.b58encode(bytes(32)).decode()}
        )
        failure = rpc_response(
            {
                "status": {
                    "Failure": {
                        "ActionError": {
                            "index": 0,
                            "kind": {
                                "FunctionCallError": {
                                    "ExecutionError": "Smart contract panicked: The contract has already been initialized"
                                }
                            },
                        }
                    }
                }
            }
        )
        with unittest.mock.patch(
            "near_series.async_client.RpcClient._post", side_effect=[access_key, failure]
        ):
            with self.assertRaises(AlreadyInitializedError):
                await self.client.function_call(signer, "series.testnet", "new_default_meta")

    def test_classify_invalid_nonce(self):
        error = classify_rpc_error(
            {
                "name": "HANDLER_ERROR",
                "cause": {"name": "INVALID_TRANSACTION"},
                "data": {"TxExecutionError": {"InvalidTxError": {"InvalidNonce": {}}}},
            }
        )
        self.assertIsInstance(error, TransientNetworkError)
        rejected = classify_failure(
            {"ActionError": {"index": 0, "kind": {"FunctionCallError": {"ExecutionError": "Unauthorized"}}}}
        )
        self.assertIsInstance(rejected, RemoteRejectionError)
        self.assertNotIsInstance(rejected, AlreadyInitializedError)
        self.assertEqual(str(rejected), "Unauthorized")

    def test_classify_ignores_panic_text(self):
        def panic(message: str) -> Dict[str, Any]:
            return {
                "ActionError": {
                    "index": 0,
                    "kind": {"FunctionCallError": {"ExecutionError": message}},
                }
            }

        expired_sale = classify_failure(panic("Smart contract panicked: Sale Expired"))
        self.assertIsInstance(expired_sale, RemoteRejectionError)
        self.assertNotIsInstance(expired_sale, TransientNetworkError)

        as_rpc_error = classify_rpc_error(
            {
                "name": "HANDLER_ERROR",
                "cause": {"name": "INVALID_TRANSACTION"},
                "data": {
                    "TxExecutionError": panic(
                        "Smart contract panicked: InvalidNonce for ShardStuck sale"
                    )
                },
            }
        )
        self.assertIsInstance(as_rpc_error, RemoteRejectionError)

        initialized = classify_rpc_error(
            {
                "name": "HANDLER_ERROR",
                "cause": {"name": "INVALID_TRANSACTION"},
                "data": {
                    "TxExecutionError": panic(
                        "Smart contract panicked: The contract has already been initialized"
                    )
                },
            }
        )
        self.assertIsInstance(initialized, AlreadyInitializedError)

        expired = classify_failure({"InvalidTxError": "Expired"})
        self.assertIsInstance(expired, TransientNetworkError)
        congested = classify_rpc_error(
            {
                "name": "HANDLER_ERROR",
                "cause": {"name": "INVALID_TRANSACTION"},
                "data": {
                    "TxExecutionError": {
                        "InvalidTxError": {"ShardCongested": {"shard_id": 0}}
                    }
                },
            }
        )
        self.assertIsInstance(congested, TransientNetworkError)

    async def test_nonce_tracked_locally(self):
        signer = Account.generate("owner.series.testnet")
        block_hash = base58.b58encode(bytes(32)).decode()

        def access_key(nonce: int) -> httpx.Response:
            return rpc_response(
                {"nonce": nonce, "permission": "FullAccess", "block_hash": block_hash}
            )

        outcome = rpc_response({"status": {"SuccessValue": ""}})
        state = rpc_response(
            {"amount": "1", "locked": "0", "storage_usage": 1, "code_hash": "1"}
        )
        with unittest.mock.patch(
            "near_series.async_client.RpcClient._post",
            side_effect=[
                access_key(5),
                outcome,
                access_key(5),
                outcome,
                access_key(20),
                outcome,
                state,
            ],
        ) as post:
            for _ in range(3):
                await self.client.function_call(signer, "series.testnet", "patch_base_uri")
            await self.client.view_account(signer.account_id)

        nonces = []
        finalities = []
        for call in post.call_args_list:
            method, params = call.args
            if method == "broadcast_tx_commit":
                signed = SignedTransaction.deserialize(
                    Deserializer(base64.b64decode(params[0]))
                )
                nonces.append(signed.transaction.nonce)
            else:
                finalities.append((params["request_type"], params["finality"]))

        self.assertEqual(nonces, [6, 7, 21])
        self.assertEqual(
            finalities,
            [("view_access_key", "optimistic")] * 3 + [("view_account", "optimistic")],
        )


if __name__ == "__main__":
    unittest.main()
