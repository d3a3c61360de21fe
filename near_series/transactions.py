# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
NEAR transactions and the actions they carry.

A NEAR transaction is a batch of actions applied atomically to a single receiver
account: either every action succeeds or the receiver's state is rolled back. That
property is what lets a contract deploy and its initialisation call travel together
in one transaction.

Structure::

    Transaction
    ├── signer_id, public_key, nonce
    ├── receiver_id
    ├── block_hash      (recent block, bounds the transaction lifetime)
    └── actions: [Action]
        ├── CreateAccount
        ├── DeployContract(code)
        ├── FunctionCall(method_name, args, gas, deposit)
        ├── Transfer(deposit)
        └── AddKey(public_key, AccessKey)

The transaction is Borsh encoded, hashed with sha256, and the digest is signed. The
`SignedTransaction` is what gets submitted to the network, base64 encoded.

Examples:
    Transfer one NEAR::

        transaction = Transaction(
            sender.account_id,
            sender.public_key(),
            nonce,
            "bob.testnet",
            block_hash,
            [Action(Transfer(10**24))],
        )
        signed = sender.sign_transaction(transaction)
"""

from __future__ import annotations

import base64
import hashlib
import typing
import unittest
from typing import List

import base58

from . import ed25519
from .borsh import Deserializer, Serializer


class CreateAccount:
    def __eq__(self, other: object) -> bool:
        return isinstance(other, CreateAccount)

    def __str__(self) -> str:
        return "CreateAccount"

    @staticmethod
    def deserialize(deserializer: Deserializer) -> CreateAccount:
        return CreateAccount()

    def serialize(self, serializer: Serializer):
        pass


class DeployContract:
    code: bytes

    def __init__(self, code: bytes):
        self.code = code

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DeployContract):
            return NotImplemented
        return self.code == other.code

    def __str__(self) -> str:
        return f"DeployContract({len(self.code)} bytes)"

    @staticmethod
    def deserialize(deserializer: Deserializer) -> DeployContract:
        return DeployContract(deserializer.to_bytes())

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.code)


class FunctionCall:
    """Invoke `method_name` on the receiver's contract.

    `args` are the raw argument bytes, JSON for every contract this package talks
    to. `gas` is the prepaid gas and `deposit` the yoctoNEAR attached to the call.
    """

    method_name: str
    args: bytes
    gas: int
    deposit: int

    def __init__(self, method_name: str, args: bytes, gas: int, deposit: int):
        self.method_name = method_name
        self.args = args
        self.gas = gas
        self.deposit = deposit

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FunctionCall):
            return NotImplemented
        return (
            self.method_name == other.method_name
            and self.args == other.args
            and self.gas == other.gas
            and self.deposit == other.deposit
        )

    def __str__(self) -> str:
        return f"FunctionCall({self.method_name}, gas: {self.gas}, deposit: {self.deposit})"

    @staticmethod
    def deserialize(deserializer: Deserializer) -> FunctionCall:
        method_name = deserializer.str()
        args = deserializer.to_bytes()
        gas = deserializer.u64()
        deposit = deserializer.u128()
        return FunctionCall(method_name, args, gas, deposit)

    def serialize(self, serializer: Serializer):
        serializer.str(self.method_name)
        serializer.to_bytes(self.args)
        serializer.u64(self.gas)
        serializer.u128(self.deposit)


class Transfer:
    deposit: int

    def __init__(self, deposit: int):
        self.deposit = deposit

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Transfer):
            return NotImplemented
        return self.deposit == other.deposit

    def __str__(self) -> str:
        return f"Transfer({self.deposit})"

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Transfer:
        return Transfer(deserializer.u128())

    def serialize(self, serializer: Serializer):
        serializer.u128(self.deposit)


class FullAccessPermission:
    def __eq__(self, other: object) -> bool:
        return isinstance(other, FullAccessPermission)

    def __str__(self) -> str:
        return "FullAccess"

    @staticmethod
    def deserialize(deserializer: Deserializer) -> FullAccessPermission:
        return FullAccessPermission()

    def serialize(self, serializer: Serializer):
        pass


class AccessKey:
    """An access key as added to an account. Only full access keys are granted
    here; tag 0, function call keys, is rejected when decoding."""

    FULL_ACCESS: int = 1

    nonce: int
    permission: FullAccessPermission

    def __init__(self, permission: FullAccessPermission, nonce: int = 0):
        if not isinstance(permission, FullAccessPermission):
            raise Exception("Invalid type")
        self.nonce = nonce
        self.permission = permission

    @staticmethod
    def full_access() -> AccessKey:
        return AccessKey(FullAccessPermission())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccessKey):
            return NotImplemented
        return self.nonce == other.nonce and self.permission == other.permission

    def __str__(self) -> str:
        return f"AccessKey({self.permission}, nonce: {self.nonce})"

    @staticmethod
    def deserialize(deserializer: Deserializer) -> AccessKey:
        nonce = deserializer.u64()
        variant = deserializer.u8()
        if variant != AccessKey.FULL_ACCESS:
            raise Exception(f"Invalid type: {variant}")
        return AccessKey(FullAccessPermission.deserialize(deserializer), nonce)

    def serialize(self, serializer: Serializer):
        serializer.u64(self.nonce)
        serializer.u8(AccessKey.FULL_ACCESS)
        serializer.struct(self.permission)


class AddKey:
    public_key: ed25519.PublicKey
    access_key: AccessKey

    def __init__(self, public_key: ed25519.PublicKey, access_key: AccessKey):
        self.public_key = public_key
        self.access_key = access_key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AddKey):
            return NotImplemented
        return (
            self.public_key == other.public_key
            and self.access_key == other.access_key
        )

    def __str__(self) -> str:
        return f"AddKey({self.public_key}, {self.access_key})"

    @staticmethod
    def deserialize(deserializer: Deserializer) -> AddKey:
        public_key = deserializer.struct(ed25519.PublicKey)
        return AddKey(public_key, deserializer.struct(AccessKey))

    def serialize(self, serializer: Serializer):
        serializer.struct(self.public_key)
        serializer.struct(self.access_key)


class Action:
    """Tagged union over the action kinds this package sends; the tag is a single
    Borsh byte. Tags 4 (stake), 6 (delete key) and 7 (delete account) are
    rejected when decoding."""

    CREATE_ACCOUNT: int = 0
    DEPLOY_CONTRACT: int = 1
    FUNCTION_CALL: int = 2
    TRANSFER: int = 3
    ADD_KEY: int = 5

    variant: int
    value: typing.Any

    def __init__(self, value: typing.Any):
        if isinstance(value, CreateAccount):
            self.variant = Action.CREATE_ACCOUNT
        elif isinstance(value, DeployContract):
            self.variant = Action.DEPLOY_CONTRACT
        elif isinstance(value, FunctionCall):
            self.variant = Action.FUNCTION_CALL
        elif isinstance(value, Transfer):
            self.variant = Action.TRANSFER
        elif isinstance(value, AddKey):
            self.variant = Action.ADD_KEY
        else:
            raise Exception("Invalid type")
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Action):
            return NotImplemented
        return self.variant == other.variant and self.value == other.value

    def __str__(self) -> str:
        return self.value.__str__()

    def __repr__(self) -> str:
        return self.__str__()

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Action:
        variant = deserializer.u8()

        if variant == Action.CREATE_ACCOUNT:
            value: typing.Any = CreateAccount.deserialize(deserializer)
        elif variant == Action.DEPLOY_CONTRACT:
            value = DeployContract.deserialize(deserializer)
        elif variant == Action.FUNCTION_CALL:
            value = FunctionCall.deserialize(deserializer)
        elif variant == Action.TRANSFER:
            value = Transfer.deserialize(deserializer)
        elif variant == Action.ADD_KEY:
            value = AddKey.deserialize(deserializer)
        else:
            raise Exception(f"Invalid type: {variant}")

        return Action(value)

    def serialize(self, serializer: Serializer):
        serializer.u8(self.variant)
        serializer.struct(self.value)


class Transaction:
    """An unsigned NEAR transaction.

    Attributes:
        signer_id: Account paying for and signing the transaction.
        public_key: Access key of `signer_id` used to sign.
        nonce: Must exceed the access key's current nonce.
        receiver_id: Account every action applies to.
        block_hash: Hash of a recent block; the transaction expires with it.
        actions: Applied in order, atomically.
    """

    BLOCK_HASH_LENGTH: int = 32

    signer_id: str
    public_key: ed25519.PublicKey
    nonce: int
    receiver_id: str
    block_hash: bytes
    actions: List[Action]

    def __init__(
        self,
        signer_id: str,
        public_key: ed25519.PublicKey,
        nonce: int,
        receiver_id: str,
        block_hash: bytes,
        actions: List[Action],
    ):
        if len(block_hash) != Transaction.BLOCK_HASH_LENGTH:
            raise Exception("Block hash length mismatch")
        self.signer_id = signer_id
        self.public_key = public_key
        self.nonce = nonce
        self.receiver_id = receiver_id
        self.block_hash = block_hash
        self.actions = actions

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Transaction):
            return NotImplemented
        return (
            self.signer_id == other.signer_id
            and self.public_key == other.public_key
            and self.nonce == other.nonce
            and self.receiver_id == other.receiver_id
            and self.block_hash == other.block_hash
            and self.actions == other.actions
        )

    def __str__(self) -> str:
        return f"""Transaction {{
    signer_id: {self.signer_id},
    public_key: {self.public_key},
    nonce: {self.nonce},
    receiver_id: {self.receiver_id},
    block_hash: {base58.b58encode(self.block_hash).decode()},
    actions: {self.actions},
}}"""

    def to_bytes(self) -> bytes:
        ser = Serializer()
        self.serialize(ser)
        return ser.output()

    def hash(self) -> bytes:
        """The sha256 digest that gets signed; base58 encoded it is the transaction hash."""
        return hashlib.sha256(self.to_bytes()).digest()

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Transaction:
        return Transaction(
            deserializer.str(),
            deserializer.struct(ed25519.PublicKey),
            deserializer.u64(),
            deserializer.str(),
            deserializer.fixed_bytes(Transaction.BLOCK_HASH_LENGTH),
            deserializer.sequence(Action.deserialize),
        )

    def serialize(self, serializer: Serializer):
        serializer.str(self.signer_id)
        serializer.struct(self.public_key)
        serializer.u64(self.nonce)
        serializer.str(self.receiver_id)
        serializer.fixed_bytes(self.block_hash)
        serializer.sequence(self.actions, Serializer.struct)


class SignedTransaction:
    transaction: Transaction
    signature: ed25519.Signature

    def __init__(self, transaction: Transaction, signature: ed25519.Signature):
        self.transaction = transaction
        self.signature = signature

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SignedTransaction):
            return NotImplemented
        return (
            self.transaction == other.transaction
            and self.signature == other.signature
        )

    def __str__(self) -> str:
        return f"SignedTransaction {{\n  {self.transaction},\n  {self.signature}\n}}"

    def hash(self) -> str:
        return base58.b58encode(self.transaction.hash()).decode()

    def verify(self) -> bool:
        return self.transaction.public_key.verify(
            self.transaction.hash(), self.signature
        )

    def to_bytes(self) -> bytes:
        ser = Serializer()
        self.serialize(ser)
        return ser.output()

    def to_base64(self) -> str:
        """The encoding expected by ``broadcast_tx_commit``."""
        return base64.b64encode(self.to_bytes()).decode()

    @staticmethod
    def deserialize(deserializer: Deserializer) -> SignedTransaction:
        transaction = Transaction.deserialize(deserializer)
        return SignedTransaction(transaction, deserializer.struct(ed25519.Signature))

    def serialize(self, serializer: Serializer):
        serializer.struct(self.transaction)
        serializer.struct(self.signature)


class Test(unittest.TestCase):
    def test_action_tags(self):
        ser = Serializer()
        Action(CreateAccount()).serialize(ser)
        self.assertEqual(ser.output(), b"\x00")

        ser = Serializer()
        Action(Transfer(1)).serialize(ser)
        self.assertEqual(ser.output(), b"\x03" + b"\x01" + b"\x00" * 15)

        with self.assertRaises(Exception):
            Action("not an action")

    def test_function_call_layout(self):
        ser = Serializer()
        Action(FunctionCall("new", b"{}", 30, 1)).serialize(ser)
        expected = (
            b"\x02"
            + b"\x03\x00\x00\x00new"
            + b"\x02\x00\x00\x00{}"
            + (30).to_bytes(8, "little")
            + (1).to_bytes(16, "little")
        )
        self.assertEqual(ser.output(), expected)

    def test_full_access_key_layout(self):
        public_key = ed25519.PrivateKey.random().public_key()
        ser = Serializer()
        Action(AddKey(public_key, AccessKey.full_access())).serialize(ser)
        output = ser.output()
        self.assertEqual(output[0], Action.ADD_KEY)
        self.assertEqual(output[1], ed25519.KeyType.ED25519)
        self.assertEqual(output[2:34], public_key.to_crypto_bytes())
        self.assertEqual(output[34:], bytes(8) + b"\x01")

    def test_unsupported_tags_rejected(self):
        with self.assertRaises(Exception):
            Action.deserialize(Deserializer(b"\x04"))
        with self.assertRaises(Exception):
            AccessKey.deserialize(Deserializer(bytes(8) + b"\x00"))

    def test_signed_transaction(self):
        private_key = ed25519.PrivateKey.random()
        transaction = Transaction(
            "series.testnet",
            private_key.public_key(),
            7,
            "market.series.testnet",
            bytes(range(32)),
            [
                Action(DeployContract(b"\x00asm")),
                Action(FunctionCall("new", b'{"owner_id":"series.testnet"}', 10, 0)),
            ],
        )
        signed = SignedTransaction(transaction, private_key.sign(transaction.hash()))
        self.assertTrue(signed.verify())

        decoded = SignedTransaction.deserialize(
            Deserializer(base64.b64decode(signed.to_base64()))
        )
        self.assertEqual(decoded, signed)
        self.assertEqual(decoded.hash(), signed.hash())

        tampered = SignedTransaction(
            Transaction(
                transaction.signer_id,
                transaction.public_key,
                8,
                transaction.receiver_id,
                transaction.block_hash,
                transaction.actions,
            ),
            signed.signature,
        )
        self.assertFalse(tampered.verify())

    def test_block_hash_length(self):
        with self.assertRaises(Exception):
            Transaction(
                "a.testnet",
                ed25519.PrivateKey.random().public_key(),
                1,
                "b.testnet",
                b"short",
                [],
            )


if __name__ == "__main__":
    unittest.main()
