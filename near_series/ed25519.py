# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Ed25519 keys and signatures in the NEAR protocol encoding.

NEAR writes keys as ``<curve>:<base58 payload>``. A public key payload is the
32-byte verifying key; a secret key payload is 64 bytes, the 32-byte seed followed
by the public key, which is the layout produced by ``near-cli`` and stored in
credential files. On the wire (Borsh) keys and signatures are prefixed with a one
byte key type, 0 for ed25519.

Examples:
    Generate, sign and verify::

        private_key = PrivateKey.random()
        public_key = private_key.public_key()

        signature = private_key.sign(b"payload")
        assert public_key.verify(b"payload", signature)

    Load a key from a credential file value::

        with open(path) as file:
            key = PrivateKey.from_str(json.load(file)["private_key"])
        print(key.public_key())
"""

from __future__ import annotations

import unittest
from typing import cast

import base58
from nacl.signing import SigningKey, VerifyKey

from .borsh import Deserializer, Serializer

ED25519_PREFIX = "ed25519:"


class KeyType:
    ED25519: int = 0


def _strip_prefix(value: str) -> str:
    if value.startswith(ED25519_PREFIX):
        return value[len(ED25519_PREFIX) :]
    if ":" in value:
        raise Exception(f"Unsupported key type: {value.split(':', 1)[0]}")
    return value


class PrivateKey:
    """Ed25519 signing key.

    Attributes:
        SEED_LENGTH: Length of the signing seed (32).
        LENGTH: Length of the NEAR secret key payload, seed plus public key (64).
    """

    SEED_LENGTH: int = 32
    LENGTH: int = 64

    key: SigningKey

    def __init__(self, key: SigningKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PrivateKey):
            return NotImplemented
        return self.key == other.key

    def __str__(self):
        """Get the NEAR secret key string, ``ed25519:<base58 seed+public key>``."""
        secret = self.key.encode() + self.key.verify_key.encode()
        return ED25519_PREFIX + base58.b58encode(secret).decode()

    @staticmethod
    def from_str(value: str) -> PrivateKey:
        """Parse a NEAR secret key string.

        Both the 64-byte payload written by near-cli and a bare 32-byte seed are
        accepted, with or without the ``ed25519:`` prefix.

        Raises:
            Exception: If the key type is not ed25519, or the decoded payload has
                the wrong length, or the embedded public key does not match.
        """
        raw = base58.b58decode(_strip_prefix(value.strip()))
        if len(raw) == PrivateKey.SEED_LENGTH:
            return PrivateKey(SigningKey(raw))
        if len(raw) != PrivateKey.LENGTH:
            raise Exception("Length mismatch")

        key = SigningKey(raw[: PrivateKey.SEED_LENGTH])
        if key.verify_key.encode() != raw[PrivateKey.SEED_LENGTH :]:
            raise Exception("Secret key does not match its embedded public key")
        return PrivateKey(key)

    def public_key(self) -> PublicKey:
        return PublicKey(self.key.verify_key)

    @staticmethod
    def random() -> PrivateKey:
        return PrivateKey(SigningKey.generate())

    def sign(self, data: bytes) -> Signature:
        return Signature(self.key.sign(data).signature)


class PublicKey:
    """Ed25519 verifying key, written ``ed25519:<base58>`` in JSON and as
    ``u8 key type + 32 bytes`` in Borsh."""

    LENGTH: int = 32

    key: VerifyKey

    def __init__(self, key: VerifyKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PublicKey):
            return NotImplemented
        return self.key == other.key

    def __hash__(self):
        return hash(self.key.encode())

    def __str__(self) -> str:
        return ED25519_PREFIX + base58.b58encode(self.key.encode()).decode()

    def __repr__(self) -> str:
        return f"PublicKey({self})"

    @staticmethod
    def from_str(value: str) -> PublicKey:
        raw = base58.b58decode(_strip_prefix(value.strip()))
        if len(raw) != PublicKey.LENGTH:
            raise Exception("Length mismatch")
        return PublicKey(VerifyKey(raw))

    def verify(self, data: bytes, signature: Signature) -> bool:
        """Verify a signature, returning False rather than raising on mismatch."""
        try:
            signature = cast(Signature, signature)
            self.key.verify(data, signature.data())
        except Exception:
            return False
        return True

    def to_crypto_bytes(self) -> bytes:
        return self.key.encode()

    @staticmethod
    def deserialize(deserializer: Deserializer) -> PublicKey:
        key_type = deserializer.u8()
        if key_type != KeyType.ED25519:
            raise Exception(f"Unsupported key type: {key_type}")
        return PublicKey(VerifyKey(deserializer.fixed_bytes(PublicKey.LENGTH)))

    def serialize(self, serializer: Serializer):
        serializer.u8(KeyType.ED25519)
        serializer.fixed_bytes(self.key.encode())


class Signature:
    """A 64-byte ed25519 signature."""

    LENGTH: int = 64

    signature: bytes

    def __init__(self, signature: bytes):
        self.signature = signature

    def __eq__(self, other: object):
        if not isinstance(other, Signature):
            return NotImplemented
        return self.signature == other.signature

    def __str__(self) -> str:
        return ED25519_PREFIX + base58.b58encode(self.signature).decode()

    def data(self) -> bytes:
        return self.signature

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Signature:
        key_type = deserializer.u8()
        if key_type != KeyType.ED25519:
            raise Exception(f"Unsupported key type: {key_type}")
        return Signature(deserializer.fixed_bytes(Signature.LENGTH))

    def serialize(self, serializer: Serializer):
        serializer.u8(KeyType.ED25519)
        serializer.fixed_bytes(self.signature)


class Test(unittest.TestCase):
    def test_private_key_str_round_trip(self):
        private_key = PrivateKey.random()
        encoded = str(private_key)
        self.assertTrue(encoded.startswith("ed25519:"))
        self.assertEqual(PrivateKey.from_str(encoded), private_key)

    def test_private_key_from_seed(self):
        seed = bytes(range(32))
        from_seed = PrivateKey.from_str(base58.b58encode(seed).decode())
        from_secret = PrivateKey.from_str(str(from_seed))
        self.assertEqual(from_seed, from_secret)
        self.assertEqual(from_seed.public_key(), from_secret.public_key())

    def test_private_key_rejects_mismatched_public_half(self):
        secret = bytes(range(32)) + bytes(32)
        with self.assertRaises(Exception):
            PrivateKey.from_str("ed25519:" + base58.b58encode(secret).decode())

    def test_unsupported_curve(self):
        with self.assertRaises(Exception):
            PublicKey.from_str("secp256k1:abc")

    def test_sign_and_verify(self):
        in_value = b"test_message"

        private_key = PrivateKey.random()
        public_key = private_key.public_key()

        signature = private_key.sign(in_value)
        self.assertTrue(public_key.verify(in_value, signature))
        self.assertFalse(public_key.verify(b"other_message", signature))

    def test_public_key_serialization(self):
        public_key = PrivateKey.random().public_key()

        ser = Serializer()
        public_key.serialize(ser)
        output = ser.output()
        self.assertEqual(len(output), 1 + PublicKey.LENGTH)
        self.assertEqual(output[0], KeyType.ED25519)
        self.assertEqual(PublicKey.deserialize(Deserializer(output)), public_key)
        self.assertEqual(PublicKey.from_str(str(public_key)), public_key)

    def test_signature_serialization(self):
        signature = PrivateKey.random().sign(b"another_message")

        ser = Serializer()
        signature.serialize(ser)
        self.assertEqual(Signature.deserialize(Deserializer(ser.output())), signature)


if __name__ == "__main__":
    unittest.main()
