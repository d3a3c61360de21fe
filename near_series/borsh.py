# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Borsh (Binary Object Representation Serializer for Hashing) for the NEAR protocol.

NEAR transactions, actions, keys and signatures are encoded with Borsh before they
are hashed and signed. Borsh is deterministic: integers are little-endian with a
fixed width, dynamic containers carry a u32 length prefix, options and enums carry a
u8 tag, and maps are written sorted by their encoded key.

Learn more at https://borsh.io

The module contains:
- Protocol interfaces for serializable and deserializable objects
- Deserializer class for reading Borsh-encoded data
- Serializer class for writing Borsh-encoded data
- Helper functions for encoding values

Examples:
    Basic serialization::

        from near_series.borsh import Serializer, Deserializer

        ser = Serializer()
        ser.str("alice.testnet")
        data = ser.output()

        der = Deserializer(data)
        result = der.str()  # "alice.testnet"

    Working with custom structures::

        class Transfer:
            def serialize(self, serializer):
                serializer.u8(3)
                serializer.u128(self.deposit)
"""

from __future__ import annotations

import io
import typing
import unittest
from typing import Dict, List, Optional

from typing_extensions import Protocol

MAX_U8 = 2**8 - 1
MAX_U16 = 2**16 - 1
MAX_U32 = 2**32 - 1
MAX_U64 = 2**64 - 1
MAX_U128 = 2**128 - 1


class Deserializable(Protocol):
    """Protocol for objects that can be read back from a Borsh byte stream."""

    @classmethod
    def from_bytes(cls, indata: bytes) -> Deserializable:
        der = Deserializer(indata)
        return der.struct(cls)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Deserializable:
        """Deserialize an instance from a Deserializer.

        Args:
            deserializer: The Deserializer to read data from.

        Returns:
            A deserialized instance of the implementing class.
        """
        ...


class Serializable(Protocol):
    """Protocol for objects that can be written to a Borsh byte stream."""

    def to_bytes(self) -> bytes:
        ser = Serializer()
        ser.struct(self)
        return ser.output()

    def serialize(self, serializer: Serializer):
        """Write this object to the serializer."""
        ...


class Deserializer:
    """A Borsh deserializer for reading data from a byte stream.

    The Deserializer keeps a cursor into the input and exposes one method per
    Borsh type. Reading past the end of the input raises.

    Examples:
        Reading collections::

            values = der.sequence(Deserializer.str)
            mapping = der.map(Deserializer.str, Deserializer.u32)
    """

    _input: io.BytesIO
    _length: int

    def __init__(self, data: bytes):
        self._length = len(data)
        self._input = io.BytesIO(data)

    def remaining(self) -> int:
        """Get the number of bytes remaining in the input stream."""
        return self._length - self._input.tell()

    def bool(self) -> bool:
        """Read a boolean, encoded as a single byte holding 0 or 1.

        Raises:
            Exception: If the byte value is not 0 or 1.
        """
        value = self._read_int(1)
        if value == 0:
            return False
        elif value == 1:
            return True
        else:
            raise Exception("Unexpected boolean value: ", value)

    def to_bytes(self) -> bytes:
        """Read a byte vector: a u32 length followed by the raw bytes."""
        return self._read(self.u32())

    def fixed_bytes(self, length: int) -> bytes:
        """Read exactly `length` raw bytes, without a length prefix."""
        return self._read(length)

    def map(
        self,
        key_decoder: typing.Callable[[Deserializer], typing.Any],
        value_decoder: typing.Callable[[Deserializer], typing.Any],
    ) -> Dict[typing.Any, typing.Any]:
        """Read a map: a u32 entry count followed by key-value pairs.

        Args:
            key_decoder: Function to decode each key from the stream.
            value_decoder: Function to decode each value from the stream.
        """
        length = self.u32()
        values: Dict = {}
        while len(values) < length:
            key = key_decoder(self)
            value = value_decoder(self)
            values[key] = value
        return values

    def option(
        self, value_decoder: typing.Callable[[Deserializer], typing.Any]
    ) -> Optional[typing.Any]:
        """Read an option: a u8 tag (0 = None, 1 = Some) then the value."""
        tag = self.u8()
        if tag == 0:
            return None
        elif tag == 1:
            return value_decoder(self)
        else:
            raise Exception("Unexpected option tag: ", tag)

    def sequence(
        self,
        value_decoder: typing.Callable[[Deserializer], typing.Any],
    ) -> List[typing.Any]:
        """Read a vector: a u32 length followed by the elements."""
        length = self.u32()
        values: List = []
        while len(values) < length:
            values.append(value_decoder(self))
        return values

    def str(self) -> str:
        """Read a UTF-8 string stored as a byte vector."""
        return self.to_bytes().decode()

    def struct(self, struct: typing.Any) -> typing.Any:
        """Deserialize a custom struct by delegating to its `deserialize`."""
        return struct.deserialize(self)

    def u8(self) -> int:
        return self._read_int(1)

    def u16(self) -> int:
        return self._read_int(2)

    def u32(self) -> int:
        return self._read_int(4)

    def u64(self) -> int:
        return self._read_int(8)

    def u128(self) -> int:
        return self._read_int(16)

    def _read(self, length: int) -> bytes:
        value = self._input.read(length)
        if value is None or len(value) < length:
            actual_length = 0 if value is None else len(value)
            error = (
                f"Unexpected end of input. Requested: {length}, found: {actual_length}"
            )
            raise Exception(error)
        return value

    def _read_int(self, length: int) -> int:
        return int.from_bytes(self._read(length), byteorder="little", signed=False)


class Serializer:
    """A Borsh serializer for writing data to a byte stream.

    Examples:
        Basic usage::

            ser = Serializer()
            ser.str("bob.testnet")
            ser.u128(10**24)
            data = ser.output()

        Serializing collections::

            ser.sequence(["a", "b", "c"], Serializer.str)
            ser.map({"bob.testnet": 1000}, Serializer.str, Serializer.u32)
    """

    _output: io.BytesIO

    def __init__(self):
        self._output = io.BytesIO()

    def output(self) -> bytes:
        """Get the accumulated serialized data as bytes."""
        return self._output.getvalue()

    def bool(self, value: bool):
        self._write_int(int(value), 1)

    def to_bytes(self, value: bytes):
        """Write a byte vector: a u32 length followed by the raw bytes."""
        self.u32(len(value))
        self._output.write(value)

    def fixed_bytes(self, value):
        """Write raw bytes without any length prefix."""
        self._output.write(value)

    def map(
        self,
        values: typing.Dict[typing.Any, typing.Any],
        key_encoder: typing.Callable[[Serializer, typing.Any], None],
        value_encoder: typing.Callable[[Serializer, typing.Any], None],
    ):
        """Write a map as a u32 entry count followed by key-value pairs.

        Entries are sorted by the encoding of their keys so the same mapping
        always produces the same bytes, whatever the insertion order.
        """
        encoded_values = []
        for key, value in values.items():
            encoded_values.append(
                (encoder(key, key_encoder), encoder(value, value_encoder))
            )
        encoded_values.sort(key=lambda item: item[0])

        self.u32(len(encoded_values))
        for key, value in encoded_values:
            self.fixed_bytes(key)
            self.fixed_bytes(value)

    def option(
        self,
        value: Optional[typing.Any],
        value_encoder: typing.Callable[[Serializer, typing.Any], None],
    ):
        """Write an option: tag 0 for None, tag 1 followed by the value."""
        if value is None:
            self.u8(0)
        else:
            self.u8(1)
            value_encoder(self, value)

    @staticmethod
    def sequence_serializer(
        value_encoder: typing.Callable[[Serializer, typing.Any], None],
    ):
        """Create a reusable vector serializer for `value_encoder`.

        Examples:
            str_seq = Serializer.sequence_serializer(Serializer.str)
            str_seq(ser, ["nft_approve", "nft_transfer"])
        """
        return lambda self, values: self.sequence(values, value_encoder)

    def sequence(
        self,
        values: typing.List[typing.Any],
        value_encoder: typing.Callable[[Serializer, typing.Any], None],
    ):
        """Write a vector: a u32 length followed by the elements."""
        self.u32(len(values))
        for value in values:
            self.fixed_bytes(encoder(value, value_encoder))

    def str(self, value: str):
        self.to_bytes(value.encode())

    def struct(self, value: typing.Any):
        """Serialize a custom struct by delegating to its `serialize`."""
        value.serialize(self)

    def u8(self, value: int):
        if value > MAX_U8:
            raise Exception(f"Cannot encode {value} into u8")

        self._write_int(value, 1)

    def u16(self, value: int):
        if value > MAX_U16:
            raise Exception(f"Cannot encode {value} into u16")

        self._write_int(value, 2)

    def u32(self, value: int):
        if value > MAX_U32:
            raise Exception(f"Cannot encode {value} into u32")

        self._write_int(value, 4)

    def u64(self, value: int):
        if value > MAX_U64:
            raise Exception(f"Cannot encode {value} into u64")

        self._write_int(value, 8)

    def u128(self, value: int):
        if value > MAX_U128:
            raise Exception(f"Cannot encode {value} into u128")

        self._write_int(value, 16)

    def _write_int(self, value: int, length: int):
        self._output.write(value.to_bytes(length, "little", signed=False))


def encoder(
    value: typing.Any, encoder: typing.Callable[[Serializer, typing.Any], typing.Any]
) -> bytes:
    """Encode a single value with the given encoder function and return the bytes.

    Examples:
        data = encoder("hello", Serializer.str)
        data = encoder(42, Serializer.u32)
    """
    ser = Serializer()
    encoder(ser, value)
    return ser.output()


class Test(unittest.TestCase):
    def test_bool_error(self):
        ser = Serializer()
        ser.u8(32)
        der = Deserializer(ser.output())
        with self.assertRaises(Exception):
            der.bool()

    def test_bytes_use_u32_length_prefix(self):
        ser = Serializer()
        ser.to_bytes(b"\xaa\xbb")
        self.assertEqual(ser.output(), b"\x02\x00\x00\x00\xaa\xbb")

    def test_str_layout(self):
        ser = Serializer()
        ser.str("near")
        self.assertEqual(ser.output(), b"\x04\x00\x00\x00near")
        self.assertEqual(Deserializer(ser.output()).str(), "near")

    def test_map_is_sorted_by_encoded_key(self):
        ser_a = Serializer()
        ser_a.map({"b": 2, "a": 1}, Serializer.str, Serializer.u32)
        ser_b = Serializer()
        ser_b.map({"a": 1, "b": 2}, Serializer.str, Serializer.u32)
        self.assertEqual(ser_a.output(), ser_b.output())

        der = Deserializer(ser_a.output())
        self.assertEqual(der.map(Deserializer.str, Deserializer.u32), {"a": 1, "b": 2})

    def test_option(self):
        ser = Serializer()
        ser.option(None, Serializer.u64)
        ser.option(7, Serializer.u64)
        self.assertEqual(ser.output(), b"\x00\x01" + (7).to_bytes(8, "little"))

        der = Deserializer(ser.output())
        self.assertIsNone(der.option(Deserializer.u64))
        self.assertEqual(der.option(Deserializer.u64), 7)
        self.assertEqual(der.remaining(), 0)

    def test_sequence_serializer(self):
        in_value = ["a", "abc", "def", "ghi"]

        ser = Serializer()
        seq_ser = Serializer.sequence_serializer(Serializer.str)
        seq_ser(ser, in_value)
        der = Deserializer(ser.output())
        out_value = der.sequence(Deserializer.str)

        self.assertEqual(in_value, out_value)

    def test_u128_little_endian(self):
        ser = Serializer()
        ser.u128(1)
        self.assertEqual(ser.output(), b"\x01" + b"\x00" * 15)

    def test_range_checks(self):
        ser = Serializer()
        with self.assertRaises(Exception):
            ser.u8(MAX_U8 + 1)
        with self.assertRaises(Exception):
            ser.u128(MAX_U128 + 1)

    def test_truncated_input(self):
        der = Deserializer(b"\x05\x00\x00\x00ab")
        with self.assertRaises(Exception):
            der.str()


if __name__ == "__main__":
    unittest.main()
