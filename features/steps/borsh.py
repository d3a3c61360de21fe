import typing

from behave import then, use_step_matcher, when

from near_series.borsh import Deserializer, Serializer

# Use regular expressions
use_step_matcher("re")


@when(r"I serialize as (?P<input_type>[a-zA-Z0-9]+)")
def when_serialize(context: typing.Any, input_type: str):
    ser = Serializer()

    if input_type == "bool":
        ser.bool(context.input)
    elif input_type == "u8":
        ser.u8(context.input)
    elif input_type == "u16":
        ser.u16(context.input)
    elif input_type == "u32":
        ser.u32(context.input)
    elif input_type == "u64":
        ser.u64(context.input)
    elif input_type == "u128":
        ser.u128(context.input)
    elif input_type == "bytes":
        ser.to_bytes(context.input)
    elif input_type == "string":
        ser.str(context.input)
    else:
        raise Exception("Unrecognized input type")

    context.output = ser.output()


@when(r"I deserialize as (?P<input_type>[a-zA-Z0-9]+)")
def when_deserialize(context: typing.Any, input_type: str):
    des = Deserializer(context.input)
    readers: typing.Dict[str, typing.Callable[[], typing.Any]] = {
        "bool": des.bool,
        "u8": des.u8,
        "u16": des.u16,
        "u32": des.u32,
        "u64": des.u64,
        "u128": des.u128,
        "bytes": des.to_bytes,
        "string": des.str,
    }
    if input_type not in readers:
        raise Exception("Unrecognized input type")

    try:
        context.output = readers[input_type]()
    except Exception as e:
        context.output = e


@then(r"the deserialization should fail")
def then_fail_deserialization(context: typing.Any):
    assert isinstance(context.output, Exception)
