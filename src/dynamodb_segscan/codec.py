from decimal import Decimal
from typing import Any, Callable, Dict, Type, TypeVar

from boto3.dynamodb.types import Binary, TypeDeserializer

T = TypeVar("T")

# A decoder turns one raw item into a record, raising on anything it cannot convert.
Decoder = Callable[[Dict[str, Dict[str, Any]]], T]

_deserializer = TypeDeserializer()


def plain_decoder(item: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    """{"age": {"N": "3"}} -> {"age": Decimal("3")}"""
    return {k: _deserializer.deserialize(v) for k, v in item.items()}


def model_decoder(cls: Type[T]) -> Decoder:
    """Decoder building cls(**attributes), e.g. for a dataclass or pydantic model."""
    def decode(item: Dict[str, Dict[str, Any]]) -> T:
        return cls(**plain_decoder(item))
    decode.__name__ = f"decode_{cls.__name__}"
    return decode


def json_default(o):
    if isinstance(o, Decimal):
        return int(o) if o == o.to_integral_value() else float(o)
    if isinstance(o, (set, frozenset)):
        return sorted(o, key=str)
    if isinstance(o, Binary):
        o = o.value
    if isinstance(o, (bytes, bytearray)):
        return o.hex()
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")
