"""ABI codec for the lending contract, its ERC-20 tokens and Chainlink feeds.

Encoding and decoding go through ``eth_abi``; signatures are written in
canonical form (``borrow(uint256)``) and the argument types are read from them.
"""
from __future__ import annotations

from typing import Any, Sequence

from eth_abi import decode, encode
from eth_utils import (
    decode_hex,
    encode_hex,
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
)

UINT256 = ("uint256",)
ADDRESS = ("address",)
# (roundId, answer, startedAt, updatedAt, answeredInRound)
ROUND_DATA = ("uint80", "int256", "uint256", "uint256", "uint80")


def selector(signature: str) -> str:
    """4-byte selector as lowercase hex without ``0x``."""
    return function_signature_to_4byte_selector(signature).hex()


ERROR_STRING_SELECTOR = selector("Error(string)")
PANIC_SELECTOR = selector("Panic(uint256)")


def argument_types(signature: str) -> list[str]:
    inner = signature[signature.index("(") + 1:signature.rindex(")")]
    return [t for t in inner.split(",") if t]


def encode_call(signature: str, *args: Any) -> str:
    """``foo(address,uint256)`` + args -> ``0x``-prefixed calldata.

    Raises ``eth_abi.exceptions.EncodingError`` for arguments that do not fit
    their declared type.
    """
    types = argument_types(signature)
    if len(types) != len(args):
        raise TypeError(f"{signature} takes {len(types)} arguments, got {len(args)}")
    return encode_hex(function_signature_to_4byte_selector(signature) + encode(types, list(args)))


def decode_result(types: Sequence[str], data: str | None) -> tuple[Any, ...]:
    """Decode ``eth_call`` return data; raises ``DecodingError`` when it does not fit."""
    return decode(list(types), decode_hex(data) if data else b"")


def split_revert(data: str) -> tuple[str, bytes]:
    """Revert data -> (selector hex, argument bytes)."""
    raw = decode_hex(data)
    if len(raw) < 4:
        raise ValueError("Revert data shorter than a selector")
    return raw[:4].hex(), raw[4:]


def decode_error_string(args: bytes) -> str:
    """Reason of a Solidity ``Error(string)`` revert."""
    return decode(["string"], args)[0]


def decode_panic_code(args: bytes) -> int:
    return decode(["uint256"], args)[0]


def event_topic(signature: str) -> str:
    return encode_hex(event_signature_to_log_topic(signature))


def address_topic(address: str) -> str:
    """An indexed ``address`` event argument as a 32-byte topic."""
    return encode_hex(encode(["address"], [address]))
