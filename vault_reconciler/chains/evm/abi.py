"""Pure ABI helpers for static-typed view calls and logs, no I/O.

Only 32-byte static words are supported (``address``, ``uint256``,
``int256``), which covers every read the engine makes.
"""
from __future__ import annotations

from typing import Any

WORD_BYTES = 32
WORD_HEX = WORD_BYTES * 2


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value


def encode_word(arg: Any) -> str:
    """Encode one static argument as a 64-char hex word.

    Examples:
        "0xAbC" (address) → "000…0abc"
        5 → "000…0005"
    """
    if isinstance(arg, bool):
        arg = int(arg)
    if isinstance(arg, int):
        if arg < 0:
            arg += 1 << 256
        if arg < 0 or arg >= 1 << 256:
            raise ValueError(f"Integer argument out of uint256 range: {arg}")
        return format(arg, "064x")
    if isinstance(arg, str):
        body = _strip_0x(arg).lower()
        if len(body) > WORD_HEX or any(c not in "0123456789abcdef" for c in body):
            raise ValueError(f"Not an address/hex argument: {arg!r}")
        return body.rjust(WORD_HEX, "0")
    raise TypeError(f"Unsupported ABI argument type: {type(arg).__name__}")


def encode_call(selector: str, args: list[Any] | tuple[Any, ...] = ()) -> str:
    """Build ``eth_call`` calldata from a 4-byte selector and static args."""
    sel = _strip_0x(selector).lower()
    if len(sel) != 8:
        raise ValueError(f"Selector must be 4 bytes: {selector!r}")
    return "0x" + sel + "".join(encode_word(a) for a in args)


def decode_words(data: Any) -> list[int]:
    """Split a hex return payload into unsigned 32-byte integers.

    Raises ValueError on anything that is not well-formed word-aligned hex,
    including an empty ``0x`` result (a reverted or missing view).
    """
    if not isinstance(data, str):
        raise ValueError(f"Malformed call result: {data!r}")
    body = _strip_0x(data)
    if not body or len(body) % WORD_HEX:
        raise ValueError(f"Malformed call result: {data!r}")
    try:
        return [int(body[i : i + WORD_HEX], 16) for i in range(0, len(body), WORD_HEX)]
    except ValueError:
        raise ValueError(f"Malformed call result: {data!r}") from None


def to_signed(word: int) -> int:
    """Interpret an unsigned word as two's-complement int256."""
    return word - (1 << 256) if word >= 1 << 255 else word


def address_topic(address: str) -> str:
    """Left-pad an address to a 32-byte log topic."""
    return "0x" + encode_word(address)


def topic_to_address(topic: str) -> str:
    return "0x" + _strip_0x(topic)[-40:].lower()


def hex_to_int(value: Any) -> int:
    """Parse a JSON-RPC quantity (``"0x1a"``) or plain integer."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
    raise ValueError(f"Not a quantity: {value!r}")
