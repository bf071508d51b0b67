"""Unit tests for ABI word encoding and decoding."""
from __future__ import annotations

import pytest

from vault_reconciler.chains.evm.abi import (
    address_topic,
    decode_words,
    encode_call,
    encode_word,
    hex_to_int,
    to_signed,
    topic_to_address,
)

ADDR = "0x" + "Ab" * 20


class TestEncode:
    def test_balance_of_calldata(self) -> None:
        data = encode_call("0x70a08231", [ADDR])
        assert data == "0x70a08231" + "0" * 24 + "ab" * 20

    def test_no_args(self) -> None:
        assert encode_call("0x18160ddd") == "0x18160ddd"

    def test_int_word(self) -> None:
        assert encode_word(5) == "0" * 63 + "5"

    def test_negative_int_twos_complement(self) -> None:
        assert encode_word(-1) == "f" * 64

    def test_bad_selector(self) -> None:
        with pytest.raises(ValueError):
            encode_call("0x1234", [])

    def test_bad_argument(self) -> None:
        with pytest.raises(ValueError):
            encode_word("0xnothex")
        with pytest.raises(TypeError):
            encode_word(1.5)


class TestDecode:
    def test_two_words(self) -> None:
        data = "0x" + format(7, "064x") + format(2**200, "064x")
        assert decode_words(data) == [7, 2**200]

    @pytest.mark.parametrize("data", ["0x", "", "0x1234", None, "0x" + "zz" * 32])
    def test_malformed(self, data) -> None:
        with pytest.raises(ValueError):
            decode_words(data)

    def test_signed(self) -> None:
        assert to_signed(2**256 - 5) == -5
        assert to_signed(5) == 5


class TestHelpers:
    def test_topics_round_trip_address(self) -> None:
        topic = address_topic(ADDR)
        assert len(topic) == 66
        assert topic_to_address(topic) == ADDR.lower()

    def test_hex_to_int(self) -> None:
        assert hex_to_int("0x1a") == 26
        assert hex_to_int("26") == 26
        assert hex_to_int(26) == 26
        with pytest.raises(ValueError):
            hex_to_int(None)
