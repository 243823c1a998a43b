"""Tests for terminal QR rendering."""

from __future__ import annotations

from whatsbot.utils.qr_terminal import render_qr

PAIRING_CODE = "2@AbCdEf123+/=,Zx9Yw8Vu7Ts6Rq5Po4Nm3Lk2Ji1Hg0,ABCDEFGHIJ,KLMNOPQRST"


class TestRenderQr:
    def test_block_is_rectangular(self) -> None:
        lines = render_qr(PAIRING_CODE).splitlines()

        assert len(lines) > 10
        assert len({len(line) for line in lines}) == 1

    def test_uses_block_characters(self) -> None:
        block = render_qr(PAIRING_CODE)
        assert {"█", "▀", "▄"} & set(block)

    def test_same_code_renders_identically(self) -> None:
        assert render_qr(PAIRING_CODE) == render_qr(PAIRING_CODE)

    def test_longer_codes_render_larger(self) -> None:
        small = render_qr("2@short")
        large = render_qr(PAIRING_CODE * 3)
        assert len(large.splitlines()) > len(small.splitlines())
