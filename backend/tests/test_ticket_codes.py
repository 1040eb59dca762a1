"""
Tests for redemption and manual code generation.
"""

import re

import pytest

from ticketing.services.ticket_codes import (
    MANUAL_CODE_ALPHABET,
    new_manual_code,
    new_redemption_code,
    normalize_code,
)


def test_redemption_code_format():
    code = new_redemption_code()
    assert re.fullmatch(r"TKT-[0-9a-f]{32}", code)


def test_redemption_codes_are_unique():
    assert len({new_redemption_code() for _ in range(100_000)}) == 100_000


def test_manual_code_format():
    code = new_manual_code()
    assert re.fullmatch(r"[2-9A-HJ-NP-Z]{4}-[2-9A-HJ-NP-Z]{4}-[2-9A-HJ-NP-Z]{4}", code)
    assert set(code.replace("-", "")) <= set(MANUAL_CODE_ALPHABET)


def test_manual_code_avoids_ambiguous_symbols():
    symbols = "".join(new_manual_code() for _ in range(500))
    assert not set("01IO") & set(symbols)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("AB3C-5D7E-9FGH", "AB3C-5D7E-9FGH"),
        ("ab3c5d7e9fgh", "AB3C-5D7E-9FGH"),
        (" ab3c 5d7e-9fgh ", "AB3C-5D7E-9FGH"),
        ("TKT-4f9c0e1a2b3d4c5e6f708192a3b4c5d6", "TKT-4f9c0e1a2b3d4c5e6f708192a3b4c5d6"),
        ("TKT-4F9C0E1A2B3D4C5E6F708192A3B4C5D6", "TKT-4f9c0e1a2b3d4c5e6f708192a3b4c5d6"),
        ("tkt-4f9c0e1a2b3d4c5e6f708192a3b4c5d6", "TKT-4f9c0e1a2b3d4c5e6f708192a3b4c5d6"),
        ("  TKT-abc  ", "TKT-abc"),
        # O is not in the manual alphabet, so this stays as typed
        ("ab3c-5d7e-9fgo", "ab3c-5d7e-9fgo"),
    ],
)
def test_normalize_code(raw, expected):
    assert normalize_code(raw) == expected
