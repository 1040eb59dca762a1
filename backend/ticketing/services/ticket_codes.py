"""
Redemption code generation.

Two kinds of code are printed on every ticket:
- the QR payload: "TKT-" followed by 128 random bits as hex (36 characters),
  opaque and carrying no booking metadata
- the manual code: 12 symbols grouped XXXX-XXXX-XXXX for staff to type in
  when a QR code will not scan. The alphabet leaves out 0, O, 1 and I.

Both are drawn from `secrets`; a code is the only thing needed to enter
the venue. Uniqueness is probabilistic here and enforced by unique
constraints on insert.
"""

import re
import secrets

REDEMPTION_CODE_PREFIX = "TKT-"
MANUAL_CODE_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
MANUAL_CODE_GROUPS = 3
MANUAL_CODE_GROUP_SIZE = 4

_MANUAL_CODE_LENGTH = MANUAL_CODE_GROUPS * MANUAL_CODE_GROUP_SIZE
_MANUAL_CODE_INPUT = re.compile(r"^[2-9A-HJ-NP-Z]{%d}$" % _MANUAL_CODE_LENGTH)
_REDEMPTION_CODE_INPUT = re.compile(r"^tkt-([0-9a-f]{32})$", re.IGNORECASE)


def new_redemption_code() -> str:
    return f"{REDEMPTION_CODE_PREFIX}{secrets.token_hex(16)}"


def new_manual_code() -> str:
    symbols = "".join(secrets.choice(MANUAL_CODE_ALPHABET) for _ in range(_MANUAL_CODE_LENGTH))
    return _group(symbols)


def _group(symbols: str) -> str:
    return "-".join(
        symbols[i:i + MANUAL_CODE_GROUP_SIZE]
        for i in range(0, len(symbols), MANUAL_CODE_GROUP_SIZE)
    )


def normalize_code(raw: str) -> str:
    """
    Canonicalize a code typed or scanned at the door.

    QR payloads are accepted in any case ("TKT-9F2C..." -> "TKT-9f2c...").
    Manual codes are accepted in any case and with or without separators
    ("ab3c 5d7e-9fgh" -> "AB3C-5D7E-9FGH"). Anything else is returned
    stripped of surrounding whitespace.
    """
    code = raw.strip()
    redemption = _REDEMPTION_CODE_INPUT.match(code)
    if redemption:
        return f"{REDEMPTION_CODE_PREFIX}{redemption.group(1).lower()}"
    compact = re.sub(r"[\s\-]", "", code).upper()
    if _MANUAL_CODE_INPUT.match(compact):
        return _group(compact)
    return code
