from __future__ import annotations

import re

# Legacy bookings only carried package membership inside the notes, e.g.
# "PACOTE MENSAL PMT1754514579970 - Sessão 2/4".
LEGACY_TOKEN_PATTERN = re.compile(r"\b(PMT\d+)\b", re.IGNORECASE)


def extract_package_token(notes: str | None) -> str:
    """Return the package token embedded in a notes string, or ``""``."""
    if not notes:
        return ""
    match = LEGACY_TOKEN_PATTERN.search(notes)
    if match is None:
        return ""
    return match.group(1)


def split_amount(amount_cents: int, parts: int) -> list[int]:
    """
    Split an amount into ``parts`` integer shares that always sum to the amount.

    Remainder cents go to the earliest shares, so 501 over 4 parts becomes
    ``[126, 125, 125, 125]``.
    """

    if parts <= 0:
        raise ValueError("parts must be positive.")
    if amount_cents < 0:
        raise ValueError("amount_cents must not be negative.")
    base, remainder = divmod(amount_cents, parts)
    return [base + 1 if index < remainder else base for index in range(parts)]
