#!/usr/bin/env python3
"""Buckets tokens into Main, Alt and Meme categories."""
from typing import Optional

from constants import KNOWN_TOKEN_CATEGORIES, MAIN_MARKET_CAP_USD, MEME_NAME_MARKERS

MAIN = 'Main'
ALT = 'Alt'
MEME = 'Meme'


def categorize_token(symbol: str, name: Optional[str] = None, market_cap: Optional[float] = None) -> str:
    """
    Known symbols map to their listed category. Otherwise names that look like
    meme tokens are Meme, and a market cap above $10B makes a token Main.
    """
    upper = (symbol or '').upper()
    for category, symbols in KNOWN_TOKEN_CATEGORIES.items():
        if upper in symbols:
            return category

    lowered = (name or '').lower()
    if any(marker in lowered for marker in MEME_NAME_MARKERS):
        return MEME

    if market_cap and market_cap > MAIN_MARKET_CAP_USD:
        return MAIN
    return ALT
