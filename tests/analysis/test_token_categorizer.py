from analysis.token_categorizer import ALT, MAIN, MEME, categorize_token


def test_known_symbols():
    assert categorize_token('btc') == MAIN
    assert categorize_token('LINK') == ALT
    assert categorize_token('DOGE') == MEME


def test_meme_name_heuristics():
    assert categorize_token('BONK', name='Bonk Inu') == MEME
    assert categorize_token('XYZ', name='SafeRocket') == MEME


def test_market_cap_cutoff():
    assert categorize_token('NEWL1', market_cap=25_000_000_000) == MAIN
    assert categorize_token('NEWL1', market_cap=5_000_000) == ALT
    assert categorize_token('NEWL1') == ALT
