"""
Supported currencies and the default exchange-rate table.

Rates are quoted as "1 unit of base = rate units of the other currency".
"""

ALL_CURRENCY_CODES = ("USD", "EUR", "GBP", "CAD", "AUD", "JPY", "CNY", "TRY", "HKD")
DEFAULT_BASE_CURRENCY = "CNY"

# Offline fallback quoted against CNY; other bases are derived from it
_CNY_RATES = {
    "CNY": 1.0,
    "USD": 0.1538,
    "EUR": 0.1308,
    "GBP": 0.1154,
    "CAD": 0.1923,
    "AUD": 0.2077,
    "JPY": 16.9231,
    "TRY": 4.2,
    "HKD": 1.1923,
}


def normalize_base_currency(code: str | None) -> str:
    """Upper-cased base currency, or CNY when the code is not supported."""
    base = (code or DEFAULT_BASE_CURRENCY).upper()
    if base not in ALL_CURRENCY_CODES:
        return DEFAULT_BASE_CURRENCY
    return base


def supported_currency_codes(base_currency: str) -> list[str]:
    """Base currency first, then the rest alphabetically."""
    base = normalize_base_currency(base_currency)
    return [base] + sorted(code for code in ALL_CURRENCY_CODES if code != base)


def is_supported_currency(code: str | None) -> bool:
    return bool(code) and code.upper() in ALL_CURRENCY_CODES


def default_exchange_rates(base_currency: str) -> list[tuple[str, str, float]]:
    """Base-anchored (from, to, rate) rows used before the first online refresh."""
    base = normalize_base_currency(base_currency)
    base_in_cny = _CNY_RATES[base]
    rows = []
    for code in supported_currency_codes(base):
        rate = 1.0 if code == base else round(_CNY_RATES[code] / base_in_cny, 4)
        rows.append((base, code, rate))
    return rows
