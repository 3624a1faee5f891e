"""
Exchange rates — rate resolution for base-currency conversion + daily refresh.

Only base-anchored rows (base -> X) are normally stored. The resolver derives
everything else:
  1. same currency -> 1.0
  2. stored direct rate from -> to
  3. reciprocal of the stored reverse rate to -> from (a zero rate counts as missing)
  4. bridge through the base currency: (from -> base) * (base -> to)
  5. nothing found -> 1.0, logged as a data-quality warning
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal

import requests
from sqlalchemy.orm import Session

from billflow.application.errors import NotFoundError
from billflow.config import get_settings
from billflow.domain.currency import normalize_base_currency, supported_currency_codes
from billflow.infrastructure.db.models import ExchangeRate

logger = logging.getLogger(__name__)

# Bridging recurses one level; anything deeper means the base currency setup is inconsistent
MAX_RESOLVE_DEPTH = 2


class ExchangeRateRefreshError(RuntimeError):
    pass


class CurrencyResolver:
    """Read-only rate lookups, memoized for the lifetime of the instance."""

    def __init__(self, db: Session, base_currency: str | None = None):
        self.db = db
        self.base_currency = normalize_base_currency(base_currency or get_settings().BASE_CURRENCY)
        self._stored_cache: dict[tuple[str, str], float | None] = {}

    def rate(self, from_currency: str, to_currency: str) -> float:
        """Multiplier converting an amount in from_currency into to_currency."""
        resolved = self._resolve(from_currency, to_currency, depth=0)
        if resolved is None:
            logger.warning(
                "No exchange rate for %s -> %s, falling back to 1.0", from_currency, to_currency
            )
            return 1.0
        return resolved

    def to_base(self, amount: Decimal, currency: str) -> Decimal:
        return Decimal(str(amount)) * Decimal(str(self.rate(currency, self.base_currency)))

    def _resolve(self, from_currency: str, to_currency: str, depth: int) -> float | None:
        if from_currency == to_currency:
            return 1.0

        direct = self._stored(from_currency, to_currency)
        if direct:
            return direct

        reverse = self._stored(to_currency, from_currency)
        if reverse:
            return 1.0 / reverse

        base = self.base_currency
        if depth + 1 < MAX_RESOLVE_DEPTH and base not in (from_currency, to_currency):
            to_base = self._resolve(from_currency, base, depth + 1)
            from_base = self._resolve(base, to_currency, depth + 1)
            if to_base is not None and from_base is not None:
                return to_base * from_base

        return None

    def _stored(self, from_currency: str, to_currency: str) -> float | None:
        key = (from_currency, to_currency)
        if key not in self._stored_cache:
            row = self.db.query(ExchangeRate).filter(
                ExchangeRate.from_currency == from_currency,
                ExchangeRate.to_currency == to_currency,
            ).first()
            self._stored_cache[key] = float(row.rate) if row is not None else None
        return self._stored_cache[key]


# ============================================================================
# Refresh from exchangerate-api.com
# ============================================================================


def fetch_exchange_rates(
    api_key: str | None = None,
    base_currency: str | None = None,
) -> list[tuple[str, str, float]]:
    """
    Download base-anchored rates for the supported currencies.

    Returns an empty list when no API key is configured.

    Raises:
        ExchangeRateRefreshError: provider answered with an error
        requests.RequestException: network failure
    """
    settings = get_settings()
    api_key = api_key if api_key is not None else settings.EXCHANGE_RATE_API_KEY
    if not api_key:
        return []

    base = normalize_base_currency(base_currency or settings.BASE_CURRENCY)
    url = f"{settings.EXCHANGE_RATE_API_URL}/{api_key}/latest/{base}"
    resp = requests.get(url, timeout=10)
    if resp.status_code != 200:
        raise ExchangeRateRefreshError(f"ExchangeRate-API request failed: {resp.status_code}")

    data = resp.json()
    if not data or data.get("result") != "success":
        raise ExchangeRateRefreshError("ExchangeRate-API response invalid")

    supported = set(supported_currency_codes(base))
    rates = [(base, base, 1.0)]
    for currency, rate in (data.get("conversion_rates") or {}).items():
        if currency not in supported or currency == base:
            continue
        rates.append((base, currency, float(rate)))
    return rates


def upsert_exchange_rates(db: Session, rates: list[tuple[str, str, float | Decimal]]) -> int:
    """Write all rates in one transaction. Returns the number of rows written."""
    now = datetime.now(timezone.utc)
    try:
        for from_currency, to_currency, rate in rates:
            row = db.query(ExchangeRate).filter(
                ExchangeRate.from_currency == from_currency,
                ExchangeRate.to_currency == to_currency,
            ).first()
            if row is None:
                db.add(ExchangeRate(
                    from_currency=from_currency,
                    to_currency=to_currency,
                    rate=Decimal(str(rate)),
                    updated_at=now,
                ))
                # a pair may repeat within one batch
                db.flush()
            else:
                row.rate = Decimal(str(rate))
                row.updated_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise
    return len(rates)


def update_exchange_rates(db: Session, fetcher=fetch_exchange_rates) -> dict:
    """Daily job: refresh stored rates from the provider."""
    rates = fetcher()
    if not rates:
        return {"success": False, "message": "No rates received"}

    count = upsert_exchange_rates(db, rates)
    logger.info("Updated %d exchange rates", count)
    return {
        "success": True,
        "message": f"Updated {count} exchange rates",
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }


def list_exchange_rates(db: Session) -> list[ExchangeRate]:
    return db.query(ExchangeRate).order_by(
        ExchangeRate.from_currency, ExchangeRate.to_currency
    ).all()


def delete_exchange_rate(db: Session, from_currency: str, to_currency: str) -> None:
    """
    Remove one stored rate. Later lookups fall back to the reverse rate or the
    base-currency bridge.

    Raises:
        NotFoundError: no row for the pair
    """
    row = db.query(ExchangeRate).filter(
        ExchangeRate.from_currency == from_currency,
        ExchangeRate.to_currency == to_currency,
    ).first()
    if row is None:
        raise NotFoundError("Exchange rate", f"{from_currency}/{to_currency}")
    db.delete(row)
    db.commit()
    logger.info("Deleted exchange rate %s -> %s", from_currency, to_currency)
