from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Union


# base conversion rates to USD; anything not listed converts at 1
USD_RATES: Dict[str, Decimal] = {
    "USD": Decimal("1"),
    "PHP": Decimal("0.018"),
    "EUR": Decimal("1.09"),
    "GBP": Decimal("1.27"),
    "JPY": Decimal("0.0067"),
    "AUD": Decimal("0.66"),
    "CAD": Decimal("0.74"),
    "SGD": Decimal("0.74"),
    "HKD": Decimal("0.13"),
    "KRW": Decimal("0.00076"),
    "CNY": Decimal("0.14"),
    "TWD": Decimal("0.031"),
    "MYR": Decimal("0.21"),
    "AED": Decimal("0.2723"),
    "SAR": Decimal("0.2667"),
    "QAR": Decimal("0.2747"),
    "KWD": Decimal("3.25"),
    "BHD": Decimal("2.65"),
    "OMR": Decimal("2.60"),
    "NZD": Decimal("0.60"),
    "CHF": Decimal("1.13"),
}


def to_usd(amount: Union[int, float, str, Decimal], currency: str) -> Decimal:
    rate = USD_RATES.get((currency or "USD").upper(), Decimal("1"))
    return (Decimal(str(amount)) * rate).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
