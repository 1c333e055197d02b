from decimal import Decimal, ROUND_HALF_UP

TWO_PLACES = Decimal("0.01")

# Gateway fee rate per payment method
FEE_RATES = {
    "CARD": Decimal("0.0299"),
    "UPI": Decimal("0.005"),
    "NET_BANKING": Decimal("0.019"),
    "WALLET": Decimal("0.015"),
    "EMI": Decimal("0.035"),
}

GST_RATE = Decimal("0.18")  # on the processing fee only


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def calculate_booking_amount(price_per_hour, duration_hours) -> Decimal:
    return money(Decimal(str(price_per_hour)) * Decimal(str(duration_hours)))


def calculate_processing_fees(amount, method: str = "CARD") -> dict:
    base = money(amount)
    rate = FEE_RATES.get((method or "CARD").upper(), FEE_RATES["CARD"])

    fee = money(base * rate)
    gst = money(fee * GST_RATE)

    return {
        "base_amount": base,
        "processing_fee": fee,
        "gst": gst,
        "total_amount": base + fee + gst,
    }


def to_paise(amount) -> int:
    return int(money(amount) * 100)


def from_paise(paise) -> Decimal:
    return money(Decimal(int(paise)) / 100)
