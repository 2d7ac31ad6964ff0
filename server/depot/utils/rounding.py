from decimal import Decimal, ROUND_HALF_UP


def round_half_up(value: Decimal | float | int | str | None, places: int = 2) -> Decimal | None:
    if value is None:
        return None
    exponent = Decimal(1).scaleb(-places)
    return Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP)
