"""
Amount Arithmetic

All monetary values are non-negative integers in minor units (wei). Floating
point never participates in business logic; display formatting is left to
the presentation layer.

Rounding rule: every division floors. Shares computed with ``percent_of`` and
``InvestmentLedger.share_of`` therefore never sum to more than the amount they
were taken from, and any remainder stays with the payer.
"""
from crowdfund.services.errors import AmountError, InvalidAmount

# Amounts are uint256 on the ledger of record
MAX_AMOUNT = 2**256 - 1


def check_amount(value: int, name: str = "amount") -> int:
    """Validate that ``value`` is an integer amount within [0, MAX_AMOUNT]"""
    if isinstance(value, bool) or not isinstance(value, int):
        raise AmountError(f"{name} must be an integer number of minor units")
    if value < 0:
        raise AmountError(f"{name} must not be negative")
    if value > MAX_AMOUNT:
        raise AmountError(f"{name} exceeds the maximum representable amount")
    return value


def check_positive(value: int, name: str = "amount") -> int:
    check_amount(value, name)
    if value == 0:
        raise InvalidAmount(f"{name} must be greater than zero")
    return value


def add(a: int, b: int) -> int:
    result = check_amount(a) + check_amount(b)
    if result > MAX_AMOUNT:
        raise AmountError("amount overflow")
    return result


def sub(a: int, b: int) -> int:
    result = check_amount(a) - check_amount(b)
    if result < 0:
        raise AmountError("amount underflow")
    return result


def percent_of(amount: int, percent: int) -> int:
    """Floor of ``amount * percent / 100``"""
    check_amount(amount)
    if isinstance(percent, bool) or not isinstance(percent, int) or not 0 <= percent <= 100:
        raise AmountError("percent must be an integer between 0 and 100")
    return amount * percent // 100


def pro_rata(amount: int, part: int, whole: int) -> int:
    """Floor of ``amount * part / whole``; zero when ``whole`` is zero"""
    check_amount(amount)
    check_amount(part)
    check_amount(whole)
    if part > whole:
        raise AmountError("part exceeds whole in pro-rata split")
    if whole == 0:
        return 0
    return amount * part // whole


def threshold_reached(amount: int, minimum: int) -> bool:
    """Minimum funding is a reached threshold: inclusive"""
    return amount >= minimum


def within_cap(amount: int, maximum: int) -> bool:
    """Maximum funding is a cap: reaching it exactly is allowed"""
    return amount <= maximum


def is_within(amount: int, minimum: int, maximum: int) -> bool:
    return threshold_reached(amount, minimum) and within_cap(amount, maximum)
