import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .errors import InvalidAmount, UnmappedStatus
from .platforms import GALLERY_STORE, SHOPIFY, WOOCOMMERCE

GRAMS_PER_POUND = Decimal('453.592')

GRAMS_PER_UNIT = {
    'g': Decimal('1'),
    'kg': Decimal('1000'),
    'oz': Decimal('28.349523125'),
    'lb': GRAMS_PER_POUND,
    'lbs': GRAMS_PER_POUND,
    'GRAMS': Decimal('1'),
    'KILOGRAMS': Decimal('1000'),
    'OUNCES': Decimal('28.349523125'),
    'POUNDS': GRAMS_PER_POUND,
}

_DECIMAL_RE = re.compile(r'^(-?)(0|[1-9]\d*)(?:\.(\d{1,2}))?$')


# ---------------------------------------------------------------------------
# Currency
# ---------------------------------------------------------------------------

def to_decimal_string(minor: int) -> str:
    """Render integer minor units as a two-place decimal string (4500 -> '45.00')."""
    if not isinstance(minor, int) or isinstance(minor, bool):
        raise InvalidAmount(f"Minor-unit amount must be an integer, got {minor!r}.")
    sign = '-' if minor < 0 else ''
    whole, fraction = divmod(abs(minor), 100)
    return f"{sign}{whole}.{fraction:02d}"


def from_decimal_string(value) -> int:
    """
    Parse a decimal amount into integer minor units without going through float.

    Accepts zero to two fractional digits ('45', '45.5', '45.50'); anything
    else, including more precision than a cent, raises InvalidAmount.
    """
    text = str(value).strip() if value is not None else ''
    match = _DECIMAL_RE.match(text)
    if match is None:
        raise InvalidAmount(f"Not a valid two-place decimal amount: {value!r}.")
    sign, whole, fraction = match.groups()
    minor = int(whole) * 100 + int((fraction or '').ljust(2, '0'))
    return -minor if sign else minor


# ---------------------------------------------------------------------------
# Mass
# ---------------------------------------------------------------------------

def grams_to_pounds(grams: int, places: int = 3) -> Decimal:
    """Convert grams to pounds, rounding half-up to `places` decimals."""
    exact = Decimal(grams) / GRAMS_PER_POUND
    return exact.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def pounds_to_grams(pounds) -> int:
    return to_grams(pounds, 'lb')


def to_grams(value, unit: str) -> int:
    """Convert a platform weight in `unit` to whole grams."""
    try:
        factor = GRAMS_PER_UNIT[unit]
    except KeyError:
        raise InvalidAmount(f"Unknown weight unit {unit!r}.") from None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise InvalidAmount(f"Not a valid weight: {value!r}.") from None
    return int((amount * factor).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Status vocabulary
# ---------------------------------------------------------------------------

STATUS_TABLES = {
    WOOCOMMERCE: {
        'outbound': {'active': 'publish', 'draft': 'draft', 'archived': 'private'},
        'inbound': {'publish': 'active', 'draft': 'draft', 'private': 'archived', 'pending': 'draft'},
    },
    SHOPIFY: {
        'outbound': {'active': 'ACTIVE', 'draft': 'DRAFT', 'archived': 'ARCHIVED'},
        'inbound': {'ACTIVE': 'active', 'DRAFT': 'draft', 'ARCHIVED': 'archived'},
    },
    GALLERY_STORE: {
        'outbound': {'active': 'published', 'draft': 'draft', 'archived': 'archived'},
        'inbound': {'published': 'active', 'draft': 'draft', 'archived': 'archived'},
    },
}


def to_platform_status(status: str, platform: str) -> str:
    try:
        return STATUS_TABLES[platform]['outbound'][status]
    except KeyError:
        raise UnmappedStatus(platform, status) from None


def from_platform_status(value: str, platform: str) -> str:
    try:
        return STATUS_TABLES[platform]['inbound'][value]
    except (KeyError, TypeError):
        raise UnmappedStatus(platform, value) from None
