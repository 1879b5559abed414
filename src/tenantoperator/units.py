"""Unit conversions for Kubernetes resource quantities."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

import bitmath

__all__ = [
    "bytes_to_quantity",
    "quantity_to_bytes",
    "quantity_to_decimal",
]

_BINARY_SUFFIXES = ("Ei", "Pi", "Ti", "Gi", "Mi", "Ki")

_QUANTITY_REGEX = re.compile(
    r"(?P<number>[0-9]+(?:\.[0-9]+)?)(?P<suffix>[kKMGTPE]i?)?"
)


def quantity_to_bytes(quantity: str | int) -> int:
    """Convert a Kubernetes storage quantity to an exact number of bytes.

    bitmath is only used to look up the size of the suffix. The arithmetic
    is done with `~decimal.Decimal`, since bitmath works with floats and
    would round sizes above 2**53 bytes.

    Parameters
    ----------
    quantity
        Storage quantity such as ``1Ti`` or ``500G``, or a plain number of
        bytes.

    Returns
    -------
    int
        Equivalent number of bytes.

    Raises
    ------
    ValueError
        Raised if the input is not a valid byte specification or does not
        correspond to a whole number of bytes.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, str | int):
        raise ValueError(f"{quantity!r} is not a storage quantity")
    if isinstance(quantity, int):
        result = Decimal(quantity)
    else:
        match = _QUANTITY_REGEX.fullmatch(quantity.strip())
        if not match:
            raise ValueError(f"{quantity} is not a storage quantity")
        result = Decimal(match.group("number"))
        if suffix := match.group("suffix"):
            unit = bitmath.parse_string(
                f"1{suffix}", system=bitmath.SI, strict=False
            )
            result *= int(unit.bytes)
    if result != result.to_integral_value() or result < 0:
        raise ValueError(f"{quantity} is not a whole number of bytes")
    return int(result)


def bytes_to_quantity(size: int) -> str:
    """Format a number of bytes as the most compact exact quantity.

    The largest binary suffix that divides the size evenly is used, so the
    result always parses back to exactly the same number of bytes.

    Parameters
    ----------
    size
        Number of bytes.

    Returns
    -------
    str
        Kubernetes quantity string.
    """
    for index, suffix in enumerate(_BINARY_SUFFIXES):
        multiplier = 1024 ** (len(_BINARY_SUFFIXES) - index)
        if size and size % multiplier == 0:
            return f"{size // multiplier}{suffix}"
    return str(size)


def quantity_to_decimal(quantity: str | float) -> Decimal:
    """Parse any Kubernetes resource quantity for comparison.

    Handles CPU quantities (``500m``, ``2``) as well as memory and storage
    quantities, so that equivalent spellings such as ``1Gi`` and
    ``1073741824`` compare equal.

    Parameters
    ----------
    quantity
        Resource quantity.

    Returns
    -------
    decimal.Decimal
        Numeric value in base units.

    Raises
    ------
    ValueError
        Raised if the quantity cannot be parsed.
    """
    if isinstance(quantity, int | float):
        return Decimal(str(quantity))
    value = quantity.strip()
    try:
        if value.endswith("m"):
            return Decimal(value[:-1]) / 1000
        return Decimal(value)
    except InvalidOperation:
        pass
    return Decimal(quantity_to_bytes(value))
