"""
coordinates.py
~~~~~~~~~~~~~~
WGS84 range check + privacy rounding for every coordinate pair we store
or render.

* Device GPS fixes keep 6 decimals (~0.11 m).
* IP-derived estimates keep 4 decimals (~11 m).
"""

from __future__ import annotations

import math
from typing import Any, Final

GPS_PRECISION: Final = 6
IP_PRECISION: Final = 4


def _to_float(value: Any) -> float | None:
    """Parse a number or numeric string; ``None`` for anything else."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def validate_coords(
    lat: Any, lng: Any, precision: int = GPS_PRECISION
) -> tuple[float, float] | None:
    """
    Validate a latitude/longitude pair and round it.

    Args:
        lat, lng:   Numbers or numeric strings.
        precision:  Decimal places to keep (``GPS_PRECISION`` or ``IP_PRECISION``).

    Returns:
        ``(lat, lng)`` rounded to *precision*, or *None* when either value is
        unparseable or outside −90..90 / −180..180.
    """
    lat_f = _to_float(lat)
    lng_f = _to_float(lng)
    if lat_f is None or lng_f is None:
        return None
    if not (-90 <= lat_f <= 90) or not (-180 <= lng_f <= 180):
        return None
    return round(lat_f, precision), round(lng_f, precision)


def parse_number(value: Any) -> float | None:
    """Best-effort float for optional numeric fields (accuracy, speed, …)."""
    return _to_float(value)
