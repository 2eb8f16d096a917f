import math
from typing import Iterable, List, NamedTuple, Optional, Set, Tuple

from .config import CAPACITY_CRITICAL_THRESHOLD, CAPACITY_WARNING_THRESHOLD
from .ip_utils import MAX_HOST_OCTET, MIN_HOST_OCTET, REGION_CAPACITY
from .models import CapacityPriority, CapacityWarning, UtilizationLevel

Y_VALUES_PER_X = 256

LOW_UTILIZATION_LIMIT = 50.0
MEDIUM_UTILIZATION_LIMIT = 80.0


class CapacityThresholds(NamedTuple):
    warning: float = CAPACITY_WARNING_THRESHOLD
    critical: float = CAPACITY_CRITICAL_THRESHOLD


def safe_percentage(value) -> float:
    """
    Clamp a percentage into [0, 100].
    None, NaN, infinities and non-numbers all collapse to 0.0.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return float(min(max(value, 0.0), 100.0))


def calculate_utilization(allocated: int, total: int) -> float:
    """
    Returns utilization percentage rounded to 2 decimals.
    A zero total is reported as 0.0 rather than dividing by zero, and a
    negative or non-finite result (NaN totals, negative counts) as 0.0.
    """
    if not total:
        return 0.0
    try:
        value = allocated / total * 100
    except TypeError:
        return 0.0
    return round(safe_percentage(value), 2)


def classify_utilization(percentage) -> UtilizationLevel:
    value = safe_percentage(percentage)
    if value < LOW_UTILIZATION_LIMIT:
        return UtilizationLevel.LOW
    if value < MEDIUM_UTILIZATION_LIMIT:
        return UtilizationLevel.MEDIUM
    return UtilizationLevel.HIGH


def progress_bar_width(percentage) -> float:
    value = safe_percentage(percentage)
    # Keep tiny allocations visible
    if 0 < value < 1:
        return 1.0
    return value


def format_percentage(value, decimals: int = 1) -> str:
    """
    "0%" for missing or non-finite input, otherwise the value with a
    trailing ".0" dropped: 50.0 -> "50%", 33.33 -> "33.3%".
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return "0%"
    text = f"{value:.{decimals}f}"
    if text.endswith(".0"):
        text = text[:-2]
    return f"{text}%"


def country_total_capacity(x_start: int, x_end: int) -> int:
    """Number of /24 regions a country's X range can hold."""
    if x_end < x_start:
        return 0
    return (x_end - x_start + 1) * Y_VALUES_PER_X


def country_utilization(allocated_regions: int, x_start: int, x_end: int) -> float:
    return safe_percentage(calculate_utilization(allocated_regions, country_total_capacity(x_start, x_end)))


def region_utilization(allocated_hosts: int) -> float:
    return safe_percentage(calculate_utilization(allocated_hosts, REGION_CAPACITY))


def validate_x_range_overlap(x_start: int, x_end: int, existing_ranges: Iterable[Tuple[int, int]]) -> bool:
    """
    Checks if [x_start, x_end] intersects any existing inclusive X range.
    Returns True if overlap exists, False otherwise.
    """
    for other_start, other_end in existing_ranges:
        if x_start <= other_end and other_start <= x_end:
            return True
    return False


def find_next_free_region(x_start: int, x_end: int, allocated_pairs: Set[Tuple[int, int]]) -> Optional[Tuple[int, int]]:
    """
    First unallocated (X, Y) pair in a country's range.
    X ascends from x_start, Y from 0 to 255 within each X.
    """
    for x_octet in range(x_start, x_end + 1):
        for y_octet in range(Y_VALUES_PER_X):
            if (x_octet, y_octet) not in allocated_pairs:
                return x_octet, y_octet
    return None


def next_free_z_values(allocated_z: Set[int], count: int) -> List[int]:
    """
    Up to `count` lowest free host octets in a region.
    Fewer are returned when the region lacks room; callers compare lengths.
    """
    free = []
    for z_octet in range(MIN_HOST_OCTET, MAX_HOST_OCTET + 1):
        if len(free) >= count:
            break
        if z_octet not in allocated_z:
            free.append(z_octet)
    return free


def capacity_warning_message(utilization, thresholds: CapacityThresholds = None) -> Optional[str]:
    thresholds = thresholds or CapacityThresholds()
    value = safe_percentage(utilization)
    if value >= thresholds.critical:
        return "Critical capacity - immediate action required"
    if value >= thresholds.warning:
        return "High capacity - plan for additional space"
    return None


def check_capacity(
    resource_type: str,
    resource_id: str,
    resource_name: str,
    utilization,
    allocated: int,
    capacity: int,
    thresholds: CapacityThresholds = None,
) -> Optional[CapacityWarning]:
    """
    Build a capacity warning for a country or region above the warning threshold.
    """
    thresholds = thresholds or CapacityThresholds()
    value = safe_percentage(utilization)
    label = resource_type.capitalize()
    unit = "hosts" if resource_type == "region" else "regions"
    usage = f'{label} "{resource_name}" is at {format_percentage(value)} capacity ({allocated}/{capacity} {unit}).'

    if value >= thresholds.critical:
        priority = CapacityPriority.CRITICAL
        title = f"Critical {label} Capacity Warning"
        advice = "Immediate action required."
    elif value >= thresholds.warning:
        priority = CapacityPriority.HIGH
        title = f"{label} Capacity Warning"
        advice = "Consider planning for additional capacity."
    else:
        return None

    return CapacityWarning(
        resource_type=resource_type,
        resource_id=resource_id,
        resource_name=resource_name,
        priority=priority,
        title=title,
        message=f"{usage} {advice}",
        utilization_percentage=value,
        allocated=allocated,
        capacity=capacity,
    )


def overall_utilization(countries: Iterable) -> float:
    """Regions allocated across all countries over their combined /24 capacity."""
    allocated = 0
    capacity = 0
    for country in countries:
        allocated += country.allocated_regions
        capacity += country.total_capacity
    return calculate_utilization(allocated, capacity)


def rank_countries(countries: Iterable, limit: int = 10) -> list:
    """Most utilized countries first; ties broken by allocated regions, then name."""
    ranked = sorted(
        countries,
        key=lambda c: (-safe_percentage(c.utilization_percentage), -c.allocated_regions, c.country),
    )
    return ranked[:max(limit, 0)]
