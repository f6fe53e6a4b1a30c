"""
fuelinst/intensity.py

Generation-weighted carbon intensity of a fuel mix.

Responsibilities
----------------
- Compute the weighted intensity (gCO2/kWh) of a generation-by-fuel snapshot.
- Sum generation by configured fuel category (e.g. storage).

Conventions
-----------
- Generation is in MW, intensities in gCO2/kWh.
- `INSUFFICIENT` (-1) is returned when the mix has too few fuels to classify;
  it is never a valid intensity.
"""

from __future__ import annotations

from collections.abc import Mapping

# Minimum number of distinct fuels with nonzero generation for a usable mix.
MIN_FUEL_TYPES_IN_MIX = 2

INSUFFICIENT = -1.0


def compute_weighted_intensity(
    intensities: Mapping[str, float],
    generation_by_fuel: Mapping[str, float],
    min_fuel_types: int = MIN_FUEL_TYPES_IN_MIX,
) -> float:
    """Compute the generation-weighted intensity of a fuel mix.

    Only fuels present in both mappings contribute; generation for fuels
    without a configured intensity is ignored.

    Args:
        intensities: Fuel code to intensity in gCO2/kWh.
        generation_by_fuel: Fuel code to generation in MW.
        min_fuel_types: Minimum number of common fuels, and of common fuels
            with nonzero generation, needed for a result.

    Returns:
        float: Weighted intensity, 0.0 if total generation is zero, or
        `INSUFFICIENT` if the mix lacks fuel diversity.

    Raises:
        ValueError: If a common fuel has negative generation.
    """
    common = intensities.keys() & generation_by_fuel.keys()
    if len(common) < min_fuel_types:
        return INSUFFICIENT

    total_co2 = 0.0
    total_gen = 0.0
    used = 0
    for fuel in common:
        power = generation_by_fuel[fuel]
        if power < 0:
            raise ValueError(f"negative generation for {fuel}: {power}")
        if power == 0:
            continue
        used += 1
        total_gen += power
        total_co2 += power * intensities[fuel]

    if used < min_fuel_types:
        return INSUFFICIENT
    if total_gen == 0:
        return 0.0
    return total_co2 / total_gen


def fuel_mw_by_category(
    generation_by_fuel: Mapping[str, int],
    categories: Mapping[str, str],
) -> dict[str, int]:
    """Total generation (MW) per category; negative values count as zero.

    Args:
        generation_by_fuel: Fuel code to MW.
        categories: Fuel code to category name. Uncategorised fuels are
            skipped.

    Returns:
        dict[str, int]: Category name to summed MW, for every category named
        in `categories`.
    """
    totals = {category: 0 for category in categories.values()}
    for fuel, category in categories.items():
        totals[category] += max(0, generation_by_fuel.get(fuel, 0))
    return totals
