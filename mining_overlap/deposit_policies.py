"""
Deposit-Type Sampling Policies
==============================

This file maps deposit types to the stochastic area-multiplier distribution
used to size each mining property's footprint.

INSTRUCTIONS FOR EDITING:
1. Each policy (left side) holds a lognormal distribution for the area
   multiplier (m² of footprint per tonne), hard clip bounds on the sampled
   multiplier, and hard bounds on the final footprint area in km²
2. Deposit-type strings found in the site table are matched through
   DEPOSIT_TYPE_ALIASES (case-insensitive, whitespace collapsed)
3. Anything not in the alias table falls back to a 50/50 choice between the
   FALLBACK_POLICIES, drawn independently for every site in every draw

Format:
    POLICY_KEY: {
        'label': 'Human readable name',
        'log_mean': ln(median multiplier),
        'log_sd': sigma of log(multiplier),
        'multiplier_bounds': (min, max),
        'area_bounds_km2': (min, max),
    }
"""

import math
from typing import Dict, Optional

DEPOSIT_TYPE_POLICIES = {
    # ============================================================================
    # SULPHIDE DEPOSITS
    # ============================================================================

    'magmatic_sulphide': {
        # Underground/open-pit sulphide operations: compact, heavy-tailed
        'label': 'Magmatic Sulphide',
        'log_mean': math.log(30),
        'log_sd': 1.57,
        'multiplier_bounds': (4.0, 398.0),
        'area_bounds_km2': (0.397084, 79.449586),
    },

    # ============================================================================
    # LATERITE DEPOSITS
    # ============================================================================

    'laterite': {
        # Shallow strip mining over weathered profiles: larger, tighter spread
        'label': 'Laterite',
        'log_mean': math.log(50),
        'log_sd': 0.93,
        'multiplier_bounds': (7.0, 229.0),
        'area_bounds_km2': (2.731346, 70.959627),
    },
}

# Unknown or mixed deposits pick one of these with equal probability
FALLBACK_POLICIES = ('magmatic_sulphide', 'laterite')

MIXED_DEPOSIT_TYPE = 'unknown'

DEPOSIT_TYPE_ALIASES = {
    'magmatic sulphide': 'magmatic_sulphide',
    'magmatic sulfide': 'magmatic_sulphide',
    'magmatic_sulphide': 'magmatic_sulphide',
    'sulphide': 'magmatic_sulphide',
    'sulfide': 'magmatic_sulphide',
    'ni sulphide': 'magmatic_sulphide',
    'ni sulfide': 'magmatic_sulphide',
    'laterite': 'laterite',
    'lateritic': 'laterite',
    'ni laterite': 'laterite',
}


def normalize_deposit_type(deposit_type) -> str:
    """Lowercase and collapse whitespace; missing values become 'unknown'."""
    if deposit_type is None:
        return MIXED_DEPOSIT_TYPE
    if isinstance(deposit_type, float) and math.isnan(deposit_type):
        return MIXED_DEPOSIT_TYPE
    text = ' '.join(str(deposit_type).replace('-', ' ').split()).lower()
    return text or MIXED_DEPOSIT_TYPE


def resolve_policy_key(deposit_type) -> Optional[str]:
    """
    Return the policy key for a deposit type, or None for the mixed fallback.

    Examples
    --------
    >>> resolve_policy_key('Laterite')
    'laterite'
    >>> resolve_policy_key('Magmatic  Sulfide')
    'magmatic_sulphide'
    >>> resolve_policy_key('Hydrothermal') is None
    True
    """
    return DEPOSIT_TYPE_ALIASES.get(normalize_deposit_type(deposit_type))


def get_policy_label(policy_key: str) -> str:
    """Display name for a policy key."""
    return DEPOSIT_TYPE_POLICIES[policy_key]['label']


def validate_policies(policies: Dict = DEPOSIT_TYPE_POLICIES,
                      fallback=FALLBACK_POLICIES,
                      aliases: Dict = DEPOSIT_TYPE_ALIASES) -> bool:
    """
    Check that every policy is internally consistent.

    Raises
    ------
    ValueError
        If a bound is inverted, a spread is not positive, or a fallback or
        alias target is not a defined policy.
    """
    problems = []

    for key, policy in policies.items():
        lo, hi = policy['multiplier_bounds']
        if not 0 < lo <= hi:
            problems.append(f"{key}: multiplier bounds {lo}-{hi} invalid")
        area_lo, area_hi = policy['area_bounds_km2']
        if not 0 <= area_lo <= area_hi:
            problems.append(f"{key}: area bounds {area_lo}-{area_hi} invalid")
        if policy['log_sd'] <= 0:
            problems.append(f"{key}: log_sd must be positive")

    if len(fallback) == 0:
        problems.append("no fallback policies defined")
    for key in fallback:
        if key not in policies:
            problems.append(f"fallback policy '{key}' is not defined")

    for alias, key in aliases.items():
        if key not in policies:
            problems.append(f"alias '{alias}' points to undefined policy '{key}'")

    if problems:
        raise ValueError("Invalid deposit policies: " + "; ".join(problems))
    return True
