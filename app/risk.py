"""Danger level vocabulary, at-risk rule and display tiers."""

from typing import Dict, Optional

PLACEHOLDER = '—'

DANGER_LABELS: Dict[int, str] = {
    0: 'Low',
    1: 'Moderate',
    2: 'High',
    3: 'Critical',
}

DANGER_COLORS: Dict[int, str] = {
    0: '#22c55e',
    1: '#eab308',
    2: '#f97316',
    3: '#ef4444',
}

AT_RISK_LEVEL = 2

# (rank, riskPercent must exceed, tier) for the top of the ranking badge
RANK_TIERS = (
    (1, 20.0, 'red'),
    (2, 15.0, 'orange'),
    (3, 10.0, 'yellow'),
)

# riskPercent bands used by charts and table text
RISK_BANDS = (
    (30.0, 'red'),
    (20.0, 'orange'),
    (10.0, 'yellow'),
)

BAND_RGB: Dict[str, str] = {
    'red': '239, 68, 68',
    'orange': '249, 115, 22',
    'yellow': '234, 179, 8',
    'green': '34, 197, 94',
}


def effective_danger_level(level: Optional[int]) -> int:
    """
    Danger level used for counting: unknown levels count as Low.

    Args:
        level: Danger level 0..3 or None

    Returns:
        Danger level 0..3
    """
    if level in DANGER_LABELS:
        return level
    return 0


def is_at_risk(level: Optional[int]) -> bool:
    """High or Critical danger level."""
    return effective_danger_level(level) >= AT_RISK_LEVEL


def get_danger_label(level: Optional[int]) -> str:
    """Display label for a danger level; unknown levels render as a dash."""
    if level is None:
        return PLACEHOLDER
    return DANGER_LABELS.get(level, PLACEHOLDER)


def get_rank_tier(rank: int, risk_percent: float) -> str:
    """
    Badge colour for a position in the parallel risk ranking.

    Only the first three positions can be highlighted, each with its own
    threshold; everything else is green.
    """
    for tier_rank, threshold, tier in RANK_TIERS:
        if rank == tier_rank and risk_percent > threshold:
            return tier
    return 'green'


def get_risk_band(risk_percent: float) -> str:
    """Colour band of a risk percentage."""
    for threshold, band in RISK_BANDS:
        if risk_percent > threshold:
            return band
    return 'green'


def get_band_color(band: str, alpha: Optional[float] = None) -> str:
    rgb = BAND_RGB.get(band, BAND_RGB['green'])
    if alpha is None:
        return f'rgb({rgb})'
    return f'rgba({rgb}, {alpha})'


def format_delta(delta: Optional[float]) -> str:
    """Signed percentage change, e.g. "+3.5%", or a dash when unknown."""
    if delta is None:
        return PLACEHOLDER
    sign = '+' if delta > 0 else ''
    return f'{sign}{delta:g}%'


def format_percentage(value: Optional[float]) -> str:
    if value is None:
        return PLACEHOLDER
    return f'{value:g}%'
