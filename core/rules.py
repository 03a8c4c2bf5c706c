from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from core.utils import RATIO_UNDEFINED, Torrent


REASON_RATIO = 'ratio'
REASON_DEAD = 'dead'
REASON_TTL = 'ttl'


@dataclass(frozen=True)
class RemovalDecision:
    torrent: Torrent
    reason: str
    detail: str


def check_ratio_rule(torrent: Torrent, max_ratio: float) -> Optional[RemovalDecision]:
    # An undefined ratio never satisfies the threshold, whatever max_ratio is
    if torrent.upload_ratio == RATIO_UNDEFINED or torrent.upload_ratio < max_ratio:
        return None
    return RemovalDecision(torrent, REASON_RATIO, f'Ratio {torrent.upload_ratio:.2f} ≥ {max_ratio}')


def check_dead_rule(torrent: Torrent, dead_retention_hours: float) -> Optional[RemovalDecision]:
    if torrent.percent_done >= 100 or torrent.age_hours < dead_retention_hours:
        return None
    return RemovalDecision(
        torrent,
        REASON_DEAD,
        f'Incomplete ({torrent.percent_done:.1f}%) for {torrent.age_hours:.1f}h (threshold: {dead_retention_hours}h)',
    )


def check_ttl_rule(torrent: Torrent, max_age_hours: float) -> Optional[RemovalDecision]:
    if torrent.age_hours < max_age_hours:
        return None
    return RemovalDecision(torrent, REASON_TTL, f'Age {torrent.age_hours:.1f}h exceeds TTL of {max_age_hours}h')


def evaluate_rules(
    torrent: Torrent,
    *,
    max_ratio: float,
    dead_retention_hours: float,
    max_age_hours: float,
) -> Optional[RemovalDecision]:
    """Return the first matching removal decision: ratio, then dead, then ttl."""
    decision = check_ratio_rule(torrent, max_ratio)
    if decision is not None:
        return decision
    decision = check_dead_rule(torrent, dead_retention_hours)
    if decision is not None:
        return decision
    return check_ttl_rule(torrent, max_age_hours)
