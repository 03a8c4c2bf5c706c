from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlsplit


# uploadRatio reported by the daemon when the ratio is not known yet
RATIO_UNDEFINED = -1


@dataclass(frozen=True)
class Torrent:
    id: int
    name: str
    percent_done: float
    upload_ratio: float
    age_hours: float
    label: str
    download_dir: str = ''
    tracker_urls: Sequence[str] = field(default_factory=tuple)
    error: int = 0
    error_string: str = ''


def derive_label(labels: Iterable[Any], download_dir: str) -> str:
    for lbl in labels or []:
        return str(lbl)
    return PurePosixPath(download_dir or '').name


def hydrate_torrent(raw: Dict[str, Any], now: Optional[float] = None) -> Torrent:
    now = time.time() if now is None else now
    trackers = raw.get('trackers') or []
    return Torrent(
        id=int(raw.get('id') or 0),
        name=str(raw.get('name') or ''),
        percent_done=float(raw.get('percentDone') or 0) * 100.0,
        upload_ratio=float(raw.get('uploadRatio') or 0),
        age_hours=(now - float(raw.get('addedDate') or 0)) / 3600.0,
        label=derive_label(raw.get('labels') or [], raw.get('downloadDir') or ''),
        download_dir=str(raw.get('downloadDir') or ''),
        tracker_urls=tuple(str(t.get('announce') or '') for t in trackers if isinstance(t, dict)),
        error=int(raw.get('error') or 0),
        error_string=str(raw.get('errorString') or ''),
    )


def tracker_host(url: str) -> Optional[str]:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def has_allowed_label(torrent: Torrent, allowed_labels: Iterable[str]) -> bool:
    allowed = {str(a).lower() for a in allowed_labels}
    if not allowed:
        return False
    return torrent.label.lower() in allowed


def has_excluded_tracker(torrent: Torrent, excluded_trackers: Iterable[str]) -> bool:
    tokens = [str(t).lower() for t in excluded_trackers if t]
    if not tokens:
        return False
    for url in torrent.tracker_urls:
        host = tracker_host(url)
        if host and any(tok in host for tok in tokens):
            return True
    return False


def is_eligible(torrent: Torrent, allowed_labels: Iterable[str], excluded_trackers: Iterable[str]) -> bool:
    return has_allowed_label(torrent, allowed_labels) and not has_excluded_tracker(torrent, excluded_trackers)


def format_ratio(ratio: float) -> str:
    return 'N/A' if ratio == RATIO_UNDEFINED else f'{ratio:.2f}'


def format_torrent_table(torrents: Sequence[Torrent], max_name_length: int = 60) -> List[str]:
    if not torrents:
        return []
    rows = []
    for t in torrents:
        name = t.name if len(t.name) <= max_name_length else t.name[: max_name_length - 3] + '...'
        rows.append({
            'status': 'Done' if t.percent_done >= 100 else 'Active',
            'ratio': format_ratio(t.upload_ratio),
            'age': f'{round(t.age_hours)}h',
            'label': t.label,
            'name': name,
        })
    status_w = max([6] + [len(r['status']) for r in rows])
    ratio_w = max([5] + [len(r['ratio']) for r in rows])
    age_w = max([3] + [len(r['age']) for r in rows])
    label_w = max([5] + [len(r['label']) for r in rows])

    lines = [
        f"{'Status':<{status_w}}  {'Ratio':>{ratio_w}}  {'Age':>{age_w}}  {'Label':<{label_w}}  Name",
        '-' * (status_w + ratio_w + age_w + label_w + 50),
    ]
    for r in rows:
        lines.append(
            f"{r['status']:<{status_w}}  {r['ratio']:>{ratio_w}}  {r['age']:>{age_w}}  {r['label']:<{label_w}}  {r['name']}"
        )
    return lines
