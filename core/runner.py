from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from core.actions import ActionsDeps, remove_candidates
from core.config import Config, ConfigurationError
from core.rules import RemovalDecision, evaluate_rules
from core.utils import Torrent, format_torrent_table, has_allowed_label, has_excluded_tracker, hydrate_torrent


SEPARATOR = '─' * 79


@dataclass
class RunnerState:
    first_run: bool = True
    runs: int = 0
    # Held for the whole duration of a run; scheduled triggers skip while it is taken
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


@dataclass
class RunnerDeps:
    client: Any  # expects async .get_torrents() and .remove_torrents(ids, delete_local_data=...)
    config: Config
    event_bus: Any
    log_fn: Callable[[str], None] = logging.info
    now: Callable[[], float] = time.time


@dataclass
class RunResult:
    total: int = 0
    by_label: int = 0
    eligible: int = 0
    candidates: List[RemovalDecision] = field(default_factory=list)
    removed: int = 0


def classify(torrents: List[Torrent], config: Config) -> RunResult:
    by_label = [t for t in torrents if has_allowed_label(t, config.allowed_labels)]
    eligible = [t for t in by_label if not has_excluded_tracker(t, config.excluded_trackers)]
    candidates: List[RemovalDecision] = []
    for t in eligible:
        decision = evaluate_rules(
            t,
            max_ratio=config.max_ratio,
            dead_retention_hours=config.dead_retention_hours,
            max_age_hours=config.max_age_hours,
        )
        if decision is not None:
            candidates.append(decision)
    return RunResult(total=len(torrents), by_label=len(by_label), eligible=len(eligible), candidates=candidates)


def summarize(result: RunResult) -> Dict[str, Any]:
    by_reason: Dict[str, int] = {}
    for d in result.candidates:
        by_reason[d.reason] = by_reason.get(d.reason, 0) + 1
    return {
        'total': result.total,
        'by_label': result.by_label,
        'eligible': result.eligible,
        'candidates': len(result.candidates),
        'removed': result.removed,
        'by_reason': by_reason,
    }


async def run_once(deps: RunnerDeps, state: RunnerState) -> RunResult:
    """Fetch, filter, classify and remove. Errors propagate to the caller."""
    log = deps.log_fn
    log(f'Attempting to fetch torrents from {deps.config.transmission_url}...')
    try:
        raw = await deps.client.get_torrents()
    except Exception as e:
        logging.error(f'Failed to connect: {e}')
        raise

    now = deps.now()
    torrents = [hydrate_torrent(r, now) for r in raw]
    state.runs += 1

    if state.first_run:
        for line in format_torrent_table(torrents):
            log(line)
        if torrents:
            log(SEPARATOR)
        state.first_run = False

    result = classify(torrents, deps.config)
    log(f'Filtering: {result.total} total → {result.by_label} by label → {result.eligible} eligible')

    if not result.candidates:
        log('No torrents to remove')
    else:
        log(SEPARATOR)
        log(f'Found {len(result.candidates)} candidate(s) for removal:')
        for d in result.candidates:
            log(f'[{d.reason.upper()}] {d.torrent.name}: {d.detail}')
            deps.event_bus.emit('candidate', decision=d)
        actions = ActionsDeps(client=deps.client, event_bus=deps.event_bus, dry_run=deps.config.dry_run)
        result.removed = await remove_candidates(result.candidates, actions)

    deps.event_bus.emit('run_summary', **summarize(result))
    return result


async def run_scheduled(deps: RunnerDeps, state: RunnerState) -> Optional[RunResult]:
    if state.lock.locked():
        logging.warning('Previous run still in progress; skipping scheduled run')
        return None
    async with state.lock:
        deps.log_fn('Scheduled run triggered')
        try:
            return await run_once(deps, state)
        except Exception as e:
            logging.error(f'Scheduled run failed: {e}')
            return None


def build_trigger(expression: str, timezone: Any = None) -> CronTrigger:
    """Build a cron trigger from a 5-field crontab or a 6-field one with leading seconds."""
    fields = (expression or '').split()
    try:
        if len(fields) == 6:
            second, minute, hour, day, month, day_of_week = fields
            return CronTrigger(
                second=second,
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=day_of_week,
                timezone=timezone,
            )
        return CronTrigger.from_crontab(expression, timezone=timezone)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f'Invalid schedule: {expression!r} ({e})') from e


def next_fire_time(trigger: CronTrigger, now: Optional[datetime] = None) -> Optional[datetime]:
    now = now or datetime.now(trigger.timezone)
    return trigger.get_next_fire_time(None, now)


def start_scheduler(trigger: CronTrigger, deps: RunnerDeps, state: RunnerState) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_scheduled,
        trigger,
        args=[deps, state],
        id='cleanup',
        name='transmission-dh cleanup',
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    return scheduler
