import argparse
import asyncio
import json
import sys
import time

import aiohttp

from core.config import ConfigurationError, load_config
from core.rules import evaluate_rules
from core.runner import build_trigger, next_fire_time
from core.utils import format_ratio, hydrate_torrent, is_eligible
from integrations.clients.transmission import TransmissionClient, TransmissionError, normalize_torrent


def _decide(raw, cfg, now=None):
    t = hydrate_torrent(normalize_torrent(raw), now)
    eligible = is_eligible(t, cfg.allowed_labels, cfg.excluded_trackers)
    decision = None
    if eligible:
        decision = evaluate_rules(
            t,
            max_ratio=cfg.max_ratio,
            dead_retention_hours=cfg.dead_retention_hours,
            max_age_hours=cfg.max_age_hours,
        )
    return t, eligible, decision


def cmd_simulate(args):
    with open(args.item_json, 'r') as f:
        item = json.load(f)
    cfg = load_config()
    t, eligible, decision = _decide(item, cfg)
    print(json.dumps({
        "id": t.id,
        "label": t.label,
        "eligible": eligible,
        "reason": decision.reason if decision else None,
        "detail": decision.detail if decision else None,
    }, indent=2, ensure_ascii=False))


async def _list_torrents(cfg):
    async with aiohttp.ClientSession() as session:
        client = TransmissionClient(
            session,
            cfg.transmission_url,
            cfg.username,
            cfg.password,
            request_timeout=cfg.request_timeout,
            connect_attempts=1,
        )
        return await client.get_torrents()


def cmd_list(args):
    cfg = load_config()
    raw = asyncio.run(_list_torrents(cfg))
    now = time.time()
    for item in raw:
        t, eligible, decision = _decide(item, cfg, now)
        print(json.dumps({
            "id": t.id,
            "name": t.name,
            "label": t.label,
            "ratio": format_ratio(t.upload_ratio),
            "age_hours": round(t.age_hours, 1),
            "eligible": eligible,
            "reason": decision.reason if decision else None,
        }, ensure_ascii=False))


def cmd_status(args):
    cfg = load_config()
    next_run = None
    if cfg.schedule:
        fire = next_fire_time(build_trigger(cfg.schedule))
        next_run = fire.strftime('%Y-%m-%d %H:%M:%S') if fire else None
    print(
        json.dumps(
            {
                "transmission_url": cfg.transmission_url,
                "allowed_labels": list(cfg.allowed_labels),
                "excluded_trackers": list(cfg.excluded_trackers),
                "max_ratio": cfg.max_ratio,
                "dead_retention_hours": cfg.dead_retention_hours,
                "max_age_hours": cfg.max_age_hours,
                "dry_run": cfg.dry_run,
                "schedule": cfg.schedule,
                "next_run": next_run,
            },
            indent=2,
        )
    )


def main():
    ap = argparse.ArgumentParser(description="Transmission retention cleaner CLI")
    sub = ap.add_subparsers(dest='cmd')

    p_sim = sub.add_parser('simulate', help='Evaluate the removal rules for a torrent-get JSON object')
    p_sim.add_argument('item_json', help='Path to torrent JSON file')
    p_sim.set_defaults(func=cmd_simulate)

    p_list = sub.add_parser('list', help='Fetch torrents and show the decision for each (never removes)')
    p_list.set_defaults(func=cmd_list)

    p_status = sub.add_parser('status', help='Show resolved configuration and next run time')
    p_status.set_defaults(func=cmd_status)

    args = ap.parse_args()
    if not hasattr(args, 'func'):
        ap.print_help()
        sys.exit(1)
    try:
        args.func(args)
    except (ConfigurationError, TransmissionError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
