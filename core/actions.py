from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from core.rules import RemovalDecision


@dataclass
class ActionsDeps:
    client: Any  # expects async .remove_torrents(ids, delete_local_data=...)
    event_bus: Any  # expects .emit(event, decision=..., **fields)
    dry_run: bool
    delete_local_data: bool = True


async def remove_candidates(decisions: Sequence[RemovalDecision], deps: ActionsDeps) -> int:
    """Remove every candidate with a single batched RPC call.

    Returns the number of torrents removed, which is 0 for an empty
    candidate list and in dry-run mode.
    """
    if not decisions:
        return 0
    ids = [d.torrent.id for d in decisions]

    if deps.dry_run:
        logging.warning(f'DRY_RUN enabled - skipping removal of {len(ids)} torrent(s)')
        for d in decisions:
            deps.event_bus.emit('dry_remove', decision=d)
        return 0

    await deps.client.remove_torrents(ids, delete_local_data=deps.delete_local_data)
    logging.info(f'Torrents removed: {len(ids)}')
    for d in decisions:
        deps.event_bus.emit('remove', decision=d)
    return len(ids)
