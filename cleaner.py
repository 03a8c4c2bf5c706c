import asyncio
import logging
import signal
import sys
from typing import Mapping, Optional

import aiohttp

from core.config import ConfigurationError, describe_config, load_config
from core.events import EventBus, make_event_logger
from core.runner import RunnerDeps, RunnerState, build_trigger, run_once, start_scheduler
from integrations.clients.transmission import TransmissionClient


BANNER = '═' * 59


def configure_logging(level: int) -> None:
    logging.basicConfig(
        format='%(asctime)s [%(levelname)s]: %(message)s',
        level=level,
        handlers=[logging.StreamHandler()],
        force=True,
    )


async def _wait_for_shutdown() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform/loop; rely on KeyboardInterrupt
            pass
    await stop.wait()


async def main(env: Optional[Mapping[str, str]] = None, client: Optional[TransmissionClient] = None) -> int:
    try:
        config = load_config(env)
        trigger = build_trigger(config.schedule) if config.schedule else None
    except ConfigurationError as e:
        configure_logging(logging.INFO)
        logging.error(f'Configuration error: {e}')
        return 1

    configure_logging(config.logging_level)
    logging.info(BANNER)
    logging.info('Transmission-DH Starting')
    for line in describe_config(config):
        logging.info(line)
    logging.info(BANNER)

    event_bus = EventBus(
        structured_logs=config.structured_logs,
        dry_run=config.dry_run,
        logger=make_event_logger(config.logging_level),
    )

    async with aiohttp.ClientSession() as session:
        if client is None:
            client = TransmissionClient(
                session,
                config.transmission_url,
                config.username,
                config.password,
                request_timeout=config.request_timeout,
            )
        deps = RunnerDeps(client=client, config=config, event_bus=event_bus)
        state = RunnerState()

        try:
            logging.info('Running cleanup check...')
            async with state.lock:
                await run_once(deps, state)
        except Exception as e:
            logging.error(f'Startup failed: {e}')
            return 1

        if trigger is None:
            logging.info('Done')
            return 0

        logging.info(f'Scheduling periodic runs ({config.schedule})')
        scheduler = start_scheduler(trigger, deps, state)
        try:
            await _wait_for_shutdown()
        finally:
            scheduler.shutdown(wait=False)
        logging.info('Shutting down')
    return 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == '__main__':
    run()
