# src/tickerwatch/main.py
import asyncio
import logging
import os

import structlog
from dotenv import load_dotenv

from tickerwatch.alerts.notifiers import ConsoleNotifier, NotifierRouter
from tickerwatch.config import env_float, store_from_env, trackers_from_env
from tickerwatch.errors import ConfigError
from tickerwatch.notify import telegram, webhook
from tickerwatch.registry import TrackerRegistry

load_dotenv()
log = structlog.get_logger()


def configure_logging(level_name: str | None = None) -> None:
    name = (level_name or os.getenv("LOG_LEVEL") or "INFO").upper()
    level = logging.getLevelNamesMapping().get(name)
    if level is None:
        raise ConfigError(f"LOG_LEVEL must be a logging level name, got {name!r}")
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def build_notifiers() -> tuple[NotifierRouter, list]:
    """
    Console always; Telegram / webhook only when their env is present.
    Returns the router plus the notifiers that need start()/stop().
    """
    router = NotifierRouter([ConsoleNotifier()])
    managed = []
    try:
        tg = telegram.TelegramNotifier(telegram.config_from_env())
        router.add(tg)
        managed.append(tg)
        log.info("telegram_enabled")
    except ConfigError:
        log.info("telegram_disabled_missing_env")
    try:
        wh = webhook.WebhookNotifier(webhook.config_from_env())
        router.add(wh)
        managed.append(wh)
        log.info("webhook_enabled")
    except ConfigError:
        log.info("webhook_disabled_missing_env")
    return router, managed


async def status_loop(registry: TrackerRegistry, interval_s: float):
    """Periodic one-line status per instrument."""
    while True:
        await asyncio.sleep(interval_s)
        for label, snap in (await registry.snapshot()).items():
            conn = snap["connection"]
            log.info(
                "status",
                instrument=label,
                phase=conn["phase"],
                healthy=conn["healthy"],
                price=snap["price"],
                baseline=snap["baseline"],
                delta_pct=round(snap["delta_pct"], 3) if snap["delta_pct"] is not None else None,
                ticks=conn["counters"]["ticks"],
                reconnects=conn["counters"]["reconnects_scheduled"],
            )


async def main():
    configure_logging()
    trackers = trackers_from_env()
    store = store_from_env()
    router, managed = build_notifiers()
    status_interval_s = env_float("STATUS_INTERVAL_S", 60.0)

    registry = TrackerRegistry(store, notifier=router)
    for cfg in trackers:
        registry.add(cfg)

    for n in managed:
        await n.start()
    await registry.start_all()
    log.info("tickerwatch_started", pairs=[c.ws.pair for c in trackers])

    try:
        if status_interval_s > 0:
            await status_loop(registry, status_interval_s)
        else:
            await asyncio.Event().wait()
    finally:
        # graceful shutdown to avoid unclosed sessions
        await registry.stop_all()
        for n in managed:
            try:
                await n.stop()
            except Exception as e:
                log.warning("notifier_stop_failed", notifier=type(n).__name__, err=str(e))
        await store.close()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
