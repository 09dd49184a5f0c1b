# file: main.py

import asyncio
import logging
import os
from datetime import datetime, timezone

from dotenv import load_dotenv

from reliefsync.config import configure_logging, get_settings
from reliefsync.models.match import Match
from reliefsync.session import ReliefSession

load_dotenv()
RELIEF_EMAIL = os.getenv("RELIEF_EMAIL")
RELIEF_PASSWORD = os.getenv("RELIEF_PASSWORD")
REFRESH_SECONDS = int(os.getenv("RELIEF_REFRESH_SECONDS", "300"))

logger = logging.getLogger("reliefsync.watcher")


def log_match(match: Match) -> None:
    logger.info(f"Match {match.id}: request {match.request_id} / offer {match.offer_id} is {match.status}")


def log_summary(session: ReliefSession) -> None:
    if session.user.role == "victim":
        for request in session.requests.requests:
            logger.info(f"  request {request.id} [{request.status}] {request.display_title} x{request.quantity}")
    if session.user.role == "ngo":
        logger.info(f"  offers: {session.offers.calculate_stats()}")
        now = datetime.now(timezone.utc)
        for offer in session.offers.offers:
            if offer.status == "pending" and offer.is_past_window(now):
                logger.warning(f"  offer {offer.id} ({offer.title}) is past its availability window; consider expiring it")
    logger.info(f"  matches: {session.matching.calculate_stats()}")
    logger.info(f"  unread notifications: {session.notifications.unread_count}")


async def refresh(session: ReliefSession) -> None:
    if session.user.role == "victim":
        await session.requests.fetch_requests()
    if session.user.role == "ngo":
        await session.offers.fetch_offers()
    await session.notifications.fetch_unread_notifications()


async def main_watch_loop():
    """Signs in, keeps the session's stores live and logs their state periodically."""
    settings = get_settings()
    configure_logging(settings.log_level)
    if not RELIEF_EMAIL or not RELIEF_PASSWORD:
        logger.error("RELIEF_EMAIL and RELIEF_PASSWORD must be set")
        return

    session = await ReliefSession.login(RELIEF_EMAIL, RELIEF_PASSWORD, settings=settings)
    session.registry.add_listener(log_match)
    async with session:
        while True:
            logger.info(f"--- [{datetime.now()}] {session.user.name} ({session.user.role}) ---")
            log_summary(session)
            await asyncio.sleep(REFRESH_SECONDS)
            await refresh(session)
            for store in session.stores:
                if store.error:
                    logger.warning(f"{type(store).__name__}: {store.error}")
                    store.clear_error()


if __name__ == "__main__":
    try:
        asyncio.run(main_watch_loop())
    except KeyboardInterrupt:
        logger.info("Watcher stopped.")
