"""Standalone ticketflow time-trigger sweeper loop."""

from __future__ import annotations

import logging
import time

from ticketflow.db import create_db_and_tables, session_scope
from ticketflow.services import TimeTriggerSweeper
from ticketflow.settings import settings

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    create_db_and_tables()

    sweeper = TimeTriggerSweeper()
    logger.info("starting ticketflow sweeper (every %ss)", settings.sweep_interval_seconds)

    while True:
        try:
            with session_scope() as session:
                sweeper.sweep(session)
            time.sleep(settings.sweep_interval_seconds)
        except KeyboardInterrupt:
            logger.info("sweeper interrupted, exiting")
            break
        except Exception as exc:  # noqa: BLE001
            logger.exception("sweeper loop failure: %s", exc)
            time.sleep(settings.sweep_interval_seconds)


if __name__ == "__main__":
    main()
