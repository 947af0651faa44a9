# FinRelay package init
import logging
import os


def _configure_logging() -> None:
    level_name = (os.getenv("FINRELAY_LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logger = logging.getLogger("finrelay")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[FINRELAY][%(levelname)s] %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level)

    relay_level_name = (os.getenv("FINRELAY_RELAY_LOG_LEVEL") or level_name).upper()
    relay_level = getattr(logging, relay_level_name, level)
    logging.getLogger("finrelay.relay").setLevel(relay_level)


_configure_logging()
