"""
Logging setup.

Everything logs through the "tasker" logger with structured ``extra`` fields;
this only wires the root handler and level.
"""

import logging

from tasker.app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = None) -> None:
    logging.basicConfig(level=(level or settings.log_level).upper(), format=LOG_FORMAT)
    logging.getLogger("tasker").setLevel((level or settings.log_level).upper())
