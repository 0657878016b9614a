import logging
import sys

import structlog
from pythonjsonlogger import jsonlogger


def setup_logging(level: str = "INFO", json_output: bool = True):
    """Structured logging setup"""

    if json_output:
        formatter = jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s"
        )
        renderer = structlog.processors.JSONRenderer()
    else:
        formatter = logging.Formatter('%(levelname)-8s %(name)s: %(message)s')
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Root logger gets a single stdout handler; repeated calls replace it
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_clinicgate", False):
            root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler._clinicgate = True
    root.addHandler(handler)
    root.setLevel(level.upper())

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return structlog.get_logger()
