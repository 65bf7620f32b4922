import logging

import structlog

# Driver loggers that fire on every counter read and conditional write
DRIVER_LOGGERS = ("pymongo", "pymongo.command", "pymongo.connection", "pymongo.serverSelection", "pymongo.topology")


def _renderer(debug: bool) -> structlog.types.Processor:
    if debug:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_logging(debug: bool, driver_level: int = logging.WARNING) -> None:
    """Route structlog through stdlib logging.

    Debug mode logs every counter reservation and renders for a terminal;
    otherwise INFO and above are emitted as JSON lines. Events carry any
    context bound with ``structlog.contextvars`` (the model being saved, for one).
    """
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format="%(message)s", force=True)
    for name in DRIVER_LOGGERS:
        logging.getLogger(name).setLevel(driver_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(debug),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
