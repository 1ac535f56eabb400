import logging
import sys
from pythonjsonlogger import jsonlogger
from app.core.config import Settings


# Third-party loggers that are chatty at INFO (every RPC / completion request).
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "web3", "urllib3")


def configure_logging(settings: Settings) -> None:
    """
    Structured (JSON) logging to stdout.

    Degradation warnings from the registry and AI subsystems carry their
    context in the message and in `extra` fields, which the JSON formatter
    emits as top-level keys.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # clear handlers if reloaded
    root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    fmt = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"levelname": "level", "name": "logger"},
    )
    handler.setFormatter(fmt)
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("uvicorn.error").setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
