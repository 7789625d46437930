import logging

LOG = logging.getLogger("e2ee")

_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
HANDLER_NAME = "e2ee"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach one stderr handler to the package logger (idempotent)."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level!r}")
    LOG.setLevel(numeric)
    if not any(h.get_name() == HANDLER_NAME for h in LOG.handlers):
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(_FORMAT))
        ch.set_name(HANDLER_NAME)
        LOG.addHandler(ch)
    for h in LOG.handlers:
        h.setLevel(numeric)
    return LOG
