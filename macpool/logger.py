import logging, json, sys, time, os

_FORMAT = json.dumps({
    "ts": "%(asctime)s",
    "level": "%(levelname)s",
    "name": "%(name)s",
    "msg": "%(message)s"
})


def _level_from_env(default=logging.INFO):
    raw = os.getenv("MACPOOL_LOG_LEVEL", "").strip().upper()
    if not raw:
        return default
    value = logging.getLevelName(raw)
    return value if isinstance(value, int) else default


def get_logger(name="MacPool", level=None, to_file=None):
    """Unified structured logger for all macpool components.

    One JSON line per record on stdout, UTC timestamps. The level defaults
    to MACPOOL_LOG_LEVEL (INFO when unset). Handlers are attached once per
    logger name, so repeated calls from different modules are cheap.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level if level is not None else _level_from_env())

    if not logger.handlers:
        formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ")
        formatter.converter = time.gmtime  # Use UTC timestamps
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

        if to_file:
            os.makedirs(os.path.dirname(to_file) or ".", exist_ok=True)
            file_handler = logging.FileHandler(to_file)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger
