import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
ROOT_LOGGER = "library"


def get_logger(name: str) -> logging.Logger:
    """
    Returns a logger under the ``library`` hierarchy.

    The first call attaches a single stream handler to the ``library`` root
    logger so every module logs in the same format without duplicating handlers.
    """
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        root.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

    if not name or name == ROOT_LOGGER:
        return root
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
