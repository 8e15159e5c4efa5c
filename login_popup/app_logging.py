import logging
from pythonjsonlogger import jsonlogger


def setup_logger(level: int = logging.INFO, json: bool = True) -> None:
    """Send log records to stderr, as JSON lines unless ``json`` is off."""
    logHandler = logging.StreamHandler()
    if json:
        formatter: logging.Formatter = jsonlogger.JsonFormatter(
            '%(asctime)s %(levelname)s %(name)s %(message)s',
            rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s %(levelname)s %(name)s: %(message)s'
        )
    logHandler.setFormatter(formatter)
    logger = logging.getLogger('login_popup')
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.addHandler(logHandler)
    logger.setLevel(level)
