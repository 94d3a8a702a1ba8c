"""
Logging for a localization run.

Every module logs through a child of the ``site_localizer`` logger, so one call
to ``setup_logger`` at startup routes the whole pipeline to the run log and,
optionally, to the console above the per-language progress bar.
"""
import logging
import os
import sys

from tqdm import tqdm

LOGGER_NAME = "site_localizer"
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


class TqdmLoggingHandler(logging.Handler):
    """Console handler that prints through ``tqdm.write`` so progress bars are redrawn below the line."""

    def emit(self, record):
        try:
            tqdm.write(self.format(record), file=sys.stderr)
            self.flush()
        except (KeyboardInterrupt, SystemExit):
            raise
        except Exception:
            self.handleError(record)


def setup_logger(log_level_str: str, log_file_path: str, log_to_console: bool) -> logging.Logger:
    """
    Configure the package logger from scratch.

    Args:
        log_level_str: Level name such as 'INFO' or 'debug'; unknown names mean INFO.
        log_file_path: Run log, written as UTF-8. Its directory is created.
        log_to_console: Also echo records to stderr via tqdm.

    Returns:
        The ``site_localizer`` logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level_str.upper(), logging.INFO))
    # Repeated setup replaces handlers instead of stacking them.
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)

    log_dir = os.path.dirname(log_file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if log_to_console:
        console_handler = TqdmLoggingHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger
