from __future__ import annotations

import logging
import sys

from tqdm import tqdm

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class TqdmLoggingHandler(logging.Handler):
    """Writes records through ``tqdm.write`` so progress bars stay intact."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record), file=sys.stderr)
        except Exception:  # pragma: no cover - mirrors logging.StreamHandler
            self.handleError(record)


def configure_logging(debug: bool = False) -> logging.Logger:
    """Attach the console handler to the package logger once."""

    logger = logging.getLogger("gpt_translate")
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    if not any(isinstance(handler, TqdmLoggingHandler) for handler in logger.handlers):
        handler = TqdmLoggingHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)
    return logger
