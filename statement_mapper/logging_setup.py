"""
Centralised logging configuration for Statement Mapper.

Package modules log through ``get_logger("<module>")``; the Flask app logs
as ``statement_mapper.app``.  ``configure_logging`` runs once per process
(the pipeline constructor calls it) and attaches the console / file
handlers to the ``statement_mapper`` logger only.

The PDF and HTTP libraries underneath the pipeline are chatty: pdfminer
(inside pdfplumber) logs every malformed object, and httpx / google-genai
log every request.  Their loggers are capped at ``THIRD_PARTY_LEVEL`` so a
DEBUG run of the pipeline stays readable.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Tuple


_CONFIGURED = False

LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)-34s | %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NOISY_LOGGERS: Tuple[str, ...] = (
    "pdfminer",
    "pdfplumber",
    "PIL",
    "httpx",
    "httpcore",
    "google_genai",
)
THIRD_PARTY_LEVEL = logging.WARNING


def quiet_third_party(level: int = THIRD_PARTY_LEVEL) -> None:
    """Raise the threshold of the extraction libraries' own loggers."""
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
) -> None:
    """Attach handlers to the ``statement_mapper`` logger.

    Parameters
    ----------
    level:
        Minimum severity emitted by this package.
    log_file:
        Optional path; a UTF-8 ``FileHandler`` is added next to stdout.
    """
    global _CONFIGURED  # noqa: PLW0603
    if _CONFIGURED:
        return

    package_logger = logging.getLogger("statement_mapper")
    package_logger.setLevel(level)
    package_logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    quiet_third_party()
    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Child logger ``statement_mapper.<name>``."""
    return logging.getLogger(f"statement_mapper.{name}")
