"""
Logging configuration for S3 issuance tooling.
Supports normal mode (concise) and debug mode (verbose with file output).
"""
import logging
import sys
import os
from pathlib import Path

# Debug mode: set ISSUANCE_DEBUG=1 to write verbose logs to file
ISSUANCE_DEBUG = os.getenv('ISSUANCE_DEBUG', '').lower() in ('1', 'true', 'yes')

# Debug log file path
DEBUG_LOG_PATH = Path(os.getenv('ISSUANCE_DEBUG_LOG', 'issuance_debug.log'))


class ConciseFormatter(logging.Formatter):
    """Single-line, concise log format."""

    FORMATS = {
        logging.DEBUG: "\033[90m[D]\033[0m %(name)s: %(message)s",
        logging.INFO: "\033[32m[I]\033[0m %(message)s",
        logging.WARNING: "\033[33m[W]\033[0m %(message)s",
        logging.ERROR: "\033[31m[E]\033[0m %(name)s: %(message)s",
        logging.CRITICAL: "\033[31;1m[!]\033[0m %(name)s: %(message)s",
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno, self.FORMATS[logging.INFO])
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


class VerboseFormatter(logging.Formatter):
    """Detailed format for debug file logging."""
    def __init__(self):
        super().__init__(
            fmt='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


def setup_logging(level=logging.INFO):
    """
    Configure logging for the command-line tools.
    Call this once at startup.

    Set ISSUANCE_DEBUG=1 to also write every record (including signed
    transaction hashes and nonces) to the debug log file.
    """
    # Silence noisy third-party loggers
    noisy_loggers = [
        'urllib3', 'requests', 'asyncio',
        'web3', 'web3.providers', 'web3.RequestManager', 'web3.manager',
    ]
    for logger_name in noisy_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ConciseFormatter())
    root.addHandler(handler)

    app_logger = logging.getLogger('s3_issuance')
    app_logger.setLevel(level)

    if ISSUANCE_DEBUG:
        setup_debug_file_logging()
        app_logger.info(f"ISSUANCE_DEBUG enabled - verbose logs written to {DEBUG_LOG_PATH}")

    return app_logger


def setup_debug_file_logging(path: Path = None):
    """
    Attach a verbose file handler to the package logger.
    Safe to call more than once; the handler is tagged and never duplicated.
    """
    path = path or DEBUG_LOG_PATH
    package_logger = logging.getLogger('s3_issuance')
    package_logger.setLevel(logging.DEBUG)

    if any(getattr(h, 'name', None) == 'issuance_debug_file' for h in package_logger.handlers):
        return

    file_handler = logging.FileHandler(path, mode='a', encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(VerboseFormatter())
    file_handler.name = 'issuance_debug_file'
    package_logger.addHandler(file_handler)
