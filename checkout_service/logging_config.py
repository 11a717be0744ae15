"""
logging_config.py — Centralized Logging Configuration for the Checkout Service

This module configures unified logging behavior for the checkout orchestration.
All modules log through the standard logging tree so that payment initiation,
order finalization and the outcome pages share one format and one set of handlers.

Features:
    • Combined console and file logging output
    • Process ID tagging for multi-process visibility
    • Standardized log format for all modules
    • Reduced verbosity for the HTTP stack (httpx, httpcore)
"""

import logging
import sys

LOG_FORMAT = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(message)s'


def setup_logging(level=logging.INFO, log_file="checkout_processing.log"):
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: INFO (default)
        - Log format: timestamp, log level, process ID, and message
        - Output destinations:
            1. File: 'checkout_processing.log' (skipped when log_file is None)
            2. Console (stdout): real-time logs, Docker/Kubernetes compatible
        - Reduced verbosity for httpx/httpcore, which log every request at INFO

    Args:
        level (int): Root log level.
        log_file (str | None): Path of the persistent log file.
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a logger for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)
