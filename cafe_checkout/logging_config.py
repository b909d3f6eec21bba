"""
logging_config.py — Centralized Logging Configuration for the Checkout Service

This module configures unified logging behavior for the entire application.
It ensures that all modules log messages consistently to the console and,
when configured, to a file.

Features:
    • Console output plus optional file output
    • Process ID tagging for multi-worker visibility
    • Standardized log format for all modules
    • Reduced verbosity for external dependencies (Firebase / Google auth / urllib3)
"""

import logging
import sys


LOG_FORMAT = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(message)s'


def setup_logging(level: str = "INFO", log_file: str = ""):
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: taken from `level` (INFO by default)
        - Log format: timestamp, log level, process ID, and message
        - Output destinations:
            1. Console (stdout): real-time logs, Docker/Kubernetes compatible
            2. File: `log_file` (persistent log), skipped when empty
        - Reduced verbosity for third-party libraries

    Args:
        level (str): Name of the root log level, e.g. "DEBUG" or "INFO".
        log_file (str): Path of the log file. An empty string disables file output.
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )

    # Reduce verbosity from external libraries
    for noisy in ("urllib3", "google", "firebase_admin"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a configured logger instance for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)
