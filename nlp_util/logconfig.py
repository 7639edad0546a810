"""Define the logger factory shared by the nlp packages."""

import logging
import os

# Environment variable overriding the default level of every created logger
LOG_LEVEL_ENV_VAR = "TRAJOPT_NLP_LOG_LEVEL"


class ColoredLevelFormatter(logging.Formatter):
    """Formatter that colors the message by log level for console output."""

    # Define log level colors (ANSI escape codes)
    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35;1m",  # Bright Magenta
    }
    RESET = "\033[0m"  # Reset color

    def format(self, record):
        # Color a copy of the formatted line so file handlers stay plain
        formatted = super().format(record)
        levelname_color = self.COLORS.get(record.levelno)
        if levelname_color is None:
            return formatted
        return f"{levelname_color}{formatted}{self.RESET}"


def get_default_level() -> int:
    """Resolve the default log level, honoring the environment override."""
    level_name = os.environ.get(LOG_LEVEL_ENV_VAR, "INFO").upper()
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO


def create_logger(name, level=None, log_file=None):
    """
    Create a logger with colored console output for each log level.

    Args:
        name (str): Name of the logger, typically `__name__`.
        level (int, optional): Logging level, defaults to TRAJOPT_NLP_LOG_LEVEL or INFO.
        log_file (str, optional): File to log messages (in addition to console).

    Returns:
        logging.Logger: Configured logger instance.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level if level is not None else get_default_level())
    logger.propagate = False

    # Handlers are attached once per logger name
    if logger.handlers:
        return logger

    # Define custom log format
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(ColoredLevelFormatter(log_format))
    logger.addHandler(console_handler)

    # Create file handler (if log_file is provided)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(log_format))  # No colors for file
        logger.addHandler(file_handler)

    return logger
