# utils.py
"""
Utility functions for the simulation framework.

This module provides helper functions, such as logging setup and config
loading, that are used across the application but do not belong to the
flocking pipeline itself.
"""
import logging
import logging.handlers
import json
import os
from typing import Dict, Any

# --- Data Contracts ---
#
# setup_logging(config: Dict[str, Any]) -> None:
#   - Inputs:
#     - config: A dictionary that may contain a "logging" key with
#       "level", "format", and "log_file" sub-keys. Missing keys fall
#       back to INFO, a timestamped format, and logs/boids.log.
#       A log_file of null disables the file handler.
#   - Outputs: None
#   - Side Effects: Configures the root Python logger. Creates the log
#     directory if it doesn't exist. Sets up a console handler and a
#     rotating file handler.
#
# load_config(path: str) -> Dict[str, Any]:
#   - Outputs: the parsed JSON document with the "simulation_parameters",
#     "run_control", and "logging" sections always present (possibly empty).
#   - Errors: FileNotFoundError, json.JSONDecodeError, and ValueError for a
#     document that is not a JSON object are logged and re-raised.

CONFIG_SECTIONS = ('simulation_parameters', 'run_control', 'logging')


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Configures the logging system from a configuration dictionary.

    Sets up logging to the console and, unless disabled, a rotating file.
    """
    log_config = config.get('logging', {})
    log_level = log_config.get('level', 'INFO').upper()
    log_format = log_config.get('format', '%(asctime)s - %(levelname)s - %(message)s')
    log_file_path = log_config.get('log_file', 'logs/boids.log')

    logger = logging.getLogger()
    logger.setLevel(log_level)

    # Clear existing handlers to avoid duplication
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file_path:
        log_dir = os.path.dirname(log_file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        # Rotates when the log reaches 1MB, keeps 5 backup logs.
        file_handler = logging.handlers.RotatingFileHandler(
            log_file_path, maxBytes=1024*1024, backupCount=5
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logging.info("Logging system initialized.")
    logging.debug(f"Log level set to {log_level}.")
    logging.debug(f"Log file path: {log_file_path or 'disabled'}")


def load_config(path: str) -> Dict[str, Any]:
    """Loads a JSON configuration file."""
    logging.info(f"Loading configuration from {path}...")
    try:
        with open(path, 'r') as f:
            config = json.load(f)
    except FileNotFoundError:
        logging.error(f"Configuration file not found at {path}.")
        raise
    except json.JSONDecodeError:
        logging.error(f"Error decoding JSON from {path}.")
        raise

    if not isinstance(config, dict):
        msg = f"Configuration in {path} must be a JSON object, got {type(config).__name__}."
        logging.error(msg)
        raise ValueError(msg)

    for section in CONFIG_SECTIONS:
        config.setdefault(section, {})
    logging.info("Configuration loaded successfully.")
    return config
