"""Logging configuration for the pronunciation service."""

import logging
import sys
from typing import Optional


def setup_logging(level: str = "INFO", name: Optional[str] = None) -> logging.Logger:
	"""
	Set up logging configuration.

	Args:
		level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
		name: Logger name (defaults to root logger)

	Returns:
		Configured logger instance
	"""
	log_level = getattr(logging, level.upper(), logging.INFO)

	formatter = logging.Formatter(
		"%(asctime)s - %(name)s - %(levelname)s - %(message)s",
		datefmt="%Y-%m-%d %H:%M:%S",
	)

	handler = logging.StreamHandler(sys.stdout)
	handler.setFormatter(formatter)
	handler.setLevel(log_level)

	logger = logging.getLogger(name)
	logger.setLevel(log_level)

	# Avoid duplicate handlers on reload
	if not logger.handlers:
		logger.addHandler(handler)

	silence_noisy_loggers()
	return logger


def silence_noisy_loggers() -> None:
	"""Reduce log noise from third-party libraries."""
	for logger_name in ("urllib3", "httpx", "httpcore", "google", "grpc"):
		logging.getLogger(logger_name).setLevel(logging.WARNING)
