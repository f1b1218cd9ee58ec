"""
Logging configuration for the examiner service.
"""
from __future__ import annotations

import logging

from .settings import settings


def setup_logging(level: str | None = None) -> None:
	"""
	Configure the root logger once for the whole process.

	Args:
		level: Level name such as "DEBUG"; defaults to the LOG_LEVEL setting
	"""
	resolved = (level or settings.log_level or "INFO").upper()
	root_logger = logging.getLogger()
	root_logger.handlers.clear()

	console_handler = logging.StreamHandler()
	console_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s"))
	root_logger.addHandler(console_handler)
	root_logger.setLevel(getattr(logging, resolved, logging.INFO))

	# Provider SDKs are chatty at INFO
	logging.getLogger("httpx").setLevel(logging.WARNING)
	logging.getLogger("passlib").setLevel(logging.ERROR)
