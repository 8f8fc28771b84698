from __future__ import annotations
import logging
import time
from pathlib import Path


logger = logging.getLogger(__name__)


def purge_stale_temp_files(temp_dir: str, max_age_hours: int) -> int:
	"""Remove scratch files a killed worker never got to clean up.

	Live requests only hold their files for the duration of one codec call,
	so anything older than ``max_age_hours`` is orphaned.
	"""
	root = Path(temp_dir)
	if not root.is_dir():
		return 0
	threshold = time.time() - max_age_hours * 3600
	removed = 0
	for path in root.iterdir():
		try:
			if path.is_file() and path.stat().st_mtime < threshold:
				path.unlink()
				removed += 1
		except FileNotFoundError:
			# Another worker got there first
			continue
		except OSError as e:
			logger.warning("Failed to purge %s: %s", path.name, e)
	if removed:
		logger.info("Purged %s stale temp files from %s", removed, root)
	return removed
