"""
Device identifier: an opaque token generated once and persisted locally, so the
backend can tell which device last wrote a process.
"""

import logging
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


def get_device_id(path: str | Path) -> str:
    """Read the stored identifier, creating it on first use."""
    file_path = Path(path)
    if file_path.exists():
        stored = file_path.read_text(encoding="utf-8").strip()
        if stored:
            return stored

    device_id = f"dev-{uuid.uuid4().hex}"
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(device_id, encoding="utf-8")
        logger.info("Generated device id %s at %s", device_id, file_path)
    except OSError as e:
        logger.warning("Could not persist device id at %s: %s", file_path, e)
    return device_id
