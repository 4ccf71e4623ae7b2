"""Raw content key generation for ClearKey packaging"""

import json
import logging
import secrets
from pathlib import Path

from .models import ClearKey

logger = logging.getLogger(__name__)

CLEARKEY_FILENAME = "clearkey.json"
KEY_BYTES = 16


def generate_clear_key() -> ClearKey:
    """Generate a fresh key id and key from the OS CSPRNG"""
    return ClearKey(
        key_id=secrets.token_hex(KEY_BYTES),
        key=secrets.token_hex(KEY_BYTES),
    )


def write_clear_key(clear_key: ClearKey, target_dir: Path) -> Path:
    """
    Persist a key as clearkey.json for the license/key server.

    Args:
        clear_key: Key to write
        target_dir: Encrypted output directory of the job

    Returns:
        Path to the written side-car file
    """
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    key_file = target_dir / CLEARKEY_FILENAME
    key_file.write_text(json.dumps(clear_key.to_dict(), indent=2), encoding="utf-8")
    logger.info("ClearKey saved to %s (key id %s)", key_file, clear_key.key_id)
    return key_file
