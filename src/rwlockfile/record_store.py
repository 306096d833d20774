"""Load and persist lock records.

Records are JSON documents stored at ``<base>.lock``. A missing file is an
empty record, and an empty record is stored as a missing file, so lock paths
that nobody holds leave nothing behind on disk.

Load policy: any failure other than "file missing" (unreadable file, invalid
JSON, wrong shape) is logged and treated as an empty record. A corrupt record
would otherwise wedge every future lock attempt on the path.

Callers must hold the exclusive guard for the record while loading, mutating
and saving it.
"""

import asyncio
import json
import logging
import os
from pathlib import Path

from rwlockfile.errors import RecordCorruptError
from rwlockfile.models import LockRecord

logger = logging.getLogger(__name__)

__all__ = ["load_record", "load_record_async", "save_record", "save_record_async"]


def load_record(file_path: Path) -> LockRecord:
    """Read the record at file_path, returning an empty record if absent or unreadable."""
    try:
        with open(file_path, encoding="utf-8") as f:
            data = json.load(f)
        return LockRecord.from_dict(data)
    except FileNotFoundError:
        return LockRecord()
    except (OSError, ValueError, RecordCorruptError) as e:
        # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
        logger.warning(f"Ignoring unreadable lock record {file_path}: {e}")
        return LockRecord()


def save_record(file_path: Path, record: LockRecord) -> None:
    """Persist record to file_path, deleting the file when the record is empty.

    The document is written to a temporary file in the same directory and
    moved into place, so readers never observe a partial write.
    """
    if record.is_empty:
        file_path.unlink(missing_ok=True)
        return

    file_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = file_path.with_name(f"{file_path.name}.{os.getpid()}.tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(record.to_dict(), f, indent=2)
            f.write("\n")
        temp_path.replace(file_path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise


async def load_record_async(file_path: Path) -> LockRecord:
    return await asyncio.to_thread(load_record, file_path)


async def save_record_async(file_path: Path, record: LockRecord) -> None:
    await asyncio.to_thread(save_record, file_path, record)
