"""
Append-only line log used for raw samples and tier rollups.
Each line is "[YYYY-MM-DD HH:MM:SS] {json}" and every append is fsynced.
"""

import fcntl
import json
import os
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from .logger import get_logger


PathLike = Union[str, Path]

_PREFIXED_LINE = re.compile(r'^\[[^\]]*\]\s+(.+)$')
# Only the leading key counts; format_line always writes timestamp first
_LEADING_TIMESTAMP = re.compile(r'^(?:\[[^\]]*\]\s+)?\{"timestamp"\s*:\s*(-?\d+(?:\.\d+)?)[,}]')


def format_line(entry: dict, clock: Callable[[], float] = time.time) -> str:
    """Serialize one entry as a log line (newline included), timestamp key first."""
    ts = entry.get('timestamp')
    if 'timestamp' in entry:
        entry = {'timestamp': ts, **entry}
    if not isinstance(ts, (int, float)) or isinstance(ts, bool):
        ts = clock()
    prefix = datetime.fromtimestamp(ts).strftime('%Y-%m-%d %H:%M:%S')
    return f"[{prefix}] {json.dumps(entry, ensure_ascii=False)}\n"


def parse_line(line: str) -> Optional[dict]:
    """
    Parse a stored line back into an entry.

    Accepts both the prefixed form and bare JSON lines. Returns None for
    anything that is not a JSON object carrying a numeric timestamp.
    """
    line = line.strip()
    if not line:
        return None

    if not line.startswith('{'):
        match = _PREFIXED_LINE.match(line)
        if not match:
            return None
        line = match.group(1).strip()

    try:
        entry = json.loads(line)
    except ValueError:
        return None

    if not isinstance(entry, dict):
        return None
    ts = entry.get('timestamp')
    if not isinstance(ts, (int, float)) or isinstance(ts, bool):
        return None
    return entry


def line_timestamp(line: str) -> Optional[float]:
    """
    Leading timestamp of a stored line without a full JSON decode.

    None when the line does not start with a timestamp key; such lines need
    a full parse.
    """
    match = _LEADING_TIMESTAMP.match(line)
    if not match:
        return None
    return float(match.group(1))


class MetricsStorage:
    """Batched writes, time-filtered reads and retention rotation for line logs."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.logger = get_logger("MetricsStorage")

    def write_batch(self, path: PathLike, entries: Iterable[dict]) -> bool:
        """
        Append entries to the log, one line each, under an exclusive lock.

        Returns False (and logs) when the file cannot be opened or locked.
        An empty batch is a successful no-op and never creates the file.
        """
        entries = list(entries)
        if not entries:
            return True

        path = Path(path)
        payload = ''.join(format_line(entry, self.clock) for entry in entries)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            while True:
                with open(path, 'a', encoding='utf-8') as f:
                    fcntl.flock(f, fcntl.LOCK_EX)
                    try:
                        # A rotation may have swapped the file while we waited for the lock
                        if not self._is_current(f, path):
                            continue
                        f.write(payload)
                        # Force sync to disk (durability guarantee)
                        f.flush()
                        os.fsync(f.fileno())
                        return True
                    finally:
                        fcntl.flock(f, fcntl.LOCK_UN)
        except OSError as e:
            self.logger.error(f"Unable to append {len(entries)} entries to {path}: {e}")
            return False

    @staticmethod
    def _is_current(f, path: Path) -> bool:
        try:
            return os.fstat(f.fileno()).st_ino == os.stat(path).st_ino
        except FileNotFoundError:
            return False

    def read(self, path: PathLike, since_timestamp: float = 0,
             filter_fn: Optional[Callable[[dict], bool]] = None) -> List[dict]:
        """
        Read entries newer than since_timestamp, sorted by timestamp.

        Malformed lines are skipped. A missing or unreadable file yields [].
        """
        path = Path(path)
        if not path.exists():
            return []

        entries = []
        try:
            with open(path, 'r', encoding='utf-8', errors='replace') as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                try:
                    for line in f:
                        # Cheap pre-filter before decoding old lines
                        if since_timestamp > 0:
                            ts = line_timestamp(line)
                            if ts is not None and ts <= since_timestamp:
                                continue

                        entry = parse_line(line)
                        if entry is None or entry['timestamp'] <= since_timestamp:
                            continue
                        if filter_fn is not None and not filter_fn(entry):
                            continue
                        entries.append(entry)
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)
        except OSError as e:
            self.logger.error(f"Unable to read {path}: {e}")
            return []

        entries.sort(key=lambda e: e['timestamp'])
        return entries

    def rotate(self, path: PathLike, retention_seconds: float,
               backup_suffix: str = '.old') -> Dict[str, int]:
        """
        Drop entries older than the retention window.

        The previous file becomes path+backup_suffix and the kept lines are
        written back in place. Nothing is touched when no entry has expired.
        """
        result = {'purged': 0, 'kept': 0}
        path = Path(path)
        if not path.exists():
            return result

        cutoff = self.clock() - retention_seconds
        backup_path = Path(f"{path}{backup_suffix}")
        temp_path = Path(f"{path}.tmp")

        try:
            with open(path, 'r+', encoding='utf-8', errors='replace') as f:
                # Exclusive lock so appends pause during rotation
                fcntl.flock(f, fcntl.LOCK_EX)
                try:
                    kept_lines = []
                    purged = 0
                    for line in f:
                        entry = parse_line(line)
                        if entry is None:
                            continue
                        if entry['timestamp'] >= cutoff:
                            kept_lines.append(line if line.endswith('\n') else line + '\n')
                        else:
                            purged += 1

                    result['kept'] = len(kept_lines)
                    if purged == 0:
                        return result

                    with open(temp_path, 'w', encoding='utf-8') as tmp:
                        tmp.writelines(kept_lines)
                        tmp.flush()
                        os.fsync(tmp.fileno())

                    os.replace(path, backup_path)
                    os.replace(temp_path, path)
                    result['purged'] = purged
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)
        except OSError as e:
            self.logger.error(f"Rotation of {path} failed: {e}")
            if temp_path.exists():
                temp_path.unlink()
            return {'purged': 0, 'kept': result['kept']}

        self.logger.info(f"Metrics purge ({path}): removed {result['purged']} old entries, "
                         f"kept {result['kept']} recent entries")
        return result
