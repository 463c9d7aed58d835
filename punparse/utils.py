import fnmatch
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qsl

from punparse.config import get_logger
from punparse.models import IngestionSetupError

logger = get_logger(__name__)

EXCLUDE_PATTERNS = {'.*', '__*', '*.tmp', '*.temp', '~*', '*.bak', '*.backup', 'Thumbs.db', '.DS_Store'}


def should_exclude_file(file_path: Path) -> bool:
    return any(fnmatch.fnmatch(file_path.name, pattern) for pattern in EXCLUDE_PATTERNS)


def discover_files(root_path: Path) -> list[Path]:
    """Collect every export file below root_path, subdirectories included.

    Files are sorted by size (largest first) so long topic pages start while
    workers are free instead of trailing at the end of the run.

    Raises:
        IngestionSetupError: If root_path is not a directory that can be listed
    """
    if not root_path.is_dir():
        raise IngestionSetupError(f"Not a directory: {root_path}")
    try:
        next(root_path.iterdir(), None)
    except OSError as e:
        raise IngestionSetupError(f"Couldn't list {root_path}: {e}") from e

    sized = []
    for f in root_path.rglob("*"):
        try:
            if f.is_file() and not should_exclude_file(f):
                sized.append((f.stat().st_size, f))
        except OSError:
            # Skip inaccessible files (permission denied, broken symlinks)
            logger.debug(f"Skipping inaccessible file {f}")
            continue
    sized.sort(key=lambda item: item[0], reverse=True)
    return [f for _, f in sized]


def get_query_value(url: str, field: str) -> Optional[str]:
    """Get the value of a field in a URL query string.

    Works on full URLs and on bare query strings: looking for "id" in
    "viewtopic.php?id=37&p=2#p5" or in "id=37&p=2" both return "37".
    """
    query = url.split("#", 1)[0]
    if "?" in query:
        query = query.split("?", 1)[1]
    for name, value in parse_qsl(query):
        if name == field:
            return value
    return None


def get_query_int(url: str, field: str) -> Optional[int]:
    value = get_query_value(url, field)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def parse_date(text: str, date_format: str) -> int:
    """Parse a board date to a Unix timestamp.

    Dates are taken as UTC; exports carry no time zone.

    Raises:
        ValueError: If text does not match date_format
    """
    parsed = datetime.strptime(" ".join(text.split()), date_format)
    return int(parsed.replace(tzinfo=timezone.utc).timestamp())
