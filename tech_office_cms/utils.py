# utils.py - Utility functions for the office case manager
import re
import logging
from typing import Optional, Tuple
from datetime import datetime, timezone

from .errors import PathTraversalError

logger = logging.getLogger(__name__)

INVALID_NAME_CHARS = r'[<>:"/\\|?*\x00-\x1f]'
MAX_FOLDER_NAME_LENGTH = 80


def require_fields(data: dict, *fields: str) -> Tuple[bool, str]:
    """
    Check that every named field is present and non-blank

    Args:
        data: Request payload
        fields: Names of required fields

    Returns:
        Tuple of (is_valid : bool, error_message: str)
    """
    missing = [field for field in fields if not str(data.get(field) or '').strip()]
    if missing:
        return False, f"{' and '.join(missing)} required"
    return True, ""


def parse_iso_instant(value: str) -> Optional[datetime]:
    """
    Parse an ISO-8601 instant as sent by the browser (``...Z`` suffix allowed)

    Returns:
        Aware datetime, or None if the value is not a valid instant
    """
    if not value:
        return None
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def validate_task_input(title: str, start_time: str, end_time: str) -> Tuple[bool, str]:
    """
    Validate task fields

    Returns:
        Tuple of (is_valid : bool, error_message: str)
    """
    if not title or not start_time or not end_time:
        return False, "title, start_time, end_time required"

    start = parse_iso_instant(start_time)
    end = parse_iso_instant(end_time)
    if start is None:
        return False, "start_time must be an ISO-8601 date/time"
    if end is None:
        return False, "end_time must be an ISO-8601 date/time"
    if end < start:
        return False, "end_time cannot be before start_time"

    return True, ""


def sanitize_folder_name(name: str) -> str:
    """
    Make a value safe to use as a single folder or file name on the share

    Strips characters Windows/SMB refuses, collapses whitespace and caps the
    length. May return an empty string.
    """
    sanitized = re.sub(INVALID_NAME_CHARS, '', str(name or '').strip())
    sanitized = re.sub(r'\s+', ' ', sanitized)
    return sanitized[:MAX_FOLDER_NAME_LENGTH]


def default_case_folder(case_number: str, client_name: str) -> str:
    """Folder name for a case, e.g. ``C-100 - Acme Ltd``"""
    return f"{sanitize_folder_name(case_number)} - {sanitize_folder_name(client_name)}"


def join_share_path(*parts: str) -> str:
    """
    Join share-relative path segments with backslashes, the separator SMB uses
    """
    joined = '\\'.join(part for part in parts if part)
    joined = re.sub(r'[\\/]+', r'\\', joined)
    return joined.lstrip('\\')


def ensure_inside_base(relative_path: str) -> str:
    """
    Normalise a share-relative path and reject parent-directory segments

    Raises:
        PathTraversalError: if any segment is ``..``
    """
    cleaned = join_share_path(str(relative_path or ''))
    if any(segment == '..' for segment in cleaned.split('\\')):
        raise PathTraversalError("Invalid path")
    return cleaned


def split_share_path(relative_path: str):
    return [segment for segment in relative_path.split('\\') if segment]


def normalize_issue_date(value) -> str:
    """
    Normalise a Diavgeia issue date to ``YYYY-MM-DDTHH:MM:SS`` (UTC)

    The API sends epoch milliseconds; ISO strings are kept as they are so
    string comparison still orders them.
    """
    if value is None or value == '':
        return ''
    if isinstance(value, bool):
        return ''
    if isinstance(value, (int, float)):
        moment = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        return moment.strftime('%Y-%m-%dT%H:%M:%S')
    text = str(value).strip()
    if text.isdigit():
        return normalize_issue_date(int(text))
    return text


def inclusive_upper_bound(to_date: str) -> str:
    """A date-only upper bound covers the whole day"""
    if re.fullmatch(r'\d{4}-\d{2}-\d{2}', to_date):
        return f"{to_date}T23:59:59"
    return to_date


def parse_flag(value) -> bool:
    """Interpret ``refresh=true`` style query flags"""
    return str(value or '').strip().lower() in ('1', 'true', 'yes', 'on')


def parse_page(value, default: int = 0) -> int:
    try:
        page = int(value)
    except (TypeError, ValueError):
        return default
    return max(page, 0)


def parse_page_size(value, default: int = 20, maximum: int = 100) -> int:
    try:
        size = int(value)
    except (TypeError, ValueError):
        return default
    if size <= 0:
        return default
    return min(size, maximum)


def log_registry_call(operation: str, target: str, success: bool, error_message: str = ""):
    """
    Log calls to the Diavgeia registry for monitoring and debugging

    Args:
        operation: ``search`` or ``get``
        target: ADA or a short description of the search
        success: Whether the call succeeded
        error_message: Error message if failed
    """
    log_message = f"Diavgeia {operation}: {target} - {'SUCCESS' if success else 'FAILED'}"

    if not success and error_message:
        log_message += f" - {error_message}"

    if success:
        logger.info(log_message)
    else:
        logger.warning(log_message)
