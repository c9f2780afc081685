"""
Utility functions for the crpt SDK.

This module provides internal helper functions used throughout the client.
These functions are not part of the public API and may change without notice.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def save_json_file(data: dict[str, Any], file_path: Path) -> None:
    """
    Save data as JSON to the specified file path.

    Writes a Python dict to disk as formatted JSON with UTF-8 encoding.
    Non-serializable values (dates, enums) are converted to strings using the default=str option.

    Args:
        data: Dictionary to serialize as JSON.
        file_path: Destination path for the JSON file.

    Raises:
        RuntimeError: If the file cannot be written (wraps the original exception).

    Example:
        >>> save_json_file({"doc_id": "42"}, Path("output/42-request.json"))
    """
    try:
        with file_path.open(mode="w", encoding="utf-8") as file:
            json.dump(
                data, file,
                indent=4, ensure_ascii=False, default=str
            )
    except Exception as e:
        logger.error(
            f"❌ Error while writing JSON file to disk ({file_path.name}): {e}",
            exc_info=logger.isEnabledFor(logging.DEBUG)
        )
        raise RuntimeError(f"It's not possible to save JSON file in the disk ({file_path.name}): {e}") from e


def safe_file_name(tracking_id: str) -> str:
    """Replaces characters that are unsafe in file names with underscores."""
    return re.sub(r'[^\w.$-]', '_', tracking_id)


def is_timeout_exception(exc: BaseException) -> bool:
    """
    Determine if an exception indicates a timeout condition.

    Args:
        exc: The exception to check.

    Returns:
        True if the exception indicates a timeout, False otherwise.

    Supported timeout exceptions:
        - requests.Timeout: HTTP request timeout
        - TimeoutError: Python built-in
        - TokenAcquisitionTimeoutError: Rate gate wait timeout
    """
    # Lazy imports to avoid circular dependencies
    import requests

    from crpt._rate_limit import TokenAcquisitionTimeoutError

    return isinstance(exc, (requests.Timeout, TokenAcquisitionTimeoutError, TimeoutError))
