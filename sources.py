#!/usr/bin/env python3
"""
Source administration: validation of admin-submitted sources and loading of
the ``sources:`` mapping from ``feeds.yaml``.

Validation is batch-atomic. Either every submitted source is acceptable and
the normalized list is returned, or ValidationError is raised and nothing is
written.
"""

import re
from typing import Any, Dict, List, Optional

from config import config, get_logger
from errors import ValidationError
from utils import truncate_string, validate_url

# Module-specific logger
logger = get_logger("sources")

SOURCE_ID_RE = re.compile(r"^[a-zA-Z0-9-]+$")

MAX_ID_LENGTH = 100
MAX_NAME_LENGTH = 200
MAX_CATEGORY_LENGTH = 50

REQUIRED_FIELDS = ("id", "name", "url", "homepage", "category")

SOURCES_FILE_SIZE_LIMIT = 2 * 1024 * 1024


def _require_string(entry: Dict[str, Any], field: str, index: int) -> str:
    value = entry.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Source {index}: '{field}' must be a non-empty string")
    return value.strip()


def validate_source(entry: Any, index: int = 0) -> Dict[str, Any]:
    """Validate and normalize a single source object."""
    if not isinstance(entry, dict):
        raise ValidationError(f"Source {index}: expected an object")

    values = {field: _require_string(entry, field, index) for field in REQUIRED_FIELDS}

    if not validate_url(values["url"]):
        raise ValidationError(f"Source {index}: 'url' must be an http(s) URL")
    if not validate_url(values["homepage"]):
        raise ValidationError(f"Source {index}: 'homepage' must be an http(s) URL")
    if not SOURCE_ID_RE.match(values["id"]):
        raise ValidationError(f"Source {index}: 'id' may only contain letters, digits and hyphens")

    locale = entry.get("locale")
    if not isinstance(locale, str) or not locale.strip():
        locale = config.DEFAULT_LOCALE

    logo = entry.get("logo")
    if not (isinstance(logo, str) and validate_url(logo.strip())):
        logo = None

    return {
        "id": truncate_string(values["id"], MAX_ID_LENGTH),
        "name": truncate_string(values["name"], MAX_NAME_LENGTH),
        "url": values["url"],
        "homepage": values["homepage"],
        "locale": locale.strip(),
        "category": truncate_string(values["category"], MAX_CATEGORY_LENGTH),
        "logo": logo.strip() if logo else None,
    }


def validate_sources(payload: Any) -> List[Dict[str, Any]]:
    """Validate an admin payload (one source object or a list of them).

    Raises:
        ValidationError: for a non-object body, too many sources, or any
            invalid entry. No partial result is ever returned.
    """
    if isinstance(payload, dict):
        entries = [payload]
    elif isinstance(payload, list):
        entries = payload
    else:
        raise ValidationError("Request body must be a source object or a list of sources")

    if not entries:
        raise ValidationError("No sources provided")
    if len(entries) > config.MAX_SOURCES_PER_REQUEST:
        raise ValidationError(f"Too many sources: at most {config.MAX_SOURCES_PER_REQUEST} per request")

    return [validate_source(entry, index) for index, entry in enumerate(entries)]


def load_sources_file(file_path: Optional[str] = None) -> List[Dict[str, Any]]:
    """Read the ``sources:`` mapping of a YAML file into validated sources.

    Keys of the mapping are source ids. Entries that fail validation are
    logged and skipped so one typo does not block the rest of the file.
    """
    file_path = file_path or config.FEEDS_CONFIG_PATH
    data = config._safe_read_yaml(file_path, SOURCES_FILE_SIZE_LIMIT, 'sources')
    if not isinstance(data, dict):
        return []

    mapping = data.get("sources")
    if not isinstance(mapping, dict):
        logger.warning(f"No 'sources' mapping found in {file_path}")
        return []

    sources: List[Dict[str, Any]] = []
    for index, (source_id, entry) in enumerate(mapping.items()):
        if not isinstance(entry, dict):
            logger.warning(f"Skipping source {source_id}: expected a mapping")
            continue
        candidate = dict(entry)
        candidate["id"] = str(source_id)
        try:
            sources.append(validate_source(candidate, index))
        except ValidationError as e:
            logger.warning(f"Skipping source {source_id} from {file_path}: {e}")

    logger.info(f"Loaded {len(sources)} sources from {file_path}")
    return sources
