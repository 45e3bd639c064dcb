import json
import logging
from typing import Any, List

logger = logging.getLogger(__name__)

# What a JSON column ends up holding when an object was stringified instead of
# JSON-encoded on its way into the store.
MALFORMED_OBJECT_SENTINEL = "[object Object]"


def parse_json_field(value: Any) -> List[Any]:
    """
    Decode a JSON-valued column into a list.

    The store may hand back a native list, JSON text, or garbage left behind
    by older clients. Anything that is not a list after decoding is replaced
    by an empty list.

    Args:
        value: Raw column value

    Returns:
        Decoded list, or [] when the value is missing or malformed
    """
    if value is None:
        return []

    if isinstance(value, str):
        if value == "" or value == MALFORMED_OBJECT_SENTINEL:
            if value:
                logger.warning(f"Discarding malformed JSON value: {value!r}")
            return []
        try:
            value = json.loads(value)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Failed to parse JSON value {value[:80]!r}: {str(e)}")
            return []

    if isinstance(value, tuple):
        value = list(value)

    if not isinstance(value, list):
        logger.warning(f"Expected a JSON array, got {type(value).__name__}; using []")
        return []

    return value
