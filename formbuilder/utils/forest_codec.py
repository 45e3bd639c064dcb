"""
Conversion between stored section forests and schema objects.

Reading is deliberately forgiving: a forest may arrive as a native list, as
JSON text, or as the sentinel left by a double-encoding client, and a tab or
field may be damaged beyond validation. None of that fails a read; only the
damaged tab or field is dropped, with a warning.
"""
import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from formbuilder.schemas.form import FormField, Tab
from formbuilder.utils.json_utils import parse_json_field

logger = logging.getLogger(__name__)


def _decode_fields(raw_fields: Any, tab_position: int) -> Any:
    if not isinstance(raw_fields, list):
        return raw_fields

    fields = []
    for index, raw_field in enumerate(raw_fields):
        if isinstance(raw_field, FormField):
            fields.append(raw_field)
            continue
        try:
            fields.append(FormField.model_validate(raw_field))
        except ValidationError as e:
            logger.warning(f"Skipping malformed field {index} of tab {tab_position}: {str(e)}")
    return fields


def decode_forest(value: Any) -> List[Tab]:
    """
    Decode a stored section forest.

    Args:
        value: Raw column value (list, JSON text, None or malformed text)

    Returns:
        List of tabs; unparseable input yields []
    """
    tabs = []
    for index, raw_tab in enumerate(parse_json_field(value)):
        if isinstance(raw_tab, Tab):
            tabs.append(raw_tab)
            continue
        if not isinstance(raw_tab, dict):
            logger.warning(f"Skipping non-object tab at position {index}")
            continue
        if "fields" in raw_tab:
            raw_tab = {**raw_tab, "fields": _decode_fields(raw_tab["fields"], index)}
        try:
            tabs.append(Tab.model_validate(raw_tab))
        except ValidationError as e:
            logger.warning(f"Skipping malformed tab at position {index}: {str(e)}")
    return tabs


def encode_forest(forest: List[Tab]) -> List[Dict[str, Any]]:
    """JSON-compatible form of a forest, using the wire names"""
    return [tab.to_json() if isinstance(tab, Tab) else Tab.model_validate(tab).to_json() for tab in forest]
