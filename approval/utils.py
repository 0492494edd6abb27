"""Small helpers shared by repositories and services."""
import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def dump_json(data: Optional[Dict[str, Any]]) -> Optional[str]:
    """Serialize an optional mapping for a Text column."""
    if data is None:
        return None
    return json.dumps(data, default=str)


def load_json(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse a Text column back into a mapping. Malformed JSON reads as None."""
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Ignoring malformed JSON column value: {raw[:100]}")
        return None


def format_score(value: float) -> str:
    """Render 84.0 as '84' and 84.5 as '84.5'."""
    return f"{value:g}"
