"""
Key Builder Module

Builds colon-separated cache keys with a namespace and a schema version.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class KeyBuilder:
    """Utility for building standardized cache keys."""

    @staticmethod
    def build(*parts: Any, namespace: Optional[str] = None,
              version: Optional[str] = None) -> str:
        """
        Build a cache key from parts.

        Scalars are rendered as text, containers are replaced by a short
        hash of their canonical JSON so that equal arguments give equal keys.

        Args:
            *parts: Parts of the key
            namespace: Optional leading namespace
            version: Optional trailing version tag

        Returns:
            A colon-separated key string
        """
        processed_parts = []
        if namespace:
            processed_parts.append(str(namespace))

        for part in parts:
            processed_parts.append(KeyBuilder._render(part))

        if version:
            processed_parts.append(f"v{version}")

        return ":".join(processed_parts)

    @staticmethod
    def _render(part: Any) -> str:
        if part is None:
            return "null"
        if isinstance(part, Enum):
            return str(part.value)
        if isinstance(part, (datetime, date)):
            return part.isoformat()
        if isinstance(part, (int, float, bool, str)):
            return str(part)
        if isinstance(part, (dict, list, tuple, set)):
            payload = sorted(part) if isinstance(part, set) else part
            digest = hashlib.md5(json.dumps(payload, sort_keys=True, default=str).encode()).hexdigest()
            return digest[:10]
        return f"{part.__class__.__name__}_{part}"
