"""
Document Serialization

Turns structured documents into canonical JSON payloads: sorted keys,
compact separators, UTF-8, and no fields whose value is None.
"""

import dataclasses
import json
import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, Protocol
from uuid import UUID

from pydantic import BaseModel

from registry_gateway.errors import SerializationError

logger = logging.getLogger(__name__)


class DocumentSerializer(Protocol):
    def serialize(self, document: Any) -> bytes:
        ...


class JsonSerializer:
    """Canonical JSON serializer for registry documents."""

    def __init__(self, drop_none: bool = True, ensure_ascii: bool = False):
        self.drop_none = drop_none
        self.ensure_ascii = ensure_ascii

    def serialize(self, document: Any) -> bytes:
        """
        Serialize a document to JSON bytes.

        Args:
            document: Mapping, dataclass instance, pydantic model or list of those

        Returns:
            UTF-8 encoded JSON payload

        Raises:
            SerializationError: If the document contains unsupported values
        """
        try:
            data = self._to_primitive(document)
            text = json.dumps(
                data,
                sort_keys=True,
                separators=(",", ":"),
                ensure_ascii=self.ensure_ascii,
                allow_nan=False,
                default=self._default,
            )
        except (TypeError, ValueError, RecursionError) as e:
            logger.error(f"Failed to serialize document of type {type(document).__name__}: {e}")
            raise SerializationError(f"Cannot serialize document: {e}") from e

        return text.encode("utf-8")

    def _to_primitive(self, value: Any) -> Any:
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json", exclude_none=self.drop_none)
        elif dataclasses.is_dataclass(value) and not isinstance(value, type):
            value = dataclasses.asdict(value)

        if isinstance(value, Mapping):
            result = {}
            for key, item in value.items():
                if self.drop_none and item is None:
                    continue
                if not isinstance(key, str):
                    raise TypeError(f"Document keys must be strings, got {type(key).__name__}")
                result[key] = self._to_primitive(item)
            return result

        if isinstance(value, (list, tuple)):
            return [self._to_primitive(item) for item in value]

        return value

    @staticmethod
    def _default(value: Any) -> Any:
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, UUID):
            return str(value)
        raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
