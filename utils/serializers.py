# utils/serializers.py
import functools
import json
import logging
from typing import Any, Callable, Dict, Optional

from utils.error_handler import ConfigurationError

logger = logging.getLogger("kafka_gateway.serializers")

# Values that are already bytes go on the wire as they are, whichever serializer is configured

def _string_serializer(value: Any) -> Optional[bytes]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value
    return str(value).encode('utf-8')


def _json_serializer(value: Any) -> Optional[bytes]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value
    return json.dumps(value).encode('utf-8')


def _string_deserializer(data: Optional[bytes]) -> Optional[str]:
    if data is None:
        return None
    return data.decode('utf-8')


def _json_deserializer(data: Optional[bytes]) -> Any:
    if data is None:
        return None
    return json.loads(data.decode('utf-8'))


SERIALIZERS: Dict[str, Callable[[Any], Optional[bytes]]] = {
    "string": _string_serializer,
    "json": _json_serializer,
}

DESERIALIZERS: Dict[str, Callable[[Optional[bytes]], Any]] = {
    "string": _string_deserializer,
    "json": _json_deserializer,
}


def to_json_bytes(value: Any) -> bytes:
    """Encode a value as JSON regardless of the configured value serializer"""
    return _json_serializer(value)


def get_serializer(name: str) -> Callable[[Any], Optional[bytes]]:
    """Look up a serializer by its configured name ("string" or "json")"""
    try:
        return SERIALIZERS[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown serializer: {name}",
            details={"available": sorted(SERIALIZERS)}
        )


def get_deserializer(name: str) -> Callable[[Optional[bytes]], Any]:
    """Look up a deserializer by its configured name ("string" or "json")"""
    try:
        return DESERIALIZERS[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown deserializer: {name}",
            details={"available": sorted(DESERIALIZERS)}
        )


def lenient(deserializer: Callable[[Optional[bytes]], Any]) -> Callable[[Optional[bytes]], Any]:
    """
    Wrap a deserializer so that a record it cannot decode is logged and
    handed on as raw bytes. kafka-python raises deserializer errors out of
    consumer iteration, which would otherwise stop on that record every time.
    """
    @functools.wraps(deserializer)
    def wrapper(data: Optional[bytes]) -> Any:
        try:
            return deserializer(data)
        except ValueError as e:
            logger.warning(f"Could not deserialize record, keeping raw bytes: {str(e)}")
            return data

    return wrapper
