"""Compatibility shim for Testpad's inconsistent response envelopes.

Creation endpoints return the new id bare (``{"id": 1}``) or nested under
``script``/``folder``/``data``; list endpoints return a bare array or wrap it
under a named key. Each shape is an extraction strategy; strategies are tried
in order and the first match wins.
"""

from typing import Any, Callable, Iterable, Optional

IdStrategy = Callable[[Any], Optional[Any]]


def bare_id(payload: Any) -> Optional[Any]:
    if isinstance(payload, dict):
        return payload.get("id")
    if isinstance(payload, (int, str)) and not isinstance(payload, bool):
        return payload
    return None


def nested_id(key: str) -> IdStrategy:
    """Strategy for ``{key: {"id": ...}}``."""

    def extract(payload: Any) -> Optional[Any]:
        if isinstance(payload, dict) and isinstance(payload.get(key), dict):
            return payload[key].get("id")
        return None

    extract.__name__ = f"nested_id_{key}"
    return extract


SCRIPT_ID_STRATEGIES: tuple[IdStrategy, ...] = (bare_id, nested_id("script"), nested_id("data"))
FOLDER_ID_STRATEGIES: tuple[IdStrategy, ...] = (bare_id, nested_id("folder"), nested_id("data"))


def extract_id(payload: Any, strategies: Iterable[IdStrategy]) -> Optional[str]:
    """Return the first id any strategy finds, as a string, or None."""
    for strategy in strategies:
        value = strategy(payload)
        if value is not None and value != "":
            return str(value)
    return None


def unwrap_list(payload: Any, key: str) -> Optional[list]:
    """Return ``payload`` if it is a list, or ``payload[key]`` if that is one."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get(key), list):
        return payload[key]
    return None


def unwrap_object(payload: Any, key: str) -> Any:
    """Return ``payload[key]`` if the object is wrapped under ``key``."""
    if isinstance(payload, dict) and isinstance(payload.get(key), dict):
        return payload[key]
    return payload
