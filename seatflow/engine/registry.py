"""
Name registry for orchestrations and activities.

The runtime keeps one registry per kind. History records only names, so
replay after a restart looks the callable up again by the same name.
"""

from typing import Any, Callable


class Registry:
    """
    Registry mapping names to callables.

    Usage:
        activities = Registry("activity")
        activities.register("get_random_seat", get_random_seat)

        fn = activities.get("get_random_seat")
    """

    def __init__(self, kind: str) -> None:
        """
        Initialize an empty registry.

        Args:
            kind: What is registered (used in error messages)
        """
        self._kind = kind
        self._entries: dict[str, Callable[..., Any]] = {}

    def register(self, name: str, fn: Callable[..., Any]) -> None:
        """
        Register a callable under a name.

        Raises:
            ValueError: If the name is empty or fn is not callable
        """
        if not name:
            raise ValueError(f"{self._kind} name must not be empty")
        if not callable(fn):
            raise ValueError(f"{self._kind} '{name}' is not callable")
        self._entries[name] = fn

    def get(self, name: str) -> Callable[..., Any]:
        """
        Get the callable registered under a name.

        Raises:
            KeyError: If nothing is registered under this name
        """
        if name not in self._entries:
            registered = sorted(self._entries)
            raise KeyError(
                f"No {self._kind} registered with name: {name}. "
                f"Registered: {registered}"
            )
        return self._entries[name]

    def has(self, name: str) -> bool:
        return name in self._entries

    def list_names(self) -> list[str]:
        return list(self._entries)
