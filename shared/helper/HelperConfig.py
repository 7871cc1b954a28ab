"""Central configuration helper for the compass RAG engine."""

import logging
import os
from typing import Any

_TRUTHY = ("true", "1", "yes", "on")


class HelperConfig:
    """Reads all settings from environment variables.

    Keys are case-insensitive and an empty variable counts as unset. Every getter
    raises ValueError when the variable is unset and no default is given.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _read_raw(self, key: str, default: Any) -> tuple[str, str | None]:
        key = key.upper()
        raw = (os.getenv(key) or "").strip() or None
        if raw is None and default is None:
            raise ValueError(f"Environment variable '{key}' is not set.")
        return key, raw

    def get_string_val(self, key: str, default: str | None = None) -> str:
        _, raw = self._read_raw(key, default)
        return default if raw is None else raw

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read a number; values with a decimal point come back as float.

        Raises:
            ValueError: If unset without default, or not a number.
        """
        key, raw = self._read_raw(key, default)
        if raw is None:
            return default
        try:
            return float(raw) if "." in raw else int(raw)
        except ValueError:
            raise ValueError(f"Environment variable '{key}' is not a valid number: '{raw}'.")

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        _, raw = self._read_raw(key, default)
        return default if raw is None else raw.lower() in _TRUTHY

    def get_list_val(self, key: str, default: list[str] | None = None, separator: str = ",", element_type: type = str) -> list:
        """Read a list written as "[elem1,elem2,...]".

        Args:
            key (str): Environment variable name.
            default (list[str] | None): Fallback value if the variable is not set.
            separator (str): Delimiter between elements.
            element_type (type): Type each element is cast to.

        Raises:
            ValueError: If unset without default, not bracketed, or an element cannot be cast.
        """
        key, raw = self._read_raw(key, default)
        if raw is None:
            return default
        if not (raw.startswith("[") and raw.endswith("]")):
            raise ValueError(f"Environment variable '{key}' must look like '[elem1{separator}elem2]'. Got: '{raw}'")
        try:
            return [element_type(item.strip()) for item in raw[1:-1].split(separator) if item.strip()]
        except ValueError as e:
            raise ValueError(f"Environment variable '{key}' holds an element that is not {element_type.__name__}: {e}")

    def get_path_val(self, key: str, default: str) -> str:
        """Read a filesystem path. Relative paths are resolved against ROOT_DIR (or the working directory)."""
        path = self.get_string_val(key, default=default)
        if os.path.isabs(path):
            return path
        return os.path.abspath(os.path.join(os.getenv("ROOT_DIR") or os.getcwd(), path))

    def get_logger(self) -> logging.Logger:
        return self._logger
