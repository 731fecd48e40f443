import os
from typing import Any


def get_system_env_value(key: str, default: Any = None) -> Any:
    """Return an environment variable value.

    Tests monkeypatch os.environ to drive configuration, so this always
    reads from the current process environment.
    """
    return os.environ.get(key, default)


def is_truthy(value: Any) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
