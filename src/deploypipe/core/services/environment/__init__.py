from .core import ABSENT, DEFAULTS, KNOWN_KEYS, Configuration, resolve

__all__ = [
    "ABSENT",
    "DEFAULTS",
    "KNOWN_KEYS",
    "Configuration",
    "resolve",
]
