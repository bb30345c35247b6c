from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterator, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveFloat,
    ValidationError,
    field_validator,
)

from deploypipe.exception import ConfigurationError
from deploypipe.core.config import DEFAULT_DEPLOY_BRANCHES


class _Absent:
    """
    Маркер отсутствующего значения. Не ошибка: стадии переходят на запасной вариант.
    """

    _instance: Optional["_Absent"] = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()

KNOWN_KEYS = (
    # секреты
    "render_api_key",
    "render_service_id",
    "apollo_key",
    "graph_id",
    # производные от запуска
    "run_id",
    "branch",
    "commit",
    "build_number",
    # статические
    "graph_variant",
    "subgraph_name",
    "routing_url",
    "schema_path",
    "resolvers_path",
    "deploy_branches",
    "build_timeout",
    "health_check_timeout",
    "render_clear_cache",
    "schema_check_fatal",
    "docker_image",
)

DEFAULTS: Dict[str, Any] = {
    "graph_variant": "current",
    "schema_path": "schema.graphql",
    "resolvers_path": "resolvers.js",
    "deploy_branches": DEFAULT_DEPLOY_BRANCHES,
    "build_timeout": 1800.0,
    "health_check_timeout": 60.0,
    "render_clear_cache": False,
    "schema_check_fatal": False,
    "docker_image": "subgraph",
}


@dataclass(frozen=True)
class Configuration(Mapping):
    """
    Итоговая конфигурация запуска: неизменяемый словарь ключ -> значение.
    Отсутствующие значения — ABSENT, а не None.
    """

    values: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __getitem__(self, key: str) -> Any:
        return self.values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Configuration):
            return dict(self.values) == dict(other.values)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(sorted((k, repr(v)) for k, v in self.values.items())))

    def has(self, key: str) -> bool:
        return self.values.get(key, ABSENT) is not ABSENT

    def get(self, key: str, default: Any = None) -> Any:
        value = self.values.get(key, ABSENT)
        return default if value is ABSENT else value

    @property
    def deploy_branches(self) -> FrozenSet[str]:
        return self.get("deploy_branches", frozenset())


def _supplied(value: Any) -> bool:
    if value is None or value is ABSENT:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _clean(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


class _CheckedValues(BaseModel):
    """
    Типизированная проверка значений, которые стадии используют как есть.
    Не заданные значения сюда не попадают и остаются ABSENT.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    graph_id: Optional[str] = Field(None, pattern=r"^[A-Za-z][A-Za-z0-9_-]{0,63}$")
    graph_variant: Optional[str] = Field(None, pattern=r"^[A-Za-z0-9_.-]{1,64}$")
    build_timeout: Optional[PositiveFloat] = None
    health_check_timeout: Optional[PositiveFloat] = None
    render_clear_cache: Optional[bool] = None
    schema_check_fatal: Optional[bool] = None
    deploy_branches: FrozenSet[str]

    @field_validator("deploy_branches", mode="before")
    @classmethod
    def _split_branches(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(str(b).strip() for b in value if b is not None and str(b).strip())
        return value

    @field_validator("deploy_branches")
    @classmethod
    def _non_empty(cls, value: FrozenSet[str]) -> FrozenSet[str]:
        if not value:
            raise ValueError("allow-list is empty")
        return value


def _validate(values: Dict[str, Any]) -> None:
    checked_keys = _CheckedValues.model_fields
    supplied = {key: values[key] for key in checked_keys if values[key] is not ABSENT}
    try:
        checked = _CheckedValues.model_validate(supplied)
    except ValidationError as e:
        error = e.errors()[0]
        key = str(error["loc"][0]) if error["loc"] else "configuration"
        raise ConfigurationError(key, f"{error['msg']} (got {supplied.get(key, ABSENT)!r})") from e

    for key in checked.model_fields_set:
        values[key] = getattr(checked, key)


def resolve(
    defaults: Optional[Mapping[str, Any]] = None,
    secrets: Optional[Mapping[str, Any]] = None,
    derived: Optional[Mapping[str, Any]] = None,
) -> Configuration:
    """
    Собирает конфигурацию из трёх слоёв.

    Приоритет: secrets > derived (ветка, коммит, номер сборки) > defaults.
    Пустые строки и None считаются «не передано». Каждый ключ из KNOWN_KEYS
    присутствует в результате; недостающие равны ABSENT.

    :raises ConfigurationError: если значение есть, но некорректно,
        и запасного поведения для него нет (например, кривой graph id).
    """
    if defaults is None:
        defaults = DEFAULTS
    layers = [defaults, derived or {}, secrets or {}]

    keys = list(KNOWN_KEYS)
    for layer in layers:
        for key in layer:
            if key not in keys:
                keys.append(key)

    values: Dict[str, Any] = {}
    for key in keys:
        value: Any = ABSENT
        for layer in layers:
            candidate = layer.get(key)
            if _supplied(candidate):
                value = _clean(candidate)
        values[key] = value

    _validate(values)
    return Configuration(values)
