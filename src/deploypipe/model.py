from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

MASK = "***"


class ActionKind(str, Enum):
    COMMAND = "command"
    HTTP = "http"
    FILE_EXISTS = "file_exists"
    LOG = "log"
    RECORD = "record"


class FailurePolicy(str, Enum):
    FATAL = "fatal"
    WARN_ONLY = "warn_only"


class Action(BaseModel):
    """
    Атомарное внешнее действие внутри стадии.
    Не хранит состояния: результат выполнения описывает Outcome.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    kind: ActionKind

    # command
    command: Optional[str] = None
    accept_exit_codes: List[int] = Field(default_factory=lambda: [0])
    env: Dict[str, str] = Field(default_factory=dict)

    # http
    method: str = "GET"
    url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    json_body: Optional[Any] = None
    accept_status_min: int = 200
    accept_status_max: int = 300
    timeout: Optional[float] = None

    # file_exists / record
    path: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None

    # log
    message: Optional[str] = None

    # значения, которые нельзя показывать в логах
    secrets: List[str] = Field(default_factory=list)
    # запускается, если основное действие не удалось
    fallback: Optional["Action"] = None
    # действие-заглушка вместо реальной работы (стадия получает warned)
    degraded: bool = False

    def exit_code_ok(self, exit_code: Optional[int]) -> bool:
        return exit_code is not None and exit_code in self.accept_exit_codes

    def status_ok(self, status_code: Optional[int]) -> bool:
        return (
            status_code is not None
            and self.accept_status_min <= status_code < self.accept_status_max
        )

    def mask(self, text: Optional[str]) -> str:
        if not text:
            return ""
        for secret in self.secrets:
            if secret:
                text = text.replace(secret, MASK)
        return text

    def describe(self) -> str:
        """
        Человекочитаемое описание действия без секретов.
        """
        if self.kind == ActionKind.COMMAND:
            return self.mask(f"$ {self.command}")
        if self.kind == ActionKind.HTTP:
            return self.mask(f"{self.method.upper()} {self.url}")
        if self.kind == ActionKind.FILE_EXISTS:
            return f"check {self.path}"
        if self.kind == ActionKind.RECORD:
            return f"write {self.path}"
        return self.mask(self.message)


class Stage(BaseModel):
    """
    Именованная единица работы пайплайна.
    Определяется до запуска и не меняется во время него.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    actions: List[Action]
    policy: FailurePolicy = FailurePolicy.FATAL
    branch_gated: bool = False

    # соседние стадии с одинаковой группой выполняются параллельно
    group: Optional[str] = None
    # если хотя бы одного файла нет, стадия пропускается
    requires_files: List[str] = Field(default_factory=list)

    @property
    def is_fatal(self) -> bool:
        return self.policy == FailurePolicy.FATAL


class Pipeline(BaseModel):
    """
    Абстрактный пайплайн: упорядоченные стадии + стадия финализации.
    """

    stages: List[Stage]
    finalizer: Optional[Stage] = None


Action.model_rebuild()
