from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from deploypipe.exception import ActionFailure
from deploypipe.model import ActionKind, FailurePolicy


class StageOutcome(str, Enum):
    PASSED = "passed"
    WARNED = "warned"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    UNSTABLE = "unstable"
    ABORTED = "aborted"

    @property
    def exit_code(self) -> int:
        if self in (RunStatus.SUCCESS, RunStatus.UNSTABLE):
            return 0
        if self == RunStatus.ABORTED:
            return 2
        return 1


class Outcome(BaseModel):
    """
    Результат одного внешнего действия.
    exit_code/stdout/stderr — для команд, status_code/body — для HTTP.
    """

    model_config = ConfigDict(frozen=True)

    action: str
    kind: ActionKind
    success: bool
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    status_code: Optional[int] = None
    body: str = ""
    message: str = ""
    duration_ms: int = 0
    used_fallback: bool = False
    degraded: bool = False

    def raise_for_failure(self, stage: str) -> None:
        if self.success:
            return
        detail = self.message
        if self.exit_code is not None:
            detail = detail or f"exit code {self.exit_code}"
        elif self.status_code is not None:
            detail = detail or f"HTTP {self.status_code}"
        raise ActionFailure(stage=stage, action=self.action, detail=detail)


class StageResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: str
    policy: FailurePolicy
    outcome: StageOutcome
    outcomes: List[Outcome] = Field(default_factory=list)
    skip_reason: Optional[str] = None
    duration_ms: int = 0


class PipelineRun(BaseModel):
    """
    Один запуск пайплайна. Собирается раннером в самом конце и больше не меняется.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    branch: Optional[str] = None
    commit: Optional[str] = None
    build_number: Optional[str] = None
    stage_results: List[StageResult] = Field(default_factory=list)
    status: RunStatus
    finalization: Optional[StageResult] = None
    finalized: bool = False
    error: Optional[str] = None
    logs: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    duration_ms: int = 0

    def result_for(self, stage: str) -> Optional[StageResult]:
        for result in self.stage_results:
            if result.stage == stage:
                return result
        return None


class WorkspaceInfo(BaseModel):
    """
    Что нашли в рабочей директории сервиса.
    package_manager — npm/yarn/pnpm по lock-файлу
    node_version    — из package.json#engines.node или .nvmrc
    scripts         — имена скриптов из package.json
    entry_point     — package.json#main, по умолчанию index.js
    """

    package_manager: str = "npm"
    node_version: Optional[str] = None
    scripts: Dict[str, str] = Field(default_factory=dict)
    entry_point: str = "index.js"
    schema_files: List[str] = Field(default_factory=list)
    resolver_files: List[str] = Field(default_factory=list)
    has_package_json: bool = False
    has_lockfile: bool = False
    has_dockerfile: bool = False


class RunSummary(BaseModel):
    stages_count: int
    actions_count: int
    stages: List[str]
    gated_stages: List[str]
    # Короткое текстовое описание для CLI
    description: str
    status: Optional[RunStatus] = None
    outcomes: Dict[str, StageOutcome] = Field(default_factory=dict)


class RunReport(BaseModel):
    """
    То, что CLI сохраняет в --report.
    """

    status: RunStatus
    run: PipelineRun
    summary: RunSummary
    workspace: WorkspaceInfo
    # логи подготовки: клонирование, осмотр директории, построение плана
    logs: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
