from typing import Iterable, Optional, Tuple

from deploypipe.model import Pipeline
from deploypipe.settings import Settings
from deploypipe.utils import RestoredFiles, make_run_id

from .animation import run as run_animation
from .config import RESTORED_FILES
from .models import RunReport, RunSummary, WorkspaceInfo
from .services.analyzer import core as analyzer
from .services.builders import pipeline as builder
from .services.environment import DEFAULTS, Configuration, resolve
from .services.git_module import GitWorkspace
from .services.git_module.models import LocalRepo
from .services.invoker import ActionInvoker
from .services.runner import StageRunner


class DeployPipeCore:
    """
    Склеивает всё вместе: рабочая директория -> конфигурация -> план стадий -> запуск.

    Настройки (секреты, таймауты) передаются явно, ядро само окружение не читает.
    """

    def __init__(self, settings: Settings, repo_branch: str = "main", http_transport=None):
        self.settings = settings
        self.git = GitWorkspace(default_branch=repo_branch)
        self.http_transport = http_transport
        self.logs: list[str] = []
        self.warnings: list[str] = []
        self.workspace = WorkspaceInfo()
        self.config: Optional[Configuration] = None

    async def prepare(
        self,
        workspace: Optional[str] = None,
        repository: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> LocalRepo:
        if repository:
            local: LocalRepo = await run_animation(
                self.git.clone,
                repository,
                branch,
                text=f"Клонирование репозитория {repository}",
            )
        else:
            local = await self.git.from_existing_path(workspace or ".")
        self.logs.extend(local.logs)
        return local

    def configure(
        self,
        local: LocalRepo,
        branch: Optional[str] = None,
        commit: Optional[str] = None,
        build_number: Optional[str] = None,
        deploy_branches: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
    ) -> Configuration:
        """
        Явные аргументы CLI > переменные CI-агента > то, что прочитали из git.
        """
        derived = {
            "branch": branch or self.settings.branch_name or local.branch,
            "commit": commit or self.settings.git_commit or local.commit,
            "build_number": build_number or self.settings.build_number,
        }
        derived["run_id"] = make_run_id(derived["branch"], derived["commit"])

        defaults = dict(DEFAULTS)
        defaults.update(self.settings.defaults())
        if deploy_branches:
            defaults["deploy_branches"] = list(deploy_branches)
        if timeout is not None:
            defaults["build_timeout"] = timeout

        self.config = resolve(defaults, self.settings.secrets(), derived)
        return self.config

    def plan(self, local: LocalRepo, config: Configuration) -> Tuple[Pipeline, RunSummary]:
        workspace, inspect_logs, inspect_warnings = analyzer.inspect_workspace(local.repo_path)
        self.workspace = workspace
        self.logs.extend(inspect_logs)
        self.warnings.extend(inspect_warnings)

        pipeline, pipeline_logs, pipeline_warnings = builder.build_pipeline(config, workspace)
        self.logs.extend(pipeline_logs)
        self.warnings.extend(pipeline_warnings)

        return pipeline, builder.summarize_pipeline(pipeline)

    async def deploy(
        self,
        local: LocalRepo,
        config: Configuration,
        pipeline: Pipeline,
    ) -> RunReport:
        try:
            async with RestoredFiles(local.repo_path, RESTORED_FILES):
                async with ActionInvoker(
                    local.repo_path,
                    transport=self.http_transport,
                ) as invoker:
                    runner = StageRunner(invoker)
                    run = await runner.run(pipeline.stages, config, pipeline.finalizer)
        finally:
            local.cleanup()
            if local.is_temporary:
                self.logs.append("Временная папка с репозиторием удалена.")

        return RunReport(
            status=run.status,
            run=run,
            summary=builder.summarize_pipeline(pipeline, run),
            workspace=self.workspace,
            logs=self.logs,
            warnings=self.warnings,
        )
