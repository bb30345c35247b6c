import click
import re

from typing import List, Optional, Tuple

from deploypipe.model import Action, ActionKind, FailurePolicy, Pipeline, Stage
from deploypipe.core.config import DEPLOYMENT_RECORD_FILE
from deploypipe.core.models import PipelineRun, RunSummary, WorkspaceInfo
from deploypipe.core.pipeline_scripts import (
    make_docker_script,
    make_node_script,
    make_rover_script,
)
from deploypipe.core.services.environment import Configuration
from deploypipe.core.services.invoker import git_based_deploy_notice, trigger_deploy

QUALITY_GROUP = "quality"


def _commands(prefix: str, commands: List[str], **kwargs) -> List[Action]:
    return [
        Action(
            name=f"{prefix}_{i}" if len(commands) > 1 else prefix,
            kind=ActionKind.COMMAND,
            command=cmd,
            **kwargs,
        )
        for i, cmd in enumerate(commands, start=1)
    ]


def _notice(name: str, message: str) -> Action:
    return Action(name=name, kind=ActionKind.LOG, message=message, degraded=True)


def _image_tag(config: Configuration) -> str:
    raw = str(config.get("build_number") or config.get("commit") or "latest")
    return re.sub(r"[^A-Za-z0-9_.-]", "-", raw)[:128]


def _graph_ref(config: Configuration) -> Optional[str]:
    if not config.has("graph_id"):
        return None
    return f"{config['graph_id']}@{config.get('graph_variant', 'current')}"


def _precondition_stage(config: Configuration, workspace: WorkspaceInfo) -> Stage:
    required = [
        "package.json",
        workspace.entry_point,
        config.get("schema_path", "schema.graphql"),
        config.get("resolvers_path", "resolvers.js"),
    ]
    actions = [
        Action(name=f"require_{path}", kind=ActionKind.FILE_EXISTS, path=path)
        for path in dict.fromkeys(required)
    ]
    return Stage(name="preconditions", actions=actions, policy=FailurePolicy.FATAL)


def _layout_hints(config: Configuration, workspace: WorkspaceInfo, warnings: List[str]) -> None:
    """
    Если настроенные пути схемы и резолверов не совпадают с тем, что лежит
    в проекте, подсказываем правильное значение до того, как упадёт preconditions.
    """
    for key, env_name, found in (
        ("schema_path", "SCHEMA_PATH", workspace.schema_files),
        ("resolvers_path", "RESOLVERS_PATH", workspace.resolver_files),
    ):
        configured = config.get(key)
        if found and configured not in found:
            warnings.append(
                f"{configured} не найден, но в проекте есть: {', '.join(found)}. "
                f"Проверьте {env_name}."
            )


def _quality_stages(workspace: WorkspaceInfo) -> List[Stage]:
    pm = workspace.package_manager
    stages: List[Stage] = []

    for kind, script in (("lint", "lint"), ("tests", "test")):
        stage_name = "lint" if kind == "lint" else "test"
        if script in workspace.scripts:
            actions = _commands(stage_name, make_node_script(kind, pm))
        else:
            actions = [
                _notice(
                    f"{stage_name}_missing",
                    f"В package.json нет скрипта {script!r}, {stage_name} не выполнялся.",
                )
            ]
        stages.append(
            Stage(
                name=stage_name,
                actions=actions,
                policy=FailurePolicy.WARN_ONLY,
                group=QUALITY_GROUP,
            )
        )
    return stages


def _schema_stage(
    kind: str,
    config: Configuration,
    warnings: List[str],
) -> Stage:
    """
    rover subgraph check/publish. Без APOLLO_KEY или graph id
    стадия превращается в предупреждение, а не в ошибку.
    """
    name = "schema_check" if kind == "check" else "publish_schema"
    if kind == "check":
        policy = (
            FailurePolicy.FATAL if config.get("schema_check_fatal") else FailurePolicy.WARN_ONLY
        )
    else:
        policy = FailurePolicy.FATAL

    graph_ref = _graph_ref(config)
    subgraph_name = config.get("subgraph_name")
    apollo_key = config.get("apollo_key")

    missing = [
        env_name
        for env_name, value in (
            ("APOLLO_KEY", apollo_key),
            ("APOLLO_GRAPH_ID", graph_ref),
            ("SUBGRAPH_NAME", subgraph_name),
        )
        if not value
    ]
    if missing:
        message = f"{', '.join(missing)} не заданы, rover subgraph {kind} пропущен."
        warnings.append(message)
        return Stage(
            name=name,
            actions=[_notice(f"{name}_skipped", message)],
            policy=policy,
            branch_gated=(kind == "publish"),
        )

    commands = make_rover_script(
        kind,
        graph_ref=graph_ref,
        schema_path=config.get("schema_path", "schema.graphql"),
        subgraph_name=subgraph_name,
        routing_url=config.get("routing_url"),
    )
    return Stage(
        name=name,
        actions=_commands(
            name,
            commands,
            env={"APOLLO_KEY": apollo_key},
            secrets=[apollo_key],
        ),
        policy=policy,
        branch_gated=(kind == "publish"),
    )


def _deploy_stage(config: Configuration, warnings: List[str]) -> Stage:
    api_key = config.get("render_api_key")
    service_id = config.get("render_service_id")

    if api_key and service_id:
        deploy = trigger_deploy(
            api_key=api_key,
            service_id=service_id,
            clear_cache=bool(config.get("render_clear_cache")),
        )
        method = "api"
    else:
        warnings.append(
            "RENDER_API_KEY/RENDER_SERVICE_ID не заданы: деплой через Render auto-deploy из Git."
        )
        deploy = git_based_deploy_notice()
        method = "git"

    record = Action(
        name="deployment_record",
        kind=ActionKind.RECORD,
        path=DEPLOYMENT_RECORD_FILE,
        payload={
            "run_id": config.get("run_id"),
            "branch": config.get("branch"),
            "commit": config.get("commit"),
            "build_number": config.get("build_number"),
            "service_id": service_id,
            "method": method,
        },
    )
    return Stage(
        name="deploy_render",
        actions=[deploy, record],
        policy=FailurePolicy.WARN_ONLY,
        branch_gated=True,
    )


def _health_check_stage(config: Configuration) -> Optional[Stage]:
    routing_url = config.get("routing_url")
    if not routing_url:
        return None
    return Stage(
        name="health_check",
        actions=[
            Action(
                name="graphql_typename_probe",
                kind=ActionKind.HTTP,
                method="POST",
                url=routing_url,
                headers={"Content-Type": "application/json"},
                json_body={"query": "{ __typename }"},
                timeout=config.get("health_check_timeout"),
            )
        ],
        policy=FailurePolicy.WARN_ONLY,
        branch_gated=True,
    )


def build_pipeline(
    config: Configuration,
    workspace: WorkspaceInfo,
) -> Tuple[Pipeline, List[str], List[str]]:
    """
    Строим пайплайн подграфа: проверки -> node -> зависимости -> quality ->
    rover -> check -> docker -> publish -> render -> health check.

    Возвращает (Pipeline, logs, warnings).
    """
    logs: List[str] = []
    warnings: List[str] = []

    pm = workspace.package_manager
    image = config.get("docker_image", "subgraph")
    tag = _image_tag(config)
    _layout_hints(config, workspace, warnings)
    if workspace.node_version:
        logs.append(f"setup_node проверит требование engines.node: {workspace.node_version}")

    stages: List[Stage] = [
        _precondition_stage(config, workspace),
        Stage(
            name="setup_node",
            actions=_commands(
                "setup_node", make_node_script("setup", pm, workspace.node_version)
            ),
        ),
        Stage(
            name="install_dependencies",
            actions=_commands("install_dependencies", make_node_script("install", pm)),
        ),
        *_quality_stages(workspace),
        Stage(
            name="install_rover",
            actions=_commands("install_rover", make_rover_script("install")),
        ),
        _schema_stage("check", config, warnings),
        Stage(
            name="docker_build",
            actions=_commands("docker_build", make_docker_script("build", image, tag)),
            policy=FailurePolicy.WARN_ONLY,
            requires_files=["Dockerfile"],
        ),
        _schema_stage("publish", config, warnings),
        _deploy_stage(config, warnings),
    ]

    health = _health_check_stage(config)
    if health is not None:
        stages.append(health)
    else:
        logs.append("SUBGRAPH_ROUTING_URL не задан: health check не добавлен.")

    cleanup_actions = [
        Action(
            name="cleanup_notice",
            kind=ActionKind.LOG,
            message=f"Очистка после запуска {config.get('run_id') or ''}".strip(),
        )
    ]
    if workspace.has_dockerfile:
        cleanup_actions.extend(
            _commands("docker_cleanup", make_docker_script("cleanup", image, tag))
        )
    finalizer = Stage(
        name="cleanup",
        actions=cleanup_actions,
        policy=FailurePolicy.WARN_ONLY,
    )

    pipeline = Pipeline(stages=stages, finalizer=finalizer)
    message = (
        f"Пайплайн сформирован: {len(pipeline.stages)} стадий, "
        f"{sum(len(s.actions) for s in pipeline.stages)} действий."
    )
    logs.append(message)
    click.echo(message)

    return pipeline, logs, warnings


def summarize_pipeline(pipeline: Pipeline, run: Optional[PipelineRun] = None) -> RunSummary:
    """
    Строит краткое резюме пайплайна (и результата запуска, если он есть) для CLI.
    """
    stages = [stage.name for stage in pipeline.stages]
    gated = [stage.name for stage in pipeline.stages if stage.branch_gated]
    actions_count = sum(len(stage.actions) for stage in pipeline.stages)

    if not stages:
        description = "Пайплайн пустой."
    else:
        description = (
            f"Пайплайн из {len(stages)} стадий и {actions_count} действий: "
            f"стадии {', '.join(stages)}."
        )

    outcomes = {}
    status = None
    if run is not None:
        outcomes = {r.stage: r.outcome for r in run.stage_results}
        status = run.status
        description += f" Статус: {run.status.value.upper()}."

    return RunSummary(
        stages_count=len(stages),
        actions_count=actions_count,
        stages=stages,
        gated_stages=gated,
        description=description,
        status=status,
        outcomes=outcomes,
    )


def render_report(run: PipelineRun) -> str:
    """
    Человекочитаемая сводка по стадиям + итоговый статус одной строкой.
    """
    lines = [f"Запуск {run.run_id} (ветка {run.branch or '<нет>'}, коммит {run.commit or '<нет>'})"]
    for result in run.stage_results:
        line = f"  {result.outcome.value.upper():<8} {result.stage}"
        if result.skip_reason:
            line += f": {result.skip_reason}"
        elif result.outcomes:
            line += f" ({result.duration_ms} ms)"
        lines.append(line)
    if run.finalization is not None:
        lines.append(f"  {'FINALLY':<8} {run.finalization.stage} ({run.finalization.outcome.value})")
    if run.error:
        lines.append(f"Ошибка: {run.error}")
    lines.append(f"STATUS: {run.status.value.upper()}")
    return "\n".join(lines)
