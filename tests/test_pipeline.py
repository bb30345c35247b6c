from __future__ import annotations

import pytest

from deploypipe.model import ActionKind, FailurePolicy
from deploypipe.core.models import RunStatus, StageOutcome, WorkspaceInfo
from deploypipe.core.services.builders.pipeline import (
    build_pipeline,
    render_report,
    summarize_pipeline,
)
from deploypipe.core.services.environment import DEFAULTS, resolve
from deploypipe.core.services.runner import StageRunner

RENDER_URL = "https://api.render.com/v1/services/srv-42/deploys"

WORKSPACE = WorkspaceInfo(
    package_manager="npm",
    scripts={"lint": "eslint .", "test": "jest"},
    entry_point="index.js",
    has_package_json=True,
    has_lockfile=True,
)

DEPLOY_STAGES = {"publish_schema", "deploy_render", "health_check"}


def _config(branch: str, **secrets):
    base_secrets = {"apollo_key": "service:graph:key", "graph_id": "my-graph"}
    base_secrets.update(secrets)
    return resolve(
        {**DEFAULTS, "subgraph_name": "products"},
        base_secrets,
        {"branch": branch, "commit": "abc123", "build_number": "17", "run_id": "run-17"},
    )


def _render_calls(invoker):
    return [a for a in invoker.calls if a.kind == ActionKind.HTTP and a.url == RENDER_URL]


def test_stage_order_and_policies() -> None:
    pipeline, logs, warnings = build_pipeline(_config("main", render_api_key="k", render_service_id="srv-42"), WORKSPACE)

    names = [s.name for s in pipeline.stages]
    assert names == [
        "preconditions",
        "setup_node",
        "install_dependencies",
        "lint",
        "test",
        "install_rover",
        "schema_check",
        "docker_build",
        "publish_schema",
        "deploy_render",
    ]
    by_name = {s.name: s for s in pipeline.stages}
    assert by_name["preconditions"].policy == FailurePolicy.FATAL
    assert by_name["lint"].group == by_name["test"].group == "quality"
    assert by_name["schema_check"].policy == FailurePolicy.WARN_ONLY
    assert by_name["deploy_render"].policy == FailurePolicy.WARN_ONLY
    assert {s.name for s in pipeline.stages if s.branch_gated} == {"publish_schema", "deploy_render"}
    assert pipeline.finalizer is not None and pipeline.finalizer.name == "cleanup"
    assert [a.path for a in by_name["preconditions"].actions] == [
        "package.json",
        "index.js",
        "schema.graphql",
        "resolvers.js",
    ]


def test_rover_commands_use_graph_ref_and_hide_key() -> None:
    config = _config("main", render_api_key="k", render_service_id="srv-42")
    pipeline, _, _ = build_pipeline(config, WORKSPACE)
    by_name = {s.name: s for s in pipeline.stages}

    publish = by_name["publish_schema"].actions[0]
    assert "subgraph publish my-graph@current" in publish.command
    assert "--schema schema.graphql --name products" in publish.command
    assert publish.command.endswith("--convert")
    assert publish.env == {"APOLLO_KEY": "service:graph:key"}
    assert "service:graph:key" not in publish.describe()

    check = by_name["schema_check"].actions[0]
    assert "subgraph check my-graph@current" in check.command


def test_schema_check_can_be_fatal() -> None:
    config = resolve(
        {**DEFAULTS, "subgraph_name": "products", "schema_check_fatal": True},
        {"apollo_key": "k", "graph_id": "g"},
        {"branch": "main"},
    )
    pipeline, _, _ = build_pipeline(config, WORKSPACE)
    check = next(s for s in pipeline.stages if s.name == "schema_check")
    assert check.policy == FailurePolicy.FATAL


def test_missing_apollo_key_degrades_schema_stages() -> None:
    config = resolve({**DEFAULTS, "subgraph_name": "products"}, {"graph_id": "g"}, {"branch": "main"})
    pipeline, _, warnings = build_pipeline(config, WORKSPACE)
    publish = next(s for s in pipeline.stages if s.name == "publish_schema")

    assert [a.kind for a in publish.actions] == [ActionKind.LOG]
    assert publish.actions[0].degraded is True
    assert any("APOLLO_KEY" in w for w in warnings)


def test_missing_scripts_become_notices() -> None:
    workspace = WORKSPACE.model_copy(update={"scripts": {}, "package_manager": "yarn"})
    pipeline, _, _ = build_pipeline(_config("main"), workspace)
    by_name = {s.name: s for s in pipeline.stages}

    assert by_name["lint"].actions[0].kind == ActionKind.LOG
    assert by_name["install_dependencies"].actions[0].command == "yarn install --frozen-lockfile"


def test_health_check_added_with_routing_url() -> None:
    config = resolve(
        {**DEFAULTS, "routing_url": "https://products.onrender.com/graphql", "health_check_timeout": 15},
        {},
        {"branch": "main"},
    )
    pipeline, _, _ = build_pipeline(config, WORKSPACE)
    health = pipeline.stages[-1]

    assert health.name == "health_check"
    assert health.branch_gated is True
    assert health.actions[0].timeout == 15.0
    assert health.actions[0].json_body == {"query": "{ __typename }"}


@pytest.mark.asyncio
async def test_develop_branch_never_touches_deploy_stages(make_invoker) -> None:
    invoker = make_invoker(statuses={"render_trigger_deploy": 201})
    pipeline, _, _ = build_pipeline(
        _config("develop", render_api_key="rnd", render_service_id="srv-42"), WORKSPACE
    )

    run = await StageRunner(invoker).run(pipeline.stages, _config("develop"), pipeline.finalizer)

    assert run.status == RunStatus.SUCCESS
    for name in ("publish_schema", "deploy_render"):
        assert run.result_for(name).outcome == StageOutcome.SKIPPED
    deploy_actions = {
        a.name for s in pipeline.stages if s.name in DEPLOY_STAGES for a in s.actions
    }
    assert not [a for a in invoker.calls if a.name in deploy_actions]
    assert _render_calls(invoker) == []


@pytest.mark.asyncio
async def test_main_branch_with_api_key_triggers_render_once(make_invoker) -> None:
    invoker = make_invoker(statuses={"render_trigger_deploy": 201})
    config = _config("main", render_api_key="rnd", render_service_id="srv-42")
    pipeline, _, _ = build_pipeline(config, WORKSPACE)

    run = await StageRunner(invoker).run(pipeline.stages, config, pipeline.finalizer)

    assert run.status == RunStatus.SUCCESS
    assert run.result_for("deploy_render").outcome == StageOutcome.PASSED
    assert len(_render_calls(invoker)) == 1


@pytest.mark.asyncio
async def test_main_branch_without_api_key_is_unstable(make_invoker) -> None:
    invoker = make_invoker()
    config = _config("main")
    assert config.has("render_api_key") is False

    pipeline, _, _ = build_pipeline(config, WORKSPACE)
    run = await StageRunner(invoker).run(pipeline.stages, config, pipeline.finalizer)

    deploy = run.result_for("deploy_render")
    assert deploy.outcome == StageOutcome.WARNED
    assert deploy.outcomes[0].action == "render_git_deploy"
    assert run.status == RunStatus.UNSTABLE
    assert _render_calls(invoker) == []


@pytest.mark.asyncio
async def test_render_http_failure_falls_back_instead_of_failing(make_invoker) -> None:
    invoker = make_invoker(statuses={"render_trigger_deploy": 500})
    config = _config("main", render_api_key="rnd", render_service_id="srv-42")
    pipeline, _, _ = build_pipeline(config, WORKSPACE)

    run = await StageRunner(invoker).run(pipeline.stages, config, pipeline.finalizer)

    deploy = run.result_for("deploy_render")
    assert deploy.outcome == StageOutcome.WARNED
    assert [o.action for o in deploy.outcomes] == [
        "render_trigger_deploy",
        "render_fallback",
        "deployment_record",
    ]
    assert run.status == RunStatus.UNSTABLE
    assert len(_render_calls(invoker)) == 1


@pytest.mark.asyncio
async def test_failed_install_aborts_before_quality(make_invoker) -> None:
    invoker = make_invoker(failures={"install_dependencies"})
    config = _config("main")
    pipeline, _, _ = build_pipeline(config, WORKSPACE)

    run = await StageRunner(invoker).run(pipeline.stages, config, pipeline.finalizer)

    assert run.status == RunStatus.FAILURE
    assert [r.stage for r in run.stage_results] == [
        "preconditions",
        "setup_node",
        "install_dependencies",
    ]
    assert invoker.called("cleanup_notice") == 1


def test_summary_for_plan() -> None:
    pipeline, _, _ = build_pipeline(_config("main"), WORKSPACE)
    summary = summarize_pipeline(pipeline)

    assert summary.stages_count == len(pipeline.stages)
    assert summary.gated_stages == ["publish_schema", "deploy_render"]
    assert summary.status is None
    assert "preconditions" in summary.description


@pytest.mark.asyncio
async def test_render_report_lists_stages_and_status(make_invoker) -> None:
    config = _config("develop")
    pipeline, _, _ = build_pipeline(config, WORKSPACE)
    run = await StageRunner(make_invoker()).run(pipeline.stages, config, pipeline.finalizer)

    text = render_report(run)

    assert "PASSED   preconditions" in text
    assert "SKIPPED  deploy_render" in text
    assert "FINALLY  cleanup" in text
    assert text.splitlines()[-1] == "STATUS: SUCCESS"
    assert summarize_pipeline(pipeline, run).outcomes["deploy_render"] == StageOutcome.SKIPPED


def test_setup_node_checks_engines_requirement() -> None:
    workspace = WORKSPACE.model_copy(update={"node_version": ">=18.0.0"})
    pipeline, logs, _ = build_pipeline(_config("main"), workspace)
    setup = next(s for s in pipeline.stages if s.name == "setup_node")

    assert any("major < 18" in a.command for a in setup.actions)
    assert any(">=18.0.0" in line for line in logs)


def test_setup_node_without_engines_only_prints_versions() -> None:
    pipeline, _, _ = build_pipeline(_config("main"), WORKSPACE)
    setup = next(s for s in pipeline.stages if s.name == "setup_node")

    assert [a.command for a in setup.actions] == ["node --version", "npm --version"]


def test_misplaced_schema_and_resolvers_are_hinted() -> None:
    workspace = WORKSPACE.model_copy(
        update={"schema_files": ["src/schema.graphql"], "resolver_files": ["src/resolvers.js"]}
    )
    _, _, warnings = build_pipeline(_config("main"), workspace)

    assert any("src/schema.graphql" in w and "SCHEMA_PATH" in w for w in warnings)
    assert any("src/resolvers.js" in w and "RESOLVERS_PATH" in w for w in warnings)


def test_matching_layout_gives_no_hint() -> None:
    workspace = WORKSPACE.model_copy(
        update={"schema_files": ["schema.graphql"], "resolver_files": ["resolvers.js"]}
    )
    _, _, warnings = build_pipeline(_config("main"), workspace)

    assert not any("SCHEMA_PATH" in w or "RESOLVERS_PATH" in w for w in warnings)
