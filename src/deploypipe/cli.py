import asyncio
import click
from pathlib import Path
from typing import NoReturn, Optional, Tuple

from pydantic import ValidationError

from deploypipe import settings
from deploypipe.exception import PipelineError
from deploypipe.utils import async_click, cancel_on_signals
from deploypipe.core.models import RunStatus
from deploypipe.core.core import DeployPipeCore
from deploypipe.core.services.builders.pipeline import render_report


@click.command()
@click.argument("workspace", default=".", type=click.Path(file_okay=False))
@click.option("--repo", "repository", default=None, help="Клонировать репозиторий по URL вместо локальной директории")
@click.option("--branch", default=None, help="Имя ветки (по умолчанию BRANCH_NAME или HEAD)")
@click.option("--commit", default=None, help="Коммит (по умолчанию GIT_COMMIT или HEAD)")
@click.option("--build-number", default=None, help="Номер сборки (по умолчанию BUILD_NUMBER)")
@click.option("--deploy-branch", "deploy_branches", multiple=True, help="Ветка, из которой разрешён деплой (можно несколько)")
@click.option("--timeout", type=float, default=None, help="Общий лимит времени на запуск, секунды")
@click.option("--dry-run", is_flag=True, default=False, help="Только показать план стадий")
@click.option("--report", "report_path", default=None, type=click.Path(dir_okay=False), help="Сохранить JSON-отчёт о запуске")
@async_click
async def main(
    workspace: str,
    repository: Optional[str],
    branch: Optional[str],
    commit: Optional[str],
    build_number: Optional[str],
    deploy_branches: Tuple[str, ...],
    timeout: Optional[float],
    dry_run: bool,
    report_path: Optional[str],
):
    click.echo(settings.LOGO + "\n")
    ctx = click.get_current_context()

    try:
        app_settings = settings.get_settings()
    except ValidationError as e:
        raise click.ClickException(f"Некорректные переменные окружения:\n{e}")

    core = DeployPipeCore(app_settings)
    with cancel_on_signals(asyncio.current_task()):
        try:
            local = await core.prepare(workspace=workspace, repository=repository, branch=branch)
        except PipelineError as e:
            _fail(ctx, e)
        except asyncio.CancelledError:
            _aborted(ctx)

        try:
            config = core.configure(
                local,
                branch=branch,
                commit=commit,
                build_number=build_number,
                deploy_branches=deploy_branches,
                timeout=timeout,
            )
            pipeline, summary = core.plan(local, config)

            if dry_run:
                click.echo(summary.description)
                for stage in pipeline.stages:
                    gated = " [deploy]" if stage.branch_gated else ""
                    click.echo(f"  {stage.name} ({stage.policy.value}){gated}")
                    for action in stage.actions:
                        click.echo(f"    {action.describe()}")
                for warning in core.warnings:
                    click.echo(f"! {warning}", err=True)
                ctx.exit(0)

            report = await core.deploy(local, config, pipeline)
        except PipelineError as e:
            _fail(ctx, e)
        except asyncio.CancelledError:
            _aborted(ctx)
        finally:
            local.cleanup()

    click.echo("")
    click.echo(render_report(report.run))

    if report_path:
        try:
            Path(report_path).write_text(report.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            click.echo(f"Не удалось сохранить отчёт в файл '{report_path}': {e}", err=True)
        else:
            click.echo(f"Отчёт сохранён в файл: {report_path}", err=True)

    ctx.exit(report.status.exit_code)


def _fail(ctx: click.Context, error: PipelineError) -> NoReturn:
    for line in error.logs:
        click.echo(line, err=True)
    click.echo(f"Ошибка: {error.description}", err=True)
    ctx.exit(1)


def _aborted(ctx: click.Context) -> NoReturn:
    click.echo("Запуск прерван.", err=True)
    ctx.exit(RunStatus.ABORTED.exit_code)


if __name__ == "__main__":
    main()
