from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from itertools import groupby
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import click

from deploypipe.exception import ActionFailure, PipelineTimeoutError
from deploypipe.model import Action, FailurePolicy, Stage
from deploypipe.utils import make_run_id
from deploypipe.core.models import (
    Outcome,
    PipelineRun,
    RunStatus,
    StageOutcome,
    StageResult,
)
from deploypipe.core.services.environment import Configuration
from deploypipe.core.services.invoker import ActionInvoker
from deploypipe.core.services.invoker.core import now_ms

from .gate import BranchGate


def aggregate_status(results: Iterable[StageResult], aborted: bool = False) -> RunStatus:
    """
    Итоговый статус запуска по результатам стадий.

    failure  — хотя бы одна fatal-стадия упала (сколько бы warn_only ни упало);
    unstable — fatal-стадии не падали, но есть упавшая warn_only или warned-стадия;
    success  — всё остальное. Прерванный запуск всегда aborted.
    """
    if aborted:
        return RunStatus.ABORTED

    results = list(results)
    if any(
        r.policy == FailurePolicy.FATAL and r.outcome == StageOutcome.FAILED
        for r in results
    ):
        return RunStatus.FAILURE
    if any(r.outcome in (StageOutcome.FAILED, StageOutcome.WARNED) for r in results):
        return RunStatus.UNSTABLE
    return RunStatus.SUCCESS


def stage_outcome(outcomes: Sequence[Outcome]) -> StageOutcome:
    if any(not o.success and not o.used_fallback for o in outcomes):
        return StageOutcome.FAILED
    if any(o.used_fallback or o.degraded for o in outcomes):
        return StageOutcome.WARNED
    return StageOutcome.PASSED


def _uncancel_current_task() -> None:
    task = asyncio.current_task()
    if task is not None and hasattr(task, "uncancel"):
        task.uncancel()


def _blocks(stages: Sequence[Stage]) -> List[List[Stage]]:
    """
    Режем список стадий на последовательные блоки.
    Соседние стадии с одной и той же group образуют параллельный блок.
    """
    blocks: List[List[Stage]] = []
    for group, items in groupby(stages, key=lambda s: s.group):
        items = list(items)
        if group:
            blocks.append(items)
        else:
            blocks.extend([item] for item in items)
    return blocks


@dataclass
class _RunState:
    logs: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    results: List[StageResult] = field(default_factory=list)
    aborted: bool = False
    error: Optional[str] = None


class StageRunner:
    """
    Последовательно выполняет стадии пайплайна.

    - стадии идут строго в порядке объявления;
    - соседние стадии одной группы (quality) выполняются параллельно
      и дожидаются друг друга перед следующей стадией;
    - первая неудача в fatal-стадии останавливает запуск, warn_only лишь портит статус;
    - стадия финализации выполняется ровно один раз на любом пути выхода;
    - внешняя отмена задачи не пробрасывается: run финализируется и
      возвращается со статусом aborted.
    """

    def __init__(
        self,
        invoker: ActionInvoker,
        *,
        workspace: Optional[Path] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.invoker = invoker
        self.workspace = Path(workspace) if workspace is not None else invoker.workspace
        self.timeout = timeout

    def _log(self, state: _RunState, message: str) -> None:
        click.echo(message)
        state.logs.append(message)

    def _warn(self, state: _RunState, message: str) -> None:
        click.echo(message, err=True)
        state.logs.append(message)
        state.warnings.append(message)

    async def run(
        self,
        stages: Sequence[Stage],
        config: Configuration,
        finalizer: Optional[Stage] = None,
    ) -> PipelineRun:
        state = _RunState()
        start_ms = now_ms()

        branch = config.get("branch")
        gate = BranchGate(branch, config.deploy_branches)
        timeout = self.timeout if self.timeout is not None else config.get("build_timeout")

        self._log(state, f"Запуск пайплайна: {len(stages)} стадий, ветка {branch or '<нет>'}")
        self._log(state, f"Деплой-стадии: {gate.reason()}")

        finalization: Optional[StageResult] = None
        try:
            await self._run_with_budget(stages, gate, state, timeout)
        except ActionFailure as e:
            state.error = e.description
            self._warn(state, f"Пайплайн остановлен: {e.description}")
        except PipelineTimeoutError as e:
            state.aborted = True
            state.error = e.description
            self._warn(state, f"Пайплайн прерван: {e.description}")
        except asyncio.CancelledError:
            # внешний abort (SIGTERM от CI, Ctrl-C) становится статусом aborted
            state.aborted = True
            state.error = "Pipeline was cancelled"
            self._warn(state, "Пайплайн прерван извне")
            _uncancel_current_task()
        finally:
            finalization = await self._finalize(finalizer, state)

        status = aggregate_status(state.results, aborted=state.aborted)
        self._log(state, f"Пайплайн завершён со статусом {status.value.upper()}")

        return PipelineRun(
            run_id=config.get("run_id") or make_run_id(branch, config.get("commit")),
            branch=branch,
            commit=config.get("commit"),
            build_number=config.get("build_number"),
            stage_results=state.results,
            status=status,
            finalization=finalization,
            finalized=True,
            error=state.error,
            logs=state.logs,
            warnings=state.warnings,
            duration_ms=now_ms() - start_ms,
        )

    async def _run_with_budget(
        self,
        stages: Sequence[Stage],
        gate: BranchGate,
        state: _RunState,
        timeout: Optional[float],
    ) -> None:
        try:
            await asyncio.wait_for(self._run_stages(stages, gate, state), timeout)
        except asyncio.TimeoutError:
            raise PipelineTimeoutError(timeout or 0.0, logs=list(state.logs))

    async def _run_stages(
        self,
        stages: Sequence[Stage],
        gate: BranchGate,
        state: _RunState,
    ) -> None:
        for block in _blocks(stages):
            if len(block) == 1:
                results = [await self._run_stage(block[0], gate, state)]
            else:
                names = ", ".join(s.name for s in block)
                self._log(state, f"Параллельная группа {block[0].group}: {names}")
                results = await asyncio.gather(
                    *(self._run_stage(stage, gate, state) for stage in block)
                )

            state.results.extend(results)

            for stage, result in zip(block, results):
                if stage.is_fatal and result.outcome == StageOutcome.FAILED:
                    failed = next(
                        o for o in result.outcomes if not o.success and not o.used_fallback
                    )
                    failed.raise_for_failure(stage.name)

    async def _run_stage(
        self,
        stage: Stage,
        gate: BranchGate,
        state: _RunState,
    ) -> StageResult:
        if stage.branch_gated and not gate.allowed:
            self._log(state, f"[{stage.name}] пропущена: {gate.reason()}")
            return StageResult(
                stage=stage.name,
                policy=stage.policy,
                outcome=StageOutcome.SKIPPED,
                skip_reason=gate.reason(),
            )

        missing = [f for f in stage.requires_files if not (self.workspace / f).exists()]
        if missing:
            reason = f"нет файлов: {', '.join(missing)}"
            self._log(state, f"[{stage.name}] пропущена: {reason}")
            return StageResult(
                stage=stage.name,
                policy=stage.policy,
                outcome=StageOutcome.SKIPPED,
                skip_reason=reason,
            )

        self._log(state, f"[{stage.name}] старт ({stage.policy.value})")
        start_ms = now_ms()
        outcomes: List[Outcome] = []

        for action in stage.actions:
            self._log(state, f"[{stage.name}] {action.describe()}")
            step_outcomes = await self._run_action(stage, action, state)
            outcomes.extend(step_outcomes)

            primary = step_outcomes[0]
            if not primary.success and not primary.used_fallback and stage.is_fatal:
                break

        result = StageResult(
            stage=stage.name,
            policy=stage.policy,
            outcome=stage_outcome(outcomes),
            outcomes=outcomes,
            duration_ms=now_ms() - start_ms,
        )
        if result.outcome == StageOutcome.PASSED:
            self._log(state, f"[{stage.name}] {result.outcome.value}")
        else:
            self._warn(state, f"[{stage.name}] {result.outcome.value}")
        return result

    async def _run_action(
        self,
        stage: Stage,
        action: Action,
        state: _RunState,
    ) -> List[Outcome]:
        outcome = await self.invoker.invoke(action)

        if outcome.success:
            if outcome.degraded:
                self._warn(state, f"[{stage.name}] {outcome.message}")
            return [outcome]

        self._warn(state, f"[{stage.name}] {action.name} не выполнено: {outcome.message}")
        for line in outcome.stderr.strip().splitlines()[-5:]:
            self._log(state, f"[{stage.name}]   {line}")

        if action.fallback is None:
            return [outcome]

        fallback = await self.invoker.invoke(action.fallback)
        if fallback.success:
            self._warn(state, f"[{stage.name}] запасной вариант: {fallback.message}")
        else:
            self._warn(state, f"[{stage.name}] запасной вариант тоже не сработал: {fallback.message}")

        return [outcome.model_copy(update={"used_fallback": fallback.success}), fallback]

    async def _finalize(self, finalizer: Optional[Stage], state: _RunState) -> Optional[StageResult]:
        """
        Финализация не прерывает запуск и не меняет его статус: ошибки только логируются.
        """
        if finalizer is None:
            return None

        self._log(state, f"[{finalizer.name}] финализация")
        start_ms = now_ms()
        outcomes: List[Outcome] = []
        for action in finalizer.actions:
            try:
                outcome = await self.invoker.invoke(action)
            except Exception as e:
                self._warn(state, f"[{finalizer.name}] {action.name}: {e!r}")
                continue
            if not outcome.success:
                self._warn(state, f"[{finalizer.name}] {action.name}: {outcome.message}")
            outcomes.append(outcome)

        return StageResult(
            stage=finalizer.name,
            policy=FailurePolicy.WARN_ONLY,
            outcome=stage_outcome(outcomes),
            outcomes=outcomes,
            duration_ms=now_ms() - start_ms,
        )
