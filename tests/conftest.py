from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pytest

from deploypipe.model import Action, ActionKind
from deploypipe.core.models import Outcome


class FakeInvoker:
    """
    Подменяет ActionInvoker: ничего не запускает, отвечает по таблицам.

    failures — имена command-действий, которые завершаются с кодом 1;
    statuses — HTTP-статус по имени действия (по умолчанию 200);
    delays   — задержка перед ответом, секунды.
    """

    def __init__(
        self,
        workspace: Path,
        *,
        failures: Iterable[str] = (),
        statuses: Optional[Dict[str, int]] = None,
        delays: Optional[Dict[str, float]] = None,
    ) -> None:
        self.workspace = Path(workspace)
        self.failures = set(failures)
        self.statuses = statuses or {}
        self.delays = delays or {}
        self.calls: List[Action] = []

    async def __aenter__(self) -> "FakeInvoker":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    def called(self, name: str) -> int:
        return sum(1 for action in self.calls if action.name == name)

    async def invoke(self, action: Action) -> Outcome:
        self.calls.append(action)
        delay = self.delays.get(action.name)
        if delay:
            await asyncio.sleep(delay)

        if action.kind == ActionKind.HTTP:
            status = self.statuses.get(action.name, 200)
            ok = action.status_ok(status)
            return Outcome(
                action=action.name,
                kind=action.kind,
                success=ok,
                status_code=status,
                message="" if ok else f"HTTP {status}",
                degraded=action.degraded,
            )
        if action.kind == ActionKind.LOG:
            return Outcome(
                action=action.name,
                kind=action.kind,
                success=True,
                message=action.message or "",
                degraded=action.degraded,
            )

        exit_code = 1 if action.name in self.failures else 0
        ok = exit_code == 0
        return Outcome(
            action=action.name,
            kind=action.kind,
            success=ok,
            exit_code=exit_code if action.kind == ActionKind.COMMAND else None,
            message="" if ok else f"exit code {exit_code}",
            degraded=action.degraded,
        )


@pytest.fixture
def make_invoker(tmp_path: Path) -> Callable[..., FakeInvoker]:
    def _make(**kwargs) -> FakeInvoker:
        return FakeInvoker(tmp_path, **kwargs)

    return _make
