from __future__ import annotations

import asyncio
import json
import os
import signal
import time
from pathlib import Path
from typing import Dict, Optional

import httpx

from deploypipe.model import Action, ActionKind
from deploypipe.core.models import Outcome

# сколько хвоста stdout/stderr/тела ответа храним в Outcome
OUTPUT_LIMIT = 64 * 1024


def now_ms() -> int:
    return int(time.monotonic() * 1000)


def _tail(text: str, limit: int = OUTPUT_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[-limit:]


def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass


class ActionInvoker:
    """
    Единый интерфейс запуска внешних действий: процессы, HTTP-запросы,
    проверки файлов. Каждое действие выполняется ровно один раз, без ретраев.

    - invoke(action) -> Outcome — никогда не бросает исключения из-за неуспеха
      самого действия, неуспех описывается полем Outcome.success;
    - отмена (таймаут пайплайна) убивает запущенный процесс и пробрасывается дальше.
    """

    def __init__(
        self,
        workspace: Path,
        *,
        base_env: Optional[Dict[str, str]] = None,
        http_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.workspace = Path(workspace)
        self.base_env = dict(os.environ) if base_env is None else dict(base_env)
        self.http_timeout = http_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "ActionInvoker":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.http_timeout,
                transport=self._transport,
            )
        return self._client

    async def invoke(self, action: Action) -> Outcome:
        start_ms = now_ms()
        if action.kind == ActionKind.COMMAND:
            outcome = await self._run_command(action)
        elif action.kind == ActionKind.HTTP:
            outcome = await self._call_http(action)
        elif action.kind == ActionKind.FILE_EXISTS:
            outcome = self._check_file(action)
        elif action.kind == ActionKind.RECORD:
            outcome = self._write_record(action)
        elif action.kind == ActionKind.LOG:
            outcome = Outcome(
                action=action.name,
                kind=action.kind,
                success=True,
                message=action.mask(action.message),
                degraded=action.degraded,
            )
        else:
            raise ValueError(f"Unsupported action kind: {action.kind}")

        return outcome.model_copy(update={"duration_ms": now_ms() - start_ms})

    async def _run_command(self, action: Action) -> Outcome:
        env = dict(self.base_env)
        env.update(action.env)

        try:
            proc = await asyncio.create_subprocess_shell(
                action.command or "",
                cwd=str(self.workspace),
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            return Outcome(
                action=action.name,
                kind=action.kind,
                success=False,
                message=action.mask(f"Не удалось запустить команду: {e}"),
                degraded=action.degraded,
            )

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            # Таймаут/прерывание пайплайна: не оставляем процесс сиротой
            _kill_process_group(proc)
            await proc.wait()
            raise

        exit_code = proc.returncode
        success = action.exit_code_ok(exit_code)
        return Outcome(
            action=action.name,
            kind=action.kind,
            success=success,
            exit_code=exit_code,
            stdout=action.mask(_tail(stdout.decode("utf-8", errors="replace"))),
            stderr=action.mask(_tail(stderr.decode("utf-8", errors="replace"))),
            message="" if success else f"exit code {exit_code}",
            degraded=action.degraded,
        )

    async def _call_http(self, action: Action) -> Outcome:
        request_kwargs = {"headers": action.headers}
        if action.json_body is not None:
            request_kwargs["json"] = action.json_body
        if action.timeout is not None:
            request_kwargs["timeout"] = action.timeout

        try:
            res = await self._http().request(
                action.method.upper(),
                action.url or "",
                **request_kwargs,
            )
        except httpx.HTTPError as e:
            return Outcome(
                action=action.name,
                kind=action.kind,
                success=False,
                message=action.mask(f"{type(e).__name__}: {e}"),
                degraded=action.degraded,
            )

        success = action.status_ok(res.status_code)
        return Outcome(
            action=action.name,
            kind=action.kind,
            success=success,
            status_code=res.status_code,
            body=action.mask(_tail(res.text)),
            message="" if success else f"HTTP {res.status_code}",
            degraded=action.degraded,
        )

    def _check_file(self, action: Action) -> Outcome:
        path = self.workspace / (action.path or "")
        exists = bool(action.path) and path.exists()
        return Outcome(
            action=action.name,
            kind=action.kind,
            success=exists,
            message=f"{action.path} найден" if exists else f"{action.path} не найден",
            degraded=action.degraded,
        )

    def _write_record(self, action: Action) -> Outcome:
        path = self.workspace / (action.path or "")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(action.payload or {}, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
        except OSError as e:
            return Outcome(
                action=action.name,
                kind=action.kind,
                success=False,
                message=f"Не удалось записать {action.path}: {e}",
                degraded=action.degraded,
            )
        return Outcome(
            action=action.name,
            kind=action.kind,
            success=True,
            message=f"Записан {action.path}",
            degraded=action.degraded,
        )
