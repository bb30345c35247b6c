import asyncio
import functools
import hashlib
import signal
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

PathLike = Union[str, Path]


class RestoredFiles():
    """
    Снимок файлов, которые сборка может изменить (package.json и т.п.).

    На выходе из контекста, на любом пути (успех, падение, прерывание),
    возвращает исходное содержимое; файлы, которых не было, удаляет.
    """

    def __init__(self, root: PathLike, names: Iterable[str]):
        self.root = Path(root)
        self.names = list(names)
        self._snapshot: Dict[Path, Optional[bytes]] = {}

    async def __aenter__(self):
        for name in self.names:
            path = self.root / name
            self._snapshot[path] = path.read_bytes() if path.is_file() else None
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.restore()

    def restore(self) -> None:
        for path, content in self._snapshot.items():
            if content is None:
                if path.is_file():
                    path.unlink()
            elif not path.is_file() or path.read_bytes() != content:
                path.write_bytes(content)


def make_run_id(branch: Optional[str] = None, commit: Optional[str] = None) -> str:
    """Generate run_id: YYYYMMDD-HHMMSS-<shorthash>."""
    now = datetime.now(timezone.utc)
    ts_part = now.strftime("%Y%m%d-%H%M%S")

    hash_input = f"{branch}|{commit}|{now.isoformat()}"
    short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

    return f"{ts_part}-{short_hash}"


@contextmanager
def cancel_on_signals(
    task: "asyncio.Task",
    signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM),
) -> Iterator[List[int]]:
    """
    Превращает SIGINT/SIGTERM (abort сборки в Jenkins, Ctrl-C) в отмену task,
    чтобы финализация и восстановление файлов успели отработать.
    Повторный сигнал игнорируется. Отдаёт список полученных сигналов.

    Где обработчики сигналов в цикле недоступны (Windows, не главный поток),
    ничего не устанавливает.
    """
    loop = asyncio.get_running_loop()
    received: List[int] = []

    def _cancel(signum: int) -> None:
        if received:
            return
        received.append(signum)
        task.cancel()

    installed: List[int] = []
    for signum in signals:
        try:
            loop.add_signal_handler(signum, _cancel, signum)
        except (NotImplementedError, RuntimeError, ValueError):
            continue
        installed.append(signum)

    try:
        yield received
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)


def async_click(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return asyncio.run(func(*args, **kwargs))
    return wrapper
