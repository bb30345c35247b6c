import asyncio
import threading
import time
import sys
from typing import Any, Awaitable, Callable, Optional, TextIO, TypeVar

T = TypeVar("T")

SPINNER_CHARS = "|/-\\"


async def run(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    text: str = "Загрузка",
    interval: float = 0.1,
    stream: Optional[TextIO] = None,
    **kwargs: Any,
) -> T:
    """
    Запускает асинхронную функцию func и крутит спиннер в отдельном потоке,
    пока функция не завершится.

    В логах CI (не TTY) спиннер бессмысленен: печатаем только итоговую строку.
    """
    out = stream or sys.stdout
    interactive = out.isatty()
    stop_event = threading.Event()

    def spinner():
        i = 0
        while not stop_event.is_set():
            frame = SPINNER_CHARS[i % len(SPINNER_CHARS)]
            out.write(f"\r{text} {frame}")
            out.flush()
            i += 1
            time.sleep(interval)

    thread: Optional[threading.Thread] = None
    if interactive:
        thread = threading.Thread(target=spinner, daemon=True)
        thread.start()

    success = False
    try:
        result = await func(*args, **kwargs)
        success = True
        return result
    finally:
        stop_event.set()
        if thread is not None:
            await asyncio.to_thread(thread.join)
            out.write("\r" + " " * (len(text) + 2) + "\r")

        out.write(f"{text} - {'OK' if success else 'ERROR'}\n")
        out.flush()
