import os
import shutil
import stat
import sys
from pathlib import Path
from typing import Union


PathLike = Union[str, Path]

def on_rm_error(func, path, exc_info):
    """
    Обработчик ошибок для shutil.rmtree:
    - снимает флаг read-only (частый кейс для .git/objects/pack на Windows),
    - повторно вызывает функцию удаления,
    - если снова не получилось — оставляем файл (cleanup — best-effort).
    """
    try:
        os.chmod(path, stat.S_IWRITE)
        func(path)
    except OSError:
        pass

def remove_tree(path: Path) -> None:
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=on_rm_error)
    else:
        shutil.rmtree(path, onerror=on_rm_error)

def ensure_base_temp_dir(path: PathLike) -> Path:
    """
    Гарантирует, что BASE_TEMP_DIR существует, и возвращает его как Path.
    """
    base = Path(path)
    base.mkdir(parents=True, exist_ok=True)
    return base
