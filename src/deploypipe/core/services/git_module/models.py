from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from .utils import remove_tree

@dataclass
class LocalRepo:
    """
    Подготовленная рабочая директория.

    root_dir     — корневая папка. Для клонов — временная директория.
    repo_path    — путь к самому проекту (там запускаются команды пайплайна).
    branch       — текущая ветка; None для detached HEAD и папок без .git.
    commit       — полный sha HEAD или None.
    logs         — текстовые логи шагов подготовки.
    is_temporary — если True, cleanup() удалит root_dir; если False — нет.
    """

    root_dir: Path
    repo_path: Path
    logs: List[str]
    branch: Optional[str] = None
    commit: Optional[str] = None
    is_temporary: bool = True

    def cleanup(self) -> None:
        """
        Удаляет временную папку, если is_temporary = True.
        Для существующих локальных путей ничего не делает.

        На Windows дополнительно обрабатывает read-only файлы (.git/objects/pack),
        чтобы rmtree реально удалял всё.
        """
        if self.is_temporary and self.root_dir.exists():
            remove_tree(self.root_dir)
