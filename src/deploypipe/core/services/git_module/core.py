from git import (
    Repo as GitRepo,
    GitCommandError,
    InvalidGitRepositoryError,
    NoSuchPathError,
)

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple

from deploypipe.core.config import BASE_TEMP_DIR

from .models import LocalRepo
from .utils import ensure_base_temp_dir, PathLike
from .exceptions import GitCloneError, GitLocalPathError


def read_head(repo_obj: GitRepo) -> Tuple[Optional[str], Optional[str]]:
    """
    Текущая ветка и sha коммита.
    В detached HEAD (обычное дело для CI-агентов) ветки нет.
    """
    branch: Optional[str] = None
    commit: Optional[str] = None

    if not repo_obj.head.is_detached:
        branch = repo_obj.active_branch.name
    try:
        commit = repo_obj.head.commit.hexsha
    except ValueError:
        # пустой репозиторий без единого коммита
        commit = None
    return branch, commit


class GitWorkspace:
    """
    Высокоуровневый фасад для подготовки рабочей директории в двух режимах:

    - clone(repo, branch)       — клонирование по URL (GitPython) во временную папку;
    - from_existing_path(path)  — использование уже существующей директории (checkout CI).

    Оба метода возвращают LocalRepo с веткой и коммитом, которые дальше
    передаются в конфигурацию запуска явно, а не читаются из окружения.
    """

    def __init__(self, default_branch: str = "main") -> None:
        self.default_branch = default_branch

    async def clone(self, repo: str, branch: Optional[str] = None) -> LocalRepo:
        """
        Клонирует указанный git-репозиторий во временную папку.

        :param repo: URL репозитория (https/ssh или путь до локального репо).
        :param branch: Ветка, которую нужно клонировать.
        :raises GitCloneError: при любых ошибках клонирования.
        """
        if branch is None:
            branch = self.default_branch

        logs: List[str] = []

        base_temp = ensure_base_temp_dir(BASE_TEMP_DIR)
        temp_root = Path(tempfile.mkdtemp(prefix="repo_", dir=base_temp))
        repo_dir = temp_root / "repo"

        logs.append(f"Создаём временную папку: {temp_root}")
        logs.append(f"Клонируем репозиторий {repo!r} (ветка {branch}) в {repo_dir}")

        repo_obj: Optional[GitRepo] = None
        try:
            repo_obj = await asyncio.to_thread(
                GitRepo.clone_from,
                repo,
                repo_dir,
                branch=branch,
                depth=1,
            )
            head_branch, commit = read_head(repo_obj)
            logs.append(f"Репозиторий успешно клонирован в {repo_dir} ({commit})")
        except GitCommandError as e:
            logs.append("GitPython: ошибка при выполнении clone_from.")
            logs.append(str(e))
            shutil.rmtree(temp_root, ignore_errors=True)
            raise GitCloneError(repository=repo, branch=branch, logs=logs)
        finally:
            # Явно закрываем repo_obj, чтобы на Windows не оставались залоченные файлы
            if repo_obj is not None:
                repo_obj.close()

        return LocalRepo(
            root_dir=temp_root,
            repo_path=repo_dir,
            logs=logs,
            branch=head_branch or branch,
            commit=commit,
            is_temporary=True,
        )

    async def from_existing_path(self, path: PathLike) -> LocalRepo:
        """
        Использует уже существующую директорию как рабочую.
        Ничего не копирует и не клонирует: валидирует путь и читает HEAD, если есть .git.

        :raises GitLocalPathError: если путь не существует или не является директорией.
        """
        logs: List[str] = []

        repo_path = Path(path)
        logs.append(f"Используем существующий путь как рабочую директорию: {repo_path}")

        if not repo_path.exists():
            logs.append("Ошибка: указанный путь не существует.")
            raise GitLocalPathError(path=str(repo_path), logs=logs)
        if not repo_path.is_dir():
            logs.append("Ошибка: указанный путь не является директорией.")
            raise GitLocalPathError(path=str(repo_path), logs=logs)

        branch: Optional[str] = None
        commit: Optional[str] = None
        try:
            repo_obj = GitRepo(repo_path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError):
            logs.append(
                "Директория не является git-репозиторием: ветку и коммит "
                "нужно передать явно (--branch/--commit или BRANCH_NAME/GIT_COMMIT)."
            )
        else:
            try:
                branch, commit = read_head(repo_obj)
            finally:
                repo_obj.close()
            logs.append(f"HEAD: ветка {branch or '<detached>'}, коммит {commit or '<нет>'}")

        # Важно: при is_temporary = False cleanup() не будет удалять реальный проект.
        return LocalRepo(
            root_dir=repo_path,
            repo_path=repo_path,
            logs=logs,
            branch=branch,
            commit=commit,
            is_temporary=False,
        )
