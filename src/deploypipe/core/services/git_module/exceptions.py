from typing import List, Optional

from deploypipe.exception import PreconditionError


class GitExceptions(PreconditionError):
    """
    Базовое исключение для работы с Git/рабочей директорией.

    Дополнительно хранит логи (steps), накопленные во время операции.
    """

    def __init__(
        self,
        *args,
        description: str = "Something happend when work with Git",
        logs: Optional[List[str]] = None,
    ) -> None:
        super().__init__(*args, description=description, logs=logs)


class GitCloneError(GitExceptions):
    """
    Ошибка при клонировании удалённого репозитория.
    """

    def __init__(
        self,
        repository: str,
        branch: Optional[str],
        logs: Optional[List[str]] = None,
        *args,
    ) -> None:
        description = f"Error to clone repository {repository} in branch {branch}"
        super().__init__(*args, description=description, logs=logs)
        self.repository = repository
        self.branch = branch


class GitLocalPathError(GitExceptions):
    """
    Ошибка при использовании локального пути до рабочей директории.
    """

    def __init__(
        self,
        path: str,
        logs: Optional[List[str]] = None,
        *args,
    ) -> None:
        description = f"Error to use local workspace path {path}"
        super().__init__(*args, description=description, logs=logs)
        self.path = path
