from typing import List, Optional


class CLIException(Exception):
    def __init__(self, *args, description: str = "Something happend..."):
        super().__init__(description, *args)
        self.description = description


class PipelineError(CLIException):
    """
    Базовое исключение оркестратора.

    Дополнительно хранит логи (steps), накопленные во время операции.
    """

    def __init__(
        self,
        *args,
        description: str = "Something happend while running the pipeline",
        logs: Optional[List[str]] = None,
    ) -> None:
        super().__init__(*args, description=description)
        self.logs: List[str] = logs or []


class PreconditionError(PipelineError):
    """
    Рабочая директория или обязательный файл недоступны. Всегда фатально.
    """


class ConfigurationError(PipelineError):
    """
    Обязательное значение конфигурации отсутствует или некорректно,
    и запасного поведения для него нет.
    """

    def __init__(
        self,
        key: str,
        reason: str,
        logs: Optional[List[str]] = None,
        *args,
    ) -> None:
        description = f"Invalid configuration value {key!r}: {reason}"
        super().__init__(*args, description=description, logs=logs)
        self.key = key
        self.reason = reason


class ActionFailure(PipelineError):
    """
    Внешнее действие завершилось неуспешно (ненулевой код выхода, не-2xx ответ).
    """

    def __init__(
        self,
        stage: str,
        action: str,
        detail: str = "",
        logs: Optional[List[str]] = None,
        *args,
    ) -> None:
        description = f"Action {action!r} failed in stage {stage!r}"
        if detail:
            description += f": {detail}"
        super().__init__(*args, description=description, logs=logs)
        self.stage = stage
        self.action = action
        self.detail = detail


class PipelineTimeoutError(PipelineError):
    """
    Превышен общий лимит времени на запуск пайплайна.
    """

    def __init__(self, timeout: float, logs: Optional[List[str]] = None, *args) -> None:
        description = f"Pipeline exceeded its time budget of {timeout:g}s"
        super().__init__(*args, description=description, logs=logs)
        self.timeout = timeout
