from functools import cached_property
from typing import AbstractSet, Optional


def allows(branch_name: Optional[str], allow_list: AbstractSet[str]) -> bool:
    """
    Точное, регистрозависимое совпадение имени ветки со списком разрешённых.
    Никаких glob/regex: "main" не пропускает "main-hotfix" и "Main".
    """
    if not branch_name:
        return False
    return branch_name in allow_list


class BranchGate:
    """
    Решение о деплой-стадиях на весь запуск: ветка во время запуска не меняется,
    поэтому предикат считается один раз.
    """

    def __init__(self, branch_name: Optional[str], allow_list: AbstractSet[str]) -> None:
        self.branch_name = branch_name
        self.allow_list = frozenset(allow_list)

    @cached_property
    def allowed(self) -> bool:
        return allows(self.branch_name, self.allow_list)

    def reason(self) -> str:
        if self.allowed:
            return f"ветка {self.branch_name!r} разрешена для деплоя"
        allowed = ", ".join(sorted(self.allow_list))
        return f"ветка {self.branch_name!r} не входит в список деплой-веток ({allowed})"
