from .core import ActionInvoker
from .render import trigger_deploy, git_based_deploy_notice

__all__ = [
    "ActionInvoker",
    "trigger_deploy",
    "git_based_deploy_notice",
]
