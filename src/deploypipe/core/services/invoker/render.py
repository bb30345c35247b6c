from __future__ import annotations

from typing import Any, Dict, Optional

from deploypipe.model import Action, ActionKind
from deploypipe.core.config import RENDER_API_URL


def deploys_url(service_id: str) -> str:
    return f"{RENDER_API_URL}/services/{service_id}/deploys"


def deploy_body(clear_cache: bool = False) -> Dict[str, Any]:
    # Render API ожидает строку "clear" | "do_not_clear", а не bool
    return {"clearCache": "clear" if clear_cache else "do_not_clear"}


def trigger_deploy(
    *,
    api_key: str,
    service_id: str,
    clear_cache: bool = False,
    fallback_message: Optional[str] = None,
) -> Action:
    """
    HTTP-действие запуска деплоя на Render.

    Неуспешный ответ не валит стадию: срабатывает fallback-лог
    (Render всё равно задеплоит коммит из Git через auto-deploy).
    """
    fallback = Action(
        name="render_fallback",
        kind=ActionKind.LOG,
        message=fallback_message
        or "Render API недоступен или вернул ошибку, полагаемся на auto-deploy из Git.",
        degraded=True,
    )
    return Action(
        name="render_trigger_deploy",
        kind=ActionKind.HTTP,
        method="POST",
        url=deploys_url(service_id),
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        },
        json_body=deploy_body(clear_cache),
        secrets=[api_key],
        fallback=fallback,
    )


def git_based_deploy_notice() -> Action:
    """
    Заглушка, когда ключа или id сервиса нет: деплой произойдёт по push в Git.
    """
    return Action(
        name="render_git_deploy",
        kind=ActionKind.LOG,
        message=(
            "RENDER_API_KEY или RENDER_SERVICE_ID не заданы, "
            "деплой выполнит Render auto-deploy по push в ветку."
        ),
        degraded=True,
    )
