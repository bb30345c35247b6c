from pathlib import Path
import os
from tempfile import gettempdir

"""
Базовые настройки оркестратора.

Временные рабочие копии репозиториев складываются в системный /tmp/deploypipe
(или аналог на Windows). Можно переопределить переменной окружения DEPLOYPIPE_WORKDIR.
"""

BASE_TEMP_DIR = Path(
    os.getenv("DEPLOYPIPE_WORKDIR", gettempdir())
) / "deploypipe"

DEFAULT_DEPLOY_BRANCHES = ("main", "master", "production")

RENDER_API_URL = "https://api.render.com/v1"
ROVER_INSTALL_URL = "https://rover.apollo.dev/nix/latest"

DEPLOYMENT_RECORD_FILE = "deployment-record.json"

# файлы, которые сборка может поменять и которые восстанавливаются после запуска
RESTORED_FILES = ("package.json", "package-lock.json")
