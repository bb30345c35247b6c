from __future__ import annotations

import click
import json
import os
from pathlib import Path
from typing import Iterable, Tuple, List, Dict, Any

from deploypipe.core.models import WorkspaceInfo


# Директории, которые игнорируем при обходе рабочей директории
IGNORED_DIRS = {
    ".git",
    "node_modules",
    ".venv",
    "venv",
    "__pycache__",
    "dist",
    "build",
    "coverage",
    ".idea",
    ".vscode",
}

LOCKFILE_TO_MANAGER: Dict[str, str] = {
    "yarn.lock": "yarn",
    "pnpm-lock.yaml": "pnpm",
    "package-lock.json": "npm",
    "npm-shrinkwrap.json": "npm",
}

RESOLVER_NAMES = {"resolvers.js", "resolvers.ts", "resolvers.mjs", "resolvers.cjs"}


def _iter_files(base_dir: Path) -> Iterable[Path]:
    """
    Обход файлов с пропуском служебных и тяжёлых директорий.
    """
    for root, dirs, files in os.walk(base_dir):
        dirs[:] = [d for d in dirs if d not in IGNORED_DIRS]
        for filename in files:
            yield Path(root) / filename


def _read_package_json(repo_path: Path, warnings: List[str]) -> Dict[str, Any]:
    pkg = repo_path / "package.json"
    if not pkg.is_file():
        return {}
    try:
        data = json.loads(pkg.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        warnings.append(f"package.json не удалось прочитать: {e}")
        return {}
    if not isinstance(data, dict):
        warnings.append("package.json не является JSON-объектом")
        return {}
    return data


def _detect_package_manager(repo_path: Path, logs: List[str]) -> Tuple[str, bool]:
    """
    Менеджер пакетов по lock-файлу в корне. Без lock-файла считаем npm.
    """
    for lockfile, manager in LOCKFILE_TO_MANAGER.items():
        if (repo_path / lockfile).is_file():
            logs.append(f"Менеджер пакетов: {manager} (по {lockfile})")
            return manager, True
    logs.append("Lock-файл не найден, используем npm")
    return "npm", False


def _detect_node_version(repo_path: Path, package: Dict[str, Any]) -> str | None:
    engines = package.get("engines") or {}
    if isinstance(engines, dict) and engines.get("node"):
        return str(engines["node"])

    nvmrc = repo_path / ".nvmrc"
    if nvmrc.is_file():
        version = nvmrc.read_text(encoding="utf-8", errors="ignore").strip()
        if version:
            return version
    return None


def _collect_graphql_files(repo_path: Path) -> Tuple[List[str], List[str]]:
    schema_files: List[str] = []
    resolver_files: List[str] = []
    for file_path in _iter_files(repo_path):
        rel = file_path.relative_to(repo_path).as_posix()
        name = file_path.name.lower()
        if name.endswith((".graphql", ".gql")):
            schema_files.append(rel)
        elif name in RESOLVER_NAMES:
            resolver_files.append(rel)
    return sorted(schema_files), sorted(resolver_files)


def inspect_workspace(repo_path: Path) -> Tuple[WorkspaceInfo, List[str], List[str]]:
    """
    Основная функция осмотра рабочей директории сервиса.
    Возвращает WorkspaceInfo + лог и варнинги.

    Отсутствие файлов здесь не ошибка: их наличие проверяет стадия preconditions.
    """
    click.echo(f"Осматриваем рабочую директорию: {repo_path}")

    logs: List[str] = [f"Осматриваем рабочую директорию: {repo_path}"]
    warnings: List[str] = []

    if not repo_path.is_dir():
        warnings.append("Рабочая директория не существует, осмотр невозможен.")
        click.echo("Рабочая директория не существует, осмотр невозможен", err=True)
        return WorkspaceInfo(), logs, warnings

    package = _read_package_json(repo_path, warnings)
    package_manager, has_lockfile = _detect_package_manager(repo_path, logs)

    scripts = package.get("scripts") or {}
    if not isinstance(scripts, dict):
        scripts = {}
    scripts = {str(k): str(v) for k, v in scripts.items()}

    entry_point = str(package.get("main") or "index.js")
    node_version = _detect_node_version(repo_path, package)
    schema_files, resolver_files = _collect_graphql_files(repo_path)

    info = WorkspaceInfo(
        package_manager=package_manager,
        node_version=node_version,
        scripts=scripts,
        entry_point=entry_point,
        schema_files=schema_files,
        resolver_files=resolver_files,
        has_package_json=(repo_path / "package.json").is_file(),
        has_lockfile=has_lockfile,
        has_dockerfile=(repo_path / "Dockerfile").is_file(),
    )

    logs.append(
        f"Node: {node_version or 'версия не указана'}, скрипты: {sorted(scripts) or 'нет'}, "
        f"точка входа: {entry_point}"
    )
    logs.append(f"GraphQL-схемы: {schema_files or 'нет'}, резолверы: {resolver_files or 'нет'}")
    click.echo(logs[-2])
    click.echo(logs[-1])

    if not has_lockfile and info.has_package_json:
        warnings.append(
            "Lock-файл не найден: npm ci упадёт. Закоммитьте package-lock.json."
        )
    for script in ("lint", "test"):
        if script not in scripts:
            warnings.append(f"В package.json нет скрипта {script!r}, стадия будет пропущена с предупреждением.")

    return info, logs, warnings
