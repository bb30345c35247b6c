# core/pipeline_scripts.py
from __future__ import annotations

import re
import shlex
from typing import List, Literal, Optional

from deploypipe.core.config import ROVER_INSTALL_URL


NodeKind = Literal["setup", "install", "lint", "tests"]
NodeManager = Literal["npm", "yarn", "pnpm"]
RoverKind = Literal["install", "check", "publish"]
DockerKind = Literal["build", "cleanup"]


def _normalize_kind(kind: str) -> str:
    """
    Нормализуем суффикс задачи:
    'tests' -> 'test', остальные без изменений.
    """
    if kind == "tests":
        return "test"
    return kind


# =========================
# Node / npm / yarn / pnpm
# =========================

def required_node_major(node_version: Optional[str]) -> Optional[int]:
    """
    Нижняя граница major-версии из engines.node или .nvmrc:
    ">=18", "18.x", "^20.1", "v20" -> 18, 18, 20, 20.
    """
    if not node_version:
        return None
    match = re.search(r"\d+", node_version)
    return int(match.group()) if match else None


def make_node_script(
    kind: NodeKind,
    manager: NodeManager = "npm",
    node_version: Optional[str] = None,
) -> List[str]:
    """
    Генерирует команды для Node-сервиса.
    kind:
      - 'setup'   -> проверка node/npm в агенте
      - 'install' -> npm ci / yarn install --frozen-lockfile / pnpm install --frozen-lockfile
      - 'lint'    -> <pm> run lint
      - 'tests'   -> <pm> test
    """
    normalized = _normalize_kind(kind)

    if normalized == "setup":
        cmds = ["node --version", "npm --version"]
        major = required_node_major(node_version)
        if major is not None:
            cmds.append(
                "node -e 'const major = Number(process.versions.node.split(\".\")[0]); "
                f"if (major < {major}) {{ console.error(\"Node \" + process.versions.node + "
                f"\" is older than required {major}\"); process.exit(1); }}'"
            )
        if manager != "npm":
            cmds.append(f"corepack enable || npm i -g {manager}")
            cmds.append(f"{manager} --version")
        return cmds

    if manager == "yarn":
        install_cmd = "yarn install --frozen-lockfile"
    elif manager == "pnpm":
        install_cmd = "pnpm install --frozen-lockfile"
    elif manager == "npm":
        install_cmd = "npm ci"
    else:
        raise ValueError(f"Unsupported node manager: {manager}")

    if normalized == "install":
        return [install_cmd]
    if normalized == "lint":
        return [f"{manager} run lint"]
    if normalized == "test":
        return [f"{manager} test"]

    raise ValueError(f"Unsupported node job kind: {kind}")


# =====================
# Apollo Rover CLI
# =====================

def make_rover_script(
    kind: RoverKind,
    *,
    graph_ref: Optional[str] = None,
    schema_path: str = "schema.graphql",
    subgraph_name: Optional[str] = None,
    routing_url: Optional[str] = None,
) -> List[str]:
    """
    Генерирует команды Rover.
    kind:
      - 'install' -> ставим rover, если его ещё нет в PATH
      - 'check'   -> rover subgraph check <graph>@<variant>
      - 'publish' -> rover subgraph publish <graph>@<variant> ... --convert

    APOLLO_KEY передаётся через окружение действия, а не в командной строке.
    """
    if kind == "install":
        return [
            f"command -v rover >/dev/null 2>&1 || curl -sSL {ROVER_INSTALL_URL} | sh",
            'PATH="$HOME/.rover/bin:$PATH" rover --version',
        ]

    if not graph_ref or not subgraph_name:
        raise ValueError("graph_ref and subgraph_name are required for rover subgraph commands")

    rover = 'PATH="$HOME/.rover/bin:$PATH" rover'
    base = (
        f"subgraph {kind} {shlex.quote(graph_ref)} "
        f"--schema {shlex.quote(schema_path)} --name {shlex.quote(subgraph_name)}"
    )

    if kind == "check":
        return [f"{rover} {base}"]
    if kind == "publish":
        cmd = f"{rover} {base}"
        if routing_url:
            cmd += f" --routing-url {shlex.quote(routing_url)}"
        return [cmd + " --convert"]

    raise ValueError(f"Unsupported rover kind: {kind}")


# =========
# Docker
# =========

def make_docker_script(kind: DockerKind, image: str, tag: str = "latest") -> List[str]:
    """
    kind:
      - 'build'   -> docker build -t <image>:<tag> .
      - 'cleanup' -> удаляем собранный тег, ошибки игнорируем
    """
    ref = shlex.quote(f"{image}:{tag}")
    if kind == "build":
        return [f"docker build -t {ref} ."]
    if kind == "cleanup":
        return [f"docker rmi {ref} >/dev/null 2>&1 || true"]
    raise ValueError(f"Unsupported docker kind: {kind}")
