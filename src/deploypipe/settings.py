# deploypipe/settings.py: Pydantic settings (env vars)

from functools import lru_cache
from typing import Any, Dict, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOGO = r"""
     _            _                   _
  __| | ___ _ __ | | ___  _   _ _ __ (_)_ __   ___
 / _` |/ _ \ '_ \| |/ _ \| | | | '_ \| | '_ \ / _ \
| (_| |  __/ |_) | | (_) | |_| | |_) | | |_) |  __/
 \__,_|\___| .__/|_|\___/ \__, | .__/|_| .__/ \___|
           |_|            |___/|_|     |_|
"""


class Settings(BaseSettings):
    # Render
    render_api_key: Optional[str] = None
    render_service_id: Optional[str] = None
    render_clear_cache: bool = False

    # Apollo GraphOS
    apollo_key: Optional[str] = None
    apollo_graph_id: Optional[str] = None
    apollo_graph_variant: str = "current"
    subgraph_name: Optional[str] = None
    subgraph_routing_url: Optional[str] = None
    schema_check_fatal: bool = False

    # Рабочая директория сервиса
    schema_path: str = "schema.graphql"
    resolvers_path: str = "resolvers.js"
    docker_image: str = "subgraph"

    # Пайплайн
    deploy_branches: str = "main,master,production"
    build_timeout: float = 1800.0
    health_check_timeout: float = 60.0

    # То, что выставляет CI-агент (Jenkins)
    branch_name: Optional[str] = None
    git_commit: Optional[str] = None
    build_number: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("build_timeout", "health_check_timeout")
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value

    def secrets(self) -> Dict[str, Any]:
        return {
            "render_api_key": self.render_api_key,
            "render_service_id": self.render_service_id,
            "apollo_key": self.apollo_key,
            "graph_id": self.apollo_graph_id,
        }

    def defaults(self) -> Dict[str, Any]:
        return {
            "graph_variant": self.apollo_graph_variant,
            "subgraph_name": self.subgraph_name,
            "routing_url": self.subgraph_routing_url,
            "schema_path": self.schema_path,
            "resolvers_path": self.resolvers_path,
            "deploy_branches": self.deploy_branches,
            "build_timeout": self.build_timeout,
            "health_check_timeout": self.health_check_timeout,
            "render_clear_cache": self.render_clear_cache,
            "schema_check_fatal": self.schema_check_fatal,
            "docker_image": self.docker_image,
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
