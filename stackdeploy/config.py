from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "stackdeploy"
    LOG_LEVEL: str = Field("INFO", alias="LOG_LEVEL")
    PORT: int = Field(8080, alias="PORT")

    # Pipeline job
    JOB_NAME: str = Field("webapp-deploy", alias="JOB_NAME")
    QUEUE_SIZE: int = Field(1, alias="QUEUE_SIZE")
    RUN_HISTORY_SIZE: int = Field(50, alias="RUN_HISTORY_SIZE")

    # Revision source
    REPO_URL: str = Field("", alias="REPO_URL")
    REPO_BRANCH: str = Field("main", alias="REPO_BRANCH")
    WATCHER_ENABLED: bool = Field(True, alias="WATCHER_ENABLED")
    POLL_INTERVAL_SECONDS: float = Field(60.0, alias="POLL_INTERVAL_SECONDS")
    BACKOFF_BASE_SECONDS: float = Field(5.0, alias="BACKOFF_BASE_SECONDS")
    BACKOFF_MAX_SECONDS: float = Field(300.0, alias="BACKOFF_MAX_SECONDS")
    GIT_TIMEOUT_SECONDS: float = Field(120.0, alias="GIT_TIMEOUT_SECONDS")

    # Filesystem
    WORK_DIR: Path = Field(Path("/var/lib/stackdeploy/work"), alias="WORK_DIR")
    STATE_DIR: Path = Field(Path("/var/lib/stackdeploy/state"), alias="STATE_DIR")

    # Images
    PROJECT_NAME: str = Field("webapp", alias="PROJECT_NAME")
    IMAGE_REPOSITORY: str = Field("webapp", alias="IMAGE_REPOSITORY")
    BUILD_TIMEOUT_SECONDS: float = Field(900.0, alias="BUILD_TIMEOUT_SECONDS")
    BASE_IMAGE: str = Field("python:3.9-slim", alias="BASE_IMAGE")
    REQUIREMENTS_FILE: str = Field("requirement.txt", alias="REQUIREMENTS_FILE")
    START_COMMAND: str = Field("python app.py", alias="START_COMMAND")

    # Stack layout
    DEPLOY_STRATEGY: Literal["blue_green", "recreate"] = Field("blue_green", alias="DEPLOY_STRATEGY")
    DB_IMAGE: str = Field("mysql:8.0", alias="DB_IMAGE")
    DB_HOST_PORT: int = Field(3306, alias="DB_HOST_PORT")
    APP_CONTAINER_PORT: int = Field(5000, alias="APP_CONTAINER_PORT")
    APP_HOST_PORT: int = Field(5000, alias="APP_HOST_PORT")
    # blue_green publishes each slot on its own port and fronts them with a proxy on APP_HOST_PORT.
    APP_BLUE_PORT: int = Field(5001, alias="APP_BLUE_PORT")
    APP_GREEN_PORT: int = Field(5002, alias="APP_GREEN_PORT")
    PROXY_IMAGE: str = Field("nginx:1.25-alpine", alias="PROXY_IMAGE")
    APP_PROBE_HOST: str = Field("127.0.0.1", alias="APP_PROBE_HOST")
    APP_HEALTH_PATH: str = Field("/health", alias="APP_HEALTH_PATH")
    RESTART_POLICY: str = Field("unless-stopped", alias="RESTART_POLICY")

    # Database credentials are plain configuration; no secret store is involved.
    DB_NAME: str = Field("appdb", alias="DB_NAME")
    DB_USER: str = Field("app", alias="DB_USER")
    DB_PASSWORD: str = Field("app", alias="DB_PASSWORD")
    DB_ROOT_PASSWORD: str = Field("root", alias="DB_ROOT_PASSWORD")

    # Health gate
    HEALTH_INTERVAL_SECONDS: float = Field(10.0, alias="HEALTH_INTERVAL_SECONDS")
    HEALTH_TIMEOUT_SECONDS: float = Field(5.0, alias="HEALTH_TIMEOUT_SECONDS")
    HEALTH_RETRIES: int = Field(5, alias="HEALTH_RETRIES")
    HEALTH_START_PERIOD_SECONDS: float = Field(30.0, alias="HEALTH_START_PERIOD_SECONDS")

    model_config = SettingsConfigDict(env_file=".env", populate_by_name=True, extra="ignore")

    @property
    def network_name(self) -> str:
        return f"{self.PROJECT_NAME}-net"

    @property
    def db_volume_name(self) -> str:
        return f"{self.PROJECT_NAME}-db-data"

    @property
    def db_container_name(self) -> str:
        return f"{self.PROJECT_NAME}-db"

    def app_container_name(self, slot: str) -> str:
        return f"{self.PROJECT_NAME}-app-{slot}"

    @property
    def proxy_container_name(self) -> str:
        return f"{self.PROJECT_NAME}-proxy"

    @property
    def proxy_conf_dir(self) -> Path:
        return self.STATE_DIR / "proxy"


settings = Settings()
