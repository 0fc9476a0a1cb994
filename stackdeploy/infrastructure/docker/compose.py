"""Compose manifest describing the live two-tier stack."""
import os
from pathlib import Path
from typing import Any, Dict

import yaml

from stackdeploy.domain.entities import StackSet, Tier
from stackdeploy.infrastructure.docker.proxy import CONF_MOUNT


def _healthcheck(test: list[str], policy) -> Dict[str, Any]:
    return {
        "test": test,
        "interval": f"{int(policy.interval)}s",
        "timeout": f"{int(policy.timeout)}s",
        "retries": policy.retries,
        "start_period": f"{int(policy.start_period)}s",
    }


def database_environment(settings) -> Dict[str, str]:
    return {
        "MYSQL_ROOT_PASSWORD": settings.DB_ROOT_PASSWORD,
        "MYSQL_DATABASE": settings.DB_NAME,
        "MYSQL_USER": settings.DB_USER,
        "MYSQL_PASSWORD": settings.DB_PASSWORD,
    }


def app_environment(settings) -> Dict[str, str]:
    return {
        "DB_HOST": settings.db_container_name,
        "DB_USER": settings.DB_USER,
        "DB_PASSWORD": settings.DB_PASSWORD,
        "DB_NAME": settings.DB_NAME,
    }


def database_healthcheck_test(settings) -> list[str]:
    return ["CMD", "mysqladmin", "ping", "-h", "localhost", "-u", "root", f"--password={settings.DB_ROOT_PASSWORD}"]


def app_healthcheck_test(settings) -> list[str]:
    return ["CMD", "curl", "-f", f"http://localhost:{settings.APP_CONTAINER_PORT}{settings.APP_HEALTH_PATH}"]


def render_compose_manifest(settings, stack: StackSet, policy) -> Dict[str, Any]:
    app = stack.tiers[Tier.APP]
    database = stack.tiers[Tier.DATABASE]
    network = settings.network_name
    volume = settings.db_volume_name

    services: Dict[str, Any] = {
        "database": {
            "container_name": database.container_name,
            "image": database.image,
            "environment": database_environment(settings),
            "ports": [f"{settings.DB_HOST_PORT}:3306"],
            "volumes": [f"{volume}:/var/lib/mysql"],
            "networks": [network],
            "restart": settings.RESTART_POLICY,
            "healthcheck": _healthcheck(database_healthcheck_test(settings), policy),
        },
        "app": {
            "container_name": app.container_name,
            "image": app.image,
            "environment": app_environment(settings),
            "ports": [f"{stack.app_port}:{settings.APP_CONTAINER_PORT}"],
            "networks": [network],
            "restart": settings.RESTART_POLICY,
            "depends_on": {"database": {"condition": "service_healthy"}},
            "healthcheck": _healthcheck(app_healthcheck_test(settings), policy),
        },
    }
    if settings.DEPLOY_STRATEGY == "blue_green":
        services["proxy"] = {
            "container_name": settings.proxy_container_name,
            "image": settings.PROXY_IMAGE,
            "ports": [f"{settings.APP_HOST_PORT}:80"],
            "volumes": [f"{settings.proxy_conf_dir}:{CONF_MOUNT}:ro"],
            "networks": [network],
            "restart": settings.RESTART_POLICY,
            "depends_on": {"app": {"condition": "service_healthy"}},
        }

    return {
        "name": settings.PROJECT_NAME,
        "services": services,
        # Created by the orchestrator, so compose must not try to own them.
        "volumes": {volume: {"name": volume, "external": True}},
        "networks": {network: {"name": network, "external": True}},
    }


def write_manifest(path: Path, manifest: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(yaml.safe_dump(manifest, sort_keys=False), encoding="utf-8")
    os.replace(tmp, path)
