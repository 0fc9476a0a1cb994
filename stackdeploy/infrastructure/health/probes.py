import logging

import httpx

from stackdeploy.domain.entities import StackState
from stackdeploy.infrastructure.docker.docker_client import DockerClient

logger = logging.getLogger(__name__)


class MySQLPingProbe:
    """Administrative ping executed inside the database container."""

    def __init__(self, docker: DockerClient, root_password: str, timeout: float = 5.0):
        self.docker = docker
        self.root_password = root_password
        self.timeout = timeout

    async def check(self, state: StackState) -> bool:
        result = await self.docker.exec(
            state.container_id,
            ["mysqladmin", "ping", "-h", "127.0.0.1", "-u", "root", f"--password={self.root_password}", "--silent"],
            timeout=self.timeout,
        )
        return result.ok


class HttpHealthProbe:
    """HTTP GET against the application's health path on its published port."""

    def __init__(self, docker: DockerClient, url: str, timeout: float = 3.0):
        self.docker = docker
        self.url = url
        self.timeout = timeout

    async def check(self, state: StackState) -> bool:
        # A running container says nothing about the app inside it.
        if not await self.docker.is_running(state.container_id):
            logger.info(f"⚠️ {state.container_name} is not running")
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.url)
        except httpx.HTTPError as e:
            logger.debug(f"GET {self.url} failed: {type(e).__name__}")
            return False
        if response.status_code != 200:
            logger.info(f"⚠️ GET {self.url} returned {response.status_code}")
            return False
        return True
