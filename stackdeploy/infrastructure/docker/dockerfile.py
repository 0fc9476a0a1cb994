import shlex
from dataclasses import dataclass, field
from typing import List


@dataclass
class BuildSpec:
    """Stages of an application image, rendered into a Dockerfile."""

    base_image: str = "python:3.9-slim"
    system_packages: List[str] = field(
        default_factory=lambda: ["gcc", "default-libmysqlclient-dev", "pkg-config"]
    )
    requirements_file: str = "requirement.txt"
    workdir: str = "/app"
    expose_port: int = 5000
    command: List[str] = field(default_factory=lambda: ["python", "app.py"])

    @classmethod
    def from_settings(cls, settings) -> "BuildSpec":
        return cls(
            base_image=settings.BASE_IMAGE,
            requirements_file=settings.REQUIREMENTS_FILE,
            expose_port=settings.APP_CONTAINER_PORT,
            command=shlex.split(settings.START_COMMAND),
        )

    def render(self) -> str:
        lines = [f"FROM {self.base_image}", "", f"WORKDIR {self.workdir}", ""]
        if self.system_packages:
            packages = " ".join(self.system_packages)
            lines += [
                f"RUN apt-get update && apt-get install -y --no-install-recommends {packages} && \\",
                "    rm -rf /var/lib/apt/lists/*",
                "",
            ]
        lines += [
            f"COPY {self.requirements_file} .",
            f"RUN pip install --no-cache-dir -r {self.requirements_file}",
            "",
            "COPY . .",
            "",
            f"EXPOSE {self.expose_port}",
            "",
            "CMD [" + ", ".join(f'"{part}"' for part in self.command) + "]",
        ]
        return "\n".join(lines) + "\n"
