"""nginx front proxy config: one upstream, swapped between the blue and green app containers."""
import os
from pathlib import Path
from typing import Optional

CONF_NAME = "default.conf"
CONF_MOUNT = "/etc/nginx/conf.d"

_TEMPLATE = """\
upstream app {{
    server {host}:{port};
}}

server {{
    listen 80;

    location / {{
        proxy_pass http://app;
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
    }}
}}
"""


def render_proxy_conf(upstream_host: str, upstream_port: int) -> str:
    return _TEMPLATE.format(host=upstream_host, port=upstream_port)


def read_proxy_conf(conf_dir: Path) -> Optional[str]:
    path = conf_dir / CONF_NAME
    return path.read_text(encoding="utf-8") if path.exists() else None


def write_proxy_conf(conf_dir: Path, text: str) -> None:
    # The directory, not the file, is bind-mounted, so a replaced file is visible in the container.
    conf_dir.mkdir(parents=True, exist_ok=True)
    path = conf_dir / CONF_NAME
    tmp = path.with_suffix(".tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, path)
