"""Emulator process lifecycle in a Docker container.

Drives the `docker` CLI through subprocess: one container per session,
named with a shared prefix so every container a test run spawned can be
removed in bulk.
"""

from __future__ import annotations

import logging
import os
import random
import shlex
import string
import subprocess

from emutest.lib.config import (
    BASE_NAME,
    DEFAULT_EMU_IMG,
    DEFAULT_START_DELAY_MS,
    DEFAULT_TRANSPORT_PORT,
    DEFAULT_VNC_PORT,
    StartOptions,
)
from emutest.lib.errors import RuntimeCommandError

log = logging.getLogger(__name__)

CONTAINER_ELF = "/app/bin/app.elf"


def random_container_name(prefix: str = BASE_NAME, length: int = 5) -> str:
    """Unique-enough container name: prefix + random alphanumerics."""
    alphabet = string.ascii_letters + string.digits
    return prefix + "".join(random.choices(alphabet, k=length))


def _docker(args: list[str], *, docker: str = "docker", check: bool = True) -> subprocess.CompletedProcess:
    cmd = [docker, *args]
    log.debug("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except FileNotFoundError as e:
        msg = f"Container runtime not found: {docker}"
        raise RuntimeCommandError(msg) from e
    if check and result.returncode != 0:
        msg = f"{' '.join(cmd)} failed ({result.returncode}): {result.stderr.strip()}"
        raise RuntimeCommandError(msg)
    return result


class DockerEmulatorRuntime:
    """One emulator container bound to a firmware ELF."""

    def __init__(
        self,
        elf_path: str,
        image: str = DEFAULT_EMU_IMG,
        name: str | None = None,
        *,
        vnc_port: int = DEFAULT_VNC_PORT,
        transport_port: int = DEFAULT_TRANSPORT_PORT,
        docker: str = "docker",
    ) -> None:
        self.elf_path = os.path.abspath(elf_path)
        self.image = image
        self.name = name or random_container_name()
        self.vnc_port = vnc_port
        self.transport_port = transport_port
        self.docker = docker
        self.start_delay = DEFAULT_START_DELAY_MS
        self.container_id: str | None = None

    @property
    def running(self) -> bool:
        return self.container_id is not None

    def build_run_cmd(self, options: StartOptions) -> list[str]:
        """docker run arguments (without the leading executable)."""
        image = options.image or self.image
        cmd = [
            "run", "-d", "--rm",
            "--name", self.name,
            "-v", f"{self.elf_path}:{CONTAINER_ELF}:ro",
            "-p", f"{self.vnc_port}:{self.vnc_port}",
            "-p", f"{self.transport_port}:{self.transport_port}",
        ]
        if options.x11:
            cmd.extend([
                "-e", f"DISPLAY={os.environ.get('DISPLAY', ':0')}",
                "-v", "/tmp/.X11-unix:/tmp/.X11-unix",
            ])
        cmd.append(image)
        cmd.extend([
            "--display", "qt" if options.x11 else "headless",
            "--vnc-port", str(self.vnc_port),
            "--api-port", str(self.transport_port),
        ])
        if options.custom:
            cmd.extend(shlex.split(options.custom))
        cmd.append(CONTAINER_ELF)
        return cmd

    def run(self, options: StartOptions | None = None) -> None:
        """Start the container. Raises RuntimeCommandError on failure."""
        options = options or StartOptions()
        if self.running:
            msg = f"Container {self.name} is already running"
            raise RuntimeCommandError(msg)
        self.start_delay = options.start_delay
        result = _docker(self.build_run_cmd(options), docker=self.docker)
        self.container_id = result.stdout.strip() or self.name
        log.info("Started container %s (%s)", self.name, self.container_id[:12])

    def stop(self) -> None:
        """Remove the container. A no-op when it is not running."""
        if not self.running:
            return
        result = _docker(["rm", "-f", self.name], docker=self.docker, check=False)
        if result.returncode != 0:
            log.warning("Could not remove container %s: %s", self.name, result.stderr.strip())
        self.container_id = None

    @staticmethod
    def kill_containers_by_name(prefix: str = BASE_NAME, docker: str = "docker") -> list[str]:
        """Force-remove every container whose name matches the prefix."""
        result = _docker(["ps", "-a", "-q", "--filter", f"name={prefix}"], docker=docker)
        ids = result.stdout.split()
        if ids:
            _docker(["rm", "-f", *ids], docker=docker)
            log.info("Removed %d container(s) matching %s", len(ids), prefix)
        return ids

    @staticmethod
    def check_and_pull_image(image: str = DEFAULT_EMU_IMG, docker: str = "docker") -> bool:
        """Pull the image unless it is present locally. Returns True if pulled."""
        if _docker(["image", "inspect", image], docker=docker, check=False).returncode == 0:
            log.debug("Image %s already present", image)
            return False
        log.info("Pulling %s", image)
        _docker(["pull", image], docker=docker)
        return True
