"""Run ``iptables-save`` locally or over SSH and return its output."""
from __future__ import annotations

import json
import logging
import shlex
import subprocess
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import paramiko

logger = logging.getLogger(__name__)


class FirewallCommandError(RuntimeError):
    """Raised when the ruleset dump command fails."""

    def __init__(self, command: Iterable[str], exit_status: int, stderr: str) -> None:
        self.command = list(command)
        self.exit_status = exit_status
        self.stderr = stderr
        super().__init__(
            f"Command '{' '.join(self.command)}' failed with exit status "
            f"{exit_status}: {stderr.strip()}"
        )


@dataclass
class ClientConfig:
    save_command: str = "iptables-save -c"
    timeout: int = 10
    host: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    port: int = 22
    key_filename: Optional[str] = None

    @classmethod
    def from_file(cls, path: Path) -> "ClientConfig":
        with path.open("r", encoding="utf-8") as fh:
            payload: Dict[str, Any] = json.load(fh)
        return cls(**payload)

    @property
    def remote(self) -> bool:
        return bool(self.host)


class FirewallClient:
    """Fetches the counter-inclusive ruleset dump."""

    def __init__(self, config: Optional[ClientConfig] = None) -> None:
        self.config = config or ClientConfig()

    @classmethod
    def from_config_file(cls, path: Path) -> "FirewallClient":
        return cls(ClientConfig.from_file(path))

    def _connect(self) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        client.connect(
            hostname=self.config.host,
            port=self.config.port,
            username=self.config.username,
            password=self.config.password,
            key_filename=self.config.key_filename,
            timeout=self.config.timeout,
        )
        return client

    def _run_remote(self, command: List[str]) -> str:
        try:
            with closing(self._connect()) as client:
                stdin, stdout, stderr = client.exec_command(
                    " ".join(shlex.quote(part) for part in command),
                    timeout=self.config.timeout,
                )
                stdout_data = stdout.read().decode("utf-8", errors="replace")
                stderr_data = stderr.read().decode("utf-8", errors="replace")
                exit_status = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as exc:
            raise FirewallCommandError(command, -1, str(exc)) from exc
        if exit_status != 0:
            raise FirewallCommandError(command, exit_status, stderr_data)
        return stdout_data

    def _run_local(self, command: List[str]) -> str:
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                timeout=self.config.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise FirewallCommandError(
                command, -1, f"timed out after {self.config.timeout}s"
            ) from exc
        except OSError as exc:
            raise FirewallCommandError(command, -1, str(exc)) from exc
        stderr_data = completed.stderr.decode("utf-8", errors="replace")
        if completed.returncode != 0:
            raise FirewallCommandError(command, completed.returncode, stderr_data)
        return completed.stdout.decode("utf-8", errors="replace")

    def save(self) -> str:
        command = shlex.split(self.config.save_command)
        if self.config.remote:
            logger.debug("Running %s on %s", command, self.config.host)
            return self._run_remote(command)
        logger.debug("Running %s", command)
        return self._run_local(command)


__all__ = [
    "ClientConfig",
    "FirewallClient",
    "FirewallCommandError",
]
