"""pm2 adapter: stop, start and inspect the managed service."""

import json
import os
import subprocess
import time
from typing import Callable, List, Optional

import structlog

from app_deployer.core.exceptions import ProcessStartFailed
from app_deployer.core.models import ManagedProcess

from .models import CommandResult, Pm2Process

logger = structlog.get_logger()


class Pm2Supervisor:
    """Controls the managed service through the pm2 CLI.

    Processes are addressed by logical name only, so a stale instance left by
    an earlier (possibly crashed) run can always be found and stopped.
    """

    def __init__(
        self,
        pm2_bin: str = "pm2",
        settle_seconds: float = 3.0,
        timeout: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.pm2_bin = pm2_bin
        self.settle_seconds = settle_seconds
        self.timeout = timeout
        self._sleep = sleep

    def _run(self, *args: str, cwd: Optional[str] = None, env: Optional[dict] = None) -> CommandResult:
        cmd = [self.pm2_bin, *args]
        logger.debug("Running pm2 command", command=" ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(args=cmd, returncode=-1, stderr=f"timed out after {self.timeout}s")
        except OSError as e:
            return CommandResult(args=cmd, returncode=127, stderr=str(e))
        return CommandResult(args=cmd, returncode=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")

    def stop(self, name: str) -> None:
        """Stop and unregister the named process. Missing processes are not errors."""
        logger.info("Stopping existing pm2 process", process_name=name)

        result = self._run("stop", name)
        if not result.ok:
            logger.info("Process not running or already stopped", process_name=name)

        result = self._run("delete", name)
        if not result.ok:
            logger.info("Process not found or already deleted", process_name=name)

        self.save()
        logger.info("Existing process stopped", process_name=name)

    def start(self, process: ManagedProcess) -> None:
        """Launch the entry file under the given name and persist the process list.

        Raises:
            ProcessStartFailed: If pm2 rejects the launch
        """
        logger.info("Starting application with pm2",
                    entry_file=process.entry_file,
                    process_name=process.name,
                    port=process.port)

        env = os.environ.copy()
        env["PORT"] = str(process.port)
        result = self._run(
            "start", process.entry_file,
            "--name", process.name,
            cwd=str(process.cwd),
            env=env,
        )
        if not result.ok:
            logger.error("Failed to start application",
                         process_name=process.name,
                         returncode=result.returncode,
                         stderr=result.stderr.strip()[:500])
            raise ProcessStartFailed(
                f"pm2 start exited with code {result.returncode}: {result.stderr.strip()[:200]}"
            )

        self.save()
        logger.info("Application started successfully", process_name=process.name)

        if self.settle_seconds > 0:
            logger.debug("Waiting for application to warm up",
                         process_name=process.name, settle_seconds=self.settle_seconds)
            self._sleep(self.settle_seconds)

    def save(self) -> bool:
        """Persist the pm2 process list so a pm2 restart can resurrect it."""
        result = self._run("save")
        if not result.ok:
            logger.warning("pm2 save failed", stderr=result.stderr.strip()[:200])
        return result.ok

    def list_processes(self) -> List[Pm2Process]:
        result = self._run("jlist")
        if not result.ok:
            logger.warning("pm2 jlist failed", stderr=result.stderr.strip()[:200])
            return []
        try:
            entries = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            logger.warning("Could not parse pm2 jlist output", error=str(e))
            return []
        return [Pm2Process.from_jlist(entry) for entry in entries]

    def status(self, name: str) -> Optional[Pm2Process]:
        """The named process as pm2 sees it, or None if unregistered."""
        for process in self.list_processes():
            if process.name == name:
                return process
        return None


def reload_proxy(command: List[str], timeout: float = 30.0) -> bool:
    """Reload the reverse proxy in front of the service; failures only warn."""
    logger.info("Reloading reverse proxy", command=" ".join(command))
    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("Reverse proxy reload failed", error=str(e))
        return False
    if result.returncode != 0:
        logger.warning("Reverse proxy reload failed or not needed", stderr=result.stderr.strip()[:200])
        return False
    return True
