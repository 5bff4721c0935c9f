"""Data models for the pm2 supervisor adapter."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ProcessState(Enum):
    """State of a pm2-managed process, as reported by ``pm2 jlist``."""
    ONLINE = "online"
    LAUNCHING = "launching"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERRORED = "errored"
    ONE_LAUNCH_STATUS = "one-launch-status"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ProcessState":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass
class CommandResult:
    """Outcome of a single pm2 invocation."""

    args: list
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class Pm2Process:
    """Represents one entry of the pm2 process list."""

    name: str
    state: ProcessState
    pid: Optional[int] = None
    pm_id: Optional[int] = None
    restarts: int = 0
    cwd: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.state == ProcessState.ONLINE

    @classmethod
    def from_jlist(cls, entry: Dict[str, Any]) -> "Pm2Process":
        env = entry.get("pm2_env") or {}
        return cls(
            name=entry.get("name", ""),
            state=ProcessState.parse(env.get("status")),
            pid=entry.get("pid") or None,
            pm_id=entry.get("pm_id"),
            restarts=env.get("restart_time", 0) or 0,
            cwd=env.get("pm_cwd"),
        )
