"""Core data models for deployment attempts."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field


class DeploymentPhase(str, Enum):
    """Phase of a single deployment attempt."""
    FRESH = "fresh"
    BACKED_UP = "backed_up"
    INSTALLED = "installed"
    PROCESS_STARTED = "process_started"
    HEALTH_VERIFIED = "health_verified"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_UNAVAILABLE = "rollback_unavailable"
    ROLLBACK_FAILED = "rollback_failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES = frozenset({
    DeploymentPhase.HEALTH_VERIFIED,
    DeploymentPhase.ROLLED_BACK,
    DeploymentPhase.ROLLBACK_UNAVAILABLE,
    DeploymentPhase.ROLLBACK_FAILED,
})


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class ReleaseArtifact(BaseModel):
    """A packaged release waiting to be installed."""

    source: str
    entry_file: str = "server.js"
    manifest_file: str = "package.json"

    @property
    def is_remote(self) -> bool:
        return self.source.startswith(("https://", "http://", "s3://"))


class ExtractedRelease(BaseModel):
    """An artifact unpacked into a temporary directory."""

    artifact: ReleaseArtifact
    path: Path
    temp_dir: Path
    sha256: str = ""

    @property
    def entry_path(self) -> Path:
        return self.path / self.artifact.entry_file

    @property
    def manifest_path(self) -> Path:
        return self.path / self.artifact.manifest_file


class BackupSnapshot(BaseModel):
    """Copy of the live deployment directory taken before mutation."""

    path: Path
    source_path: Path
    created_at: datetime = Field(default_factory=datetime.now)

    def age_days(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now()
        return (now - self.created_at).total_seconds() / 86400


class ManagedProcess(BaseModel):
    """The service instance controlled by the process supervisor."""

    name: str
    port: int
    entry_file: str
    cwd: Path
    health_path: str = "/api/health"

    @property
    def health_url(self) -> str:
        return f"http://localhost:{self.port}{self.health_path}"


class HealthResult(BaseModel):
    status: HealthStatus
    url: str
    attempts: int
    last_status_code: Optional[int] = None
    last_error: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY


class PhaseTransition(BaseModel):
    phase: DeploymentPhase
    at: datetime = Field(default_factory=datetime.now)
    details: Optional[str] = None


class DeploymentAttempt(BaseModel):
    """Transient run state carried through one deployment."""

    attempt_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    source: str
    deploy_path: Path
    process_name: str
    port: int
    enable_rollback: bool = False

    phase: DeploymentPhase = DeploymentPhase.FRESH
    history: List[PhaseTransition] = Field(default_factory=list)
    temp_path: Optional[Path] = None
    downloaded_artifact: Optional[Path] = None
    backup: Optional[BackupSnapshot] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    health: Optional[HealthResult] = None
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def advance(self, phase: DeploymentPhase, details: Optional[str] = None) -> None:
        if self.phase.is_terminal:
            raise ValueError(f"Attempt already finished in phase {self.phase.value}")
        self.phase = phase
        self.history.append(PhaseTransition(phase=phase, details=details))
        if phase.is_terminal:
            self.finished_at = datetime.now()

    @property
    def succeeded(self) -> bool:
        return self.phase == DeploymentPhase.HEALTH_VERIFIED

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1
