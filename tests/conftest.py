"""
Pytest configuration and fixtures for deployer tests.
"""

import zipfile
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import pytest

from app_deployer.core.config import Settings
from app_deployer.core.exceptions import DependencyInstallFailed, ProcessStartFailed
from app_deployer.core.models import ManagedProcess
from app_deployer.supervisor import Pm2Process, ProcessState
from app_deployer.deploy.health import HealthChecker
from app_deployer.deploy.installer import ReleaseInstaller


@pytest.fixture(autouse=True)
def isolated_env(tmp_path_factory, monkeypatch):
    """Keep host APP_DEPLOYER_* variables and stray .env files out of tests."""
    import os
    for key in list(os.environ):
        if key.startswith("APP_DEPLOYER_"):
            monkeypatch.delenv(key)
    workdir = tmp_path_factory.mktemp("cwd")
    monkeypatch.chdir(workdir)


def make_zip(path: Path, files: Dict[str, bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return path


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        deploy_path=str(tmp_path / "www" / "app"),
        staging_root=str(tmp_path / "staging"),
        process_name="test-app",
        port=4100,
        entry_file="entry.js",
        manifest_file="manifest.json",
        required_commands=[],
        settle_seconds=0,
        health_max_attempts=3,
        health_interval_seconds=0,
    )


@pytest.fixture
def release_zip(tmp_path):
    """Factory for release archives with entry + manifest by default."""

    def _make(name: str = "release.zip", version: str = "2", extra: Optional[Dict[str, bytes]] = None,
              omit: tuple = ()) -> Path:
        files = {
            "entry.js": f"console.log('v{version}')\n".encode(),
            "manifest.json": f'{{"name": "app", "version": "{version}"}}\n'.encode(),
        }
        for key in omit:
            files.pop(key)
        files.update(extra or {})
        return make_zip(tmp_path / name, files)

    return _make


def snapshot_tree(root: Path) -> Dict[str, bytes]:
    """Relative path -> bytes for every file under root."""
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


class ScriptedInstaller(ReleaseInstaller):
    """Release installer whose dependency step follows a scripted outcome list."""

    def __init__(self, settings: Settings, outcomes: Optional[List[bool]] = None):
        super().__init__(settings)
        self.outcomes = list(outcomes or [])
        self.dependency_runs: List[Path] = []

    def install_dependencies(self, deploy_path: Path) -> None:
        self.dependency_runs.append(deploy_path)
        ok = self.outcomes.pop(0) if self.outcomes else True
        if not ok:
            raise DependencyInstallFailed("Dependency installation exited with code 1")


class FakeSupervisor:
    """In-memory stand-in for pm2 that records calls and the release it serves."""

    def __init__(self, fail_start: Optional[List[bool]] = None):
        self.calls: List[tuple] = []
        self.running: Dict[str, str] = {}
        self.fail_start = list(fail_start or [])
        self.status_requests: List[str] = []

    def stop(self, name: str) -> None:
        self.calls.append(("stop", name))
        self.running.pop(name, None)

    def start(self, process: ManagedProcess) -> None:
        self.calls.append(("start", process.name))
        if self.fail_start and self.fail_start.pop(0):
            raise ProcessStartFailed("pm2 start exited with code 1")
        self.running[process.name] = (process.cwd / process.entry_file).read_text()

    def status(self, name: str) -> Optional[Pm2Process]:
        self.status_requests.append(name)
        if name not in self.running:
            return None
        return Pm2Process(name=name, state=ProcessState.ONLINE, pid=4242)


def mock_health(statuses: List[int]) -> HealthChecker:
    """Health checker answering with the given statuses in order (last one repeats)."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        status = statuses[min(len(seen), len(statuses) - 1)]
        seen.append(request.url)
        return httpx.Response(status, json={"status": "ok" if status < 300 else "down"})

    checker = HealthChecker(client=httpx.Client(transport=httpx.MockTransport(handler)), sleep=lambda _: None)
    checker.requests = seen
    return checker
