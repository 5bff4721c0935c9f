"""
Deployment primitives.

- ArtifactStore: locate, unpack and validate release archives
- BackupManager: snapshot, restore and expire the live directory
- ReleaseInstaller: swap a release into place and install dependencies
- HealthChecker: bounded-retry HTTP probe
- DeploymentManager: drives one attempt and rolls back on failure
"""

from .artifact import ArtifactStore
from .backup import BackupManager
from .health import HealthChecker
from .installer import ReleaseInstaller
from .manager import DeploymentManager, check_prerequisites

__all__ = [
    "ArtifactStore",
    "BackupManager",
    "HealthChecker",
    "ReleaseInstaller",
    "DeploymentManager",
    "check_prerequisites",
]
