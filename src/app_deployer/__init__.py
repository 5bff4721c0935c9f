"""app-deployer - single-host release manager with backup-based rollback."""

__version__ = "0.1.0"

from app_deployer.core.config import Settings
from app_deployer.core.models import DeploymentAttempt, DeploymentPhase

__all__ = ["Settings", "DeploymentAttempt", "DeploymentPhase", "__version__"]
