"""Custom exceptions for the deployer."""

from typing import Optional


class DeployerError(Exception):
    """Base exception for all deployer errors."""

    default_code = "DEPLOYER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code or self.default_code


class ConfigurationError(DeployerError):
    """Configuration error."""
    default_code = "CONFIGURATION_ERROR"


class PrerequisiteError(DeployerError):
    """A required executable is missing on the host."""
    default_code = "PREREQUISITE_MISSING"


class ArtifactError(DeployerError):
    """Release artifact errors."""
    pass


class ArtifactInvalid(ArtifactError):
    """Artifact missing, unreadable, or lacking required files."""
    default_code = "ARTIFACT_INVALID"


class ExtractionFailed(ArtifactError):
    """Archive could not be unpacked."""
    default_code = "EXTRACTION_FAILED"


class BackupFailed(DeployerError):
    """Snapshot of the live deployment could not be completed."""
    default_code = "BACKUP_FAILED"


class InstallError(DeployerError):
    """Release installation errors."""
    pass


class DeployVerificationFailed(InstallError):
    """Entry file missing from the live directory after copy."""
    default_code = "DEPLOY_VERIFICATION_FAILED"


class DependencyInstallFailed(InstallError):
    """Production dependency install exited non-zero."""
    default_code = "DEPENDENCY_INSTALL_FAILED"


class ProcessStartFailed(DeployerError):
    """Process supervisor could not launch the service."""
    default_code = "PROCESS_START_FAILED"


class HealthCheckTimeout(DeployerError):
    """Service never reported healthy within the polling budget."""
    default_code = "HEALTH_CHECK_TIMEOUT"


class RollbackUnavailable(DeployerError):
    """Rollback disabled or no backup to restore."""
    default_code = "ROLLBACK_UNAVAILABLE"


class RollbackFailed(DeployerError):
    """A rollback action failed; manual recovery required."""
    default_code = "ROLLBACK_FAILED"
