"""
Configuration data models for TLS clients and servers.
"""
from dataclasses import dataclass
from typing import Optional


TLS_VERSIONS = ["TLSv1.2", "TLSv1.3"]


@dataclass
class Config:
    """Main configuration class containing all connection settings."""

    # Server settings
    interface: str = "0.0.0.0"
    port: int = 8443
    cert_file: str = "certs/server.crt"
    key_file: str = "certs/server.key"
    listen_backlog: int = 100

    # Client settings
    ca_file: Optional[str] = None
    connect_timeout_seconds: float = 30.0

    # TLS settings
    minimum_tls_version: str = "TLSv1.2"
    handshake_timeout_seconds: float = 60.0
    max_pem_size: int = 32 * 1024

    # Application settings
    log_level: str = "INFO"
    log_file_path: str = "logs/easytls.log"

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_types()

    def _validate_types(self):
        """Ensure all configuration values have correct types."""
        if not isinstance(self.port, int) or not (0 <= self.port <= 65535):
            raise ValueError("port must be an integer between 0 and 65535")

        if not isinstance(self.listen_backlog, int) or self.listen_backlog <= 0:
            raise ValueError("listen_backlog must be a positive integer")

        if not isinstance(self.max_pem_size, int) or self.max_pem_size <= 0:
            raise ValueError("max_pem_size must be a positive integer")

        if not isinstance(self.handshake_timeout_seconds, (int, float)) or self.handshake_timeout_seconds <= 0:
            raise ValueError("handshake_timeout_seconds must be a positive number")

        if not isinstance(self.connect_timeout_seconds, (int, float)) or self.connect_timeout_seconds <= 0:
            raise ValueError("connect_timeout_seconds must be a positive number")

        if self.minimum_tls_version not in TLS_VERSIONS:
            raise ValueError(f"minimum_tls_version must be one of: {', '.join(TLS_VERSIONS)}")

        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("log_level must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL")


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    field: str
    message: str
    severity: str = "error"  # error, warning

    def __str__(self):
        return f"{self.severity.upper()}: {self.field} - {self.message}"


@dataclass
class ConfigValidationResult:
    """Result of configuration validation."""
    is_valid: bool
    errors: list[ConfigValidationError]
    warnings: list[ConfigValidationError]

    def __post_init__(self):
        """Separate errors and warnings."""
        all_issues = self.errors + self.warnings
        self.errors = [e for e in all_issues if e.severity == "error"]
        self.warnings = [e for e in all_issues if e.severity == "warning"]

    def has_errors(self) -> bool:
        """Check if there are any validation errors."""
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        """Check if there are any validation warnings."""
        return len(self.warnings) > 0

    def get_error_summary(self) -> str:
        """Get a formatted summary of all errors and warnings."""
        lines = []

        if self.errors:
            lines.append("Configuration Errors:")
            for error in self.errors:
                lines.append(f"  - {error}")

        if self.warnings:
            lines.append("Configuration Warnings:")
            for warning in self.warnings:
                lines.append(f"  - {warning}")

        return "\n".join(lines) if lines else "Configuration is valid"
