"""
Configuration service for loading and validating connection settings.
"""
import os
import configparser
from typing import Optional, Dict, Any
import logging

from ..models.config import Config, ConfigValidationError, ConfigValidationResult
from .resolver import embedded_port


class ConfigService:
    """Service for loading and validating easytls configuration."""

    def __init__(self, config_path: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self._config = None
        if config_path:
            self._config = self.load_config(config_path)

    def get_config(self) -> Config:
        """
        Get the loaded configuration.

        Returns:
            Config object

        Raises:
            ValueError: If no configuration has been loaded
        """
        if self._config is None:
            raise ValueError("No configuration loaded. Call load_config() first.")
        return self._config

    def load_config(self, config_path: str, require_server_material: bool = True) -> Config:
        """
        Load configuration from a property file.

        Args:
            config_path: Path to the configuration file
            require_server_material: Treat missing certificate/key files as errors

        Returns:
            Config object with loaded settings

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid or has validation errors
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        config_data = self._load_config_file(config_path)
        config = self._create_config_from_data(config_data)

        validation_result = self.validate_config(config, require_server_material)

        if validation_result.has_errors():
            error_summary = validation_result.get_error_summary()
            raise ValueError(f"Configuration validation failed:\n{error_summary}")

        if validation_result.has_warnings():
            warning_summary = validation_result.get_error_summary()
            self.logger.warning(f"Configuration warnings:\n{warning_summary}")

        self._config = config
        return config

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """Load configuration data from file."""
        config_parser = configparser.ConfigParser()

        try:
            config_parser.read(config_path)
        except configparser.Error as e:
            raise ValueError(f"Failed to parse configuration file: {e}")

        # Convert to flat dictionary
        config_data = {}
        for section in config_parser.sections():
            for key, value in config_parser.items(section):
                # Use section.key format for namespacing
                config_data[f"{section}.{key}"] = value

        for key, value in config_parser.defaults().items():
            if key not in config_data:
                config_data[key] = value

        return config_data

    def _create_config_from_data(self, config_data: Dict[str, Any]) -> Config:
        """Create Config object from configuration data."""
        config_mapping = {
            # Server settings
            "server.interface": ("interface", str),
            "interface": ("interface", str),
            "server.port": ("port", int),
            "port": ("port", int),
            "server.cert_file": ("cert_file", str),
            "cert_file": ("cert_file", str),
            "server.key_file": ("key_file", str),
            "key_file": ("key_file", str),
            "server.backlog": ("listen_backlog", int),
            "listen_backlog": ("listen_backlog", int),

            # Client settings
            "client.ca_file": ("ca_file", str),
            "ca_file": ("ca_file", str),
            "client.connect_timeout_seconds": ("connect_timeout_seconds", float),
            "connect_timeout_seconds": ("connect_timeout_seconds", float),

            # TLS settings
            "tls.minimum_version": ("minimum_tls_version", str),
            "minimum_tls_version": ("minimum_tls_version", str),
            "tls.handshake_timeout_seconds": ("handshake_timeout_seconds", float),
            "handshake_timeout_seconds": ("handshake_timeout_seconds", float),
            "tls.max_pem_size": ("max_pem_size", int),
            "max_pem_size": ("max_pem_size", int),

            # Application settings
            "app.log_level": ("log_level", str),
            "log_level": ("log_level", str),
            "app.log_file_path": ("log_file_path", str),
            "log_file_path": ("log_file_path", str),
        }

        config_kwargs = {}

        for config_key, raw_value in config_data.items():
            if config_key in config_mapping:
                field_name, field_type = config_mapping[config_key]
                try:
                    if field_type == int:
                        value = int(raw_value)
                    elif field_type == float:
                        value = float(raw_value)
                    elif field_type == str:
                        value = str(raw_value).strip() if raw_value is not None else None
                    else:
                        value = raw_value

                    config_kwargs[field_name] = value
                except (ValueError, TypeError) as e:
                    raise ValueError(f"Invalid value for {config_key}: {raw_value} ({e})")

        # An empty ca_file means "use the default roots"
        if not config_kwargs.get("ca_file"):
            config_kwargs["ca_file"] = None

        return Config(**config_kwargs)

    def validate_config(self, config: Config, require_server_material: bool = True) -> ConfigValidationResult:
        """
        Validate configuration settings.

        Args:
            config: Configuration object to validate
            require_server_material: Treat missing certificate/key files as errors

        Returns:
            ConfigValidationResult with validation results
        """
        errors = []
        warnings = []

        if not config.interface:
            errors.append(ConfigValidationError(
                "interface",
                "Listening interface is required"
            ))
        else:
            try:
                interface_port = embedded_port(config.interface)
            except ValueError as e:
                errors.append(ConfigValidationError("interface", str(e)))
            else:
                if interface_port is not None and interface_port != config.port:
                    warnings.append(ConfigValidationError(
                        "port",
                        f"Interface {config.interface} names port {interface_port}, "
                        f"the port setting ({config.port}) is ignored",
                        "warning"
                    ))

        if require_server_material:
            material_files = [
                ("cert_file", config.cert_file),
                ("key_file", config.key_file)
            ]

            for field_name, path in material_files:
                if not path:
                    errors.append(ConfigValidationError(
                        field_name,
                        f"{field_name} is required for a server"
                    ))
                elif not os.path.exists(path):
                    errors.append(ConfigValidationError(
                        field_name,
                        f"File not found: {path}"
                    ))
                elif os.path.getsize(path) > config.max_pem_size:
                    errors.append(ConfigValidationError(
                        field_name,
                        f"File exceeds max_pem_size ({config.max_pem_size} bytes): {path}"
                    ))

        if config.ca_file:
            if not os.path.exists(config.ca_file):
                errors.append(ConfigValidationError(
                    "ca_file",
                    f"CA file not found: {config.ca_file}"
                ))
        else:
            warnings.append(ConfigValidationError(
                "ca_file",
                "No CA file configured, clients will trust the default public roots",
                "warning"
            ))

        if config.log_file_path:
            log_dir = os.path.dirname(config.log_file_path)
            if log_dir and not os.path.exists(log_dir):
                warnings.append(ConfigValidationError(
                    "log_file_path",
                    f"Log directory does not exist: {log_dir}",
                    "warning"
                ))

        if config.port == 0:
            warnings.append(ConfigValidationError(
                "port",
                "Port 0 binds an ephemeral port chosen by the operating system",
                "warning"
            ))

        if config.handshake_timeout_seconds > 300:
            warnings.append(ConfigValidationError(
                "handshake_timeout_seconds",
                "Handshake timeout over 5 minutes lets stalled peers hold sockets open",
                "warning"
            ))

        all_issues = errors + warnings
        return ConfigValidationResult(
            is_valid=len(errors) == 0,
            errors=all_issues,
            warnings=[]
        )

    def create_default_config_file(self, config_path: str) -> None:
        """
        Create a default configuration file with example settings.

        Args:
            config_path: Path where to create the config file
        """
        config_content = """# easytls Configuration File

[server]
interface = 0.0.0.0
port = 8443
cert_file = certs/server.crt
key_file = certs/server.key
backlog = 100

[client]
ca_file =
connect_timeout_seconds = 30

[tls]
minimum_version = TLSv1.2
handshake_timeout_seconds = 60
max_pem_size = 32768

[app]
log_level = INFO
log_file_path = logs/easytls.log
"""

        config_dir = os.path.dirname(config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)

        with open(config_path, 'w') as f:
            f.write(config_content)

        self.logger.info(f"Created default configuration file: {config_path}")
