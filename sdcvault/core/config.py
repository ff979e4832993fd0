"""
Secure Configuration Module
===========================

Provides immutable, environment-aware configuration with security-first defaults.

Security Features:
- Immutable configuration after initialization
- Environment variable override support
- No secrets in default values or environment overrides
- OS-aware path handling
"""

from __future__ import annotations

import hashlib
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, Any, Optional


_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "password", "secret", "private", "token", "api_key",
    "credential", "salt", "passphrase",
})

SUPPORTED_KEY_DERIVATIONS: Final[frozenset[str]] = frozenset({
    "PBKDF2-SHA256", "Argon2id",
})
SUPPORTED_SIGNATURE_ALGORITHMS: Final[frozenset[str]] = frozenset({"RSA-PSS", "ECDSA"})
SUPPORTED_HASH_ALGORITHMS: Final[frozenset[str]] = frozenset({"SHA-256", "SHA-384", "SHA-512"})
SUPPORTED_RSA_KEY_SIZES: Final[frozenset[int]] = frozenset({2048, 3072, 4096})

MIN_KDF_ITERATIONS: Final[int] = 10_000
# Ceiling for iteration counts read from untrusted key slots
MAX_KDF_ITERATIONS: Final[int] = 6_000_000


def _is_sensitive_key(key: str) -> bool:
    """Check if a configuration key might contain sensitive data."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


def _get_default_data_dir() -> Path:
    """Get OS-appropriate default data directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif system == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    return base / "SDCVault"


def _get_default_log_dir() -> Path:
    """Get OS-appropriate default log directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / "SDCVault" / "Logs"
    elif system == "darwin":
        return Path.home() / "Library" / "Logs" / "SDCVault"
    else:
        return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state")) / "SDCVault" / "logs"


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Immutable path configuration with OS-aware defaults."""

    data_dir: Path = field(default_factory=_get_default_data_dir)
    log_dir: Path = field(default_factory=_get_default_log_dir)

    def __post_init__(self) -> None:
        for field_name in ("data_dir", "log_dir"):
            path = getattr(self, field_name)
            if not path.is_absolute():
                raise ValueError(f"{field_name} must be an absolute path: {path}")

    @property
    def database_path(self) -> Path:
        return self.data_dir / "sdcvault.db"

    @property
    def audit_log_path(self) -> Path:
        return self.log_dir / "audit.log"


@dataclass(frozen=True, slots=True)
class SecurityConfig:
    """Immutable envelope security configuration."""

    kdf_iterations: int = 600_000  # OWASP recommendation for PBKDF2-SHA256
    salt_length: int = 16
    key_length: int = 32  # AES-256
    key_derivation: str = "PBKDF2-SHA256"
    kdf_timeout_seconds: float = 30.0
    kdf_workers: int = 2

    # Repeated credential failures against one envelope raise an alert
    max_decryption_failures: int = 5
    failure_window_seconds: int = 300

    def __post_init__(self) -> None:
        if self.kdf_iterations < MIN_KDF_ITERATIONS:
            raise ValueError(f"Key derivation iterations must be at least {MIN_KDF_ITERATIONS:,}")
        if self.kdf_iterations > MAX_KDF_ITERATIONS:
            raise ValueError(f"Key derivation iterations must be at most {MAX_KDF_ITERATIONS:,}")
        if self.salt_length < 16:
            raise ValueError("Salt length must be at least 16 bytes")
        if self.key_length != 32:
            raise ValueError("Key length must be 32 bytes for AES-256-GCM")
        if self.key_derivation not in SUPPORTED_KEY_DERIVATIONS:
            raise ValueError(f"Unsupported key derivation: {self.key_derivation}")
        if self.kdf_timeout_seconds <= 0:
            raise ValueError("KDF timeout must be positive")
        if self.kdf_workers < 1:
            raise ValueError("At least one KDF worker is required")
        if self.max_decryption_failures < 1:
            raise ValueError("max_decryption_failures must be at least 1")


@dataclass(frozen=True, slots=True)
class SignatureConfig:
    """Immutable e-signature configuration."""

    algorithm: str = "RSA-PSS"
    hash_algorithm: str = "SHA-256"
    key_size: int = 2048
    certificate_validity_days: int = 365
    max_signature_age_days: int = 365
    clock_skew_seconds: int = 300

    def __post_init__(self) -> None:
        if self.algorithm not in SUPPORTED_SIGNATURE_ALGORITHMS:
            raise ValueError(f"Unsupported signature algorithm: {self.algorithm}")
        if self.hash_algorithm not in SUPPORTED_HASH_ALGORITHMS:
            raise ValueError(f"Unsupported hash algorithm: {self.hash_algorithm}")
        if self.key_size not in SUPPORTED_RSA_KEY_SIZES:
            raise ValueError(f"Unsupported key size: {self.key_size}")
        if self.certificate_validity_days < 1:
            raise ValueError("Certificate validity must be at least one day")
        if self.max_signature_age_days < 1:
            raise ValueError("Signature age limit must be at least one day")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Immutable logging configuration."""

    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = False
    enable_json: bool = False

    def __post_init__(self) -> None:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.level}")


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Immutable application configuration."""

    app_name: str = "SDCVault"
    version: str = "0.1.0"
    base_url: str = "http://localhost:5000"
    debug_mode: bool = False

    def __post_init__(self) -> None:
        if self.debug_mode:
            import warnings
            warnings.warn(
                "Debug mode is enabled. This should NEVER be used in production.",
                SecurityWarning,
                stacklevel=2,
            )


class SdcConfig:
    """
    Centralized, immutable configuration with environment override support.

    Usage:
        config = SdcConfig.load()
        iterations = config.security.kdf_iterations
        max_age = config.signature.max_signature_age_days
    """

    __slots__ = ("_paths", "_security", "_signature", "_logging", "_app", "_frozen", "_config_hash")

    _instance: Optional[SdcConfig] = None

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        security: Optional[SecurityConfig] = None,
        signature: Optional[SignatureConfig] = None,
        logging: Optional[LoggingConfig] = None,
        app: Optional[AppConfig] = None,
    ) -> None:
        object.__setattr__(self, "_frozen", False)
        object.__setattr__(self, "_paths", paths or PathConfig())
        object.__setattr__(self, "_security", security or SecurityConfig())
        object.__setattr__(self, "_signature", signature or SignatureConfig())
        object.__setattr__(self, "_logging", logging or LoggingConfig())
        object.__setattr__(self, "_app", app or AppConfig())
        object.__setattr__(self, "_config_hash", self._compute_hash())
        object.__setattr__(self, "_frozen", True)

    def _compute_hash(self) -> str:
        """Compute a hash of the configuration for integrity checking."""
        config_str = f"{self._paths}|{self._security}|{self._signature}|{self._logging}|{self._app}"
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @property
    def paths(self) -> PathConfig:
        return self._paths

    @property
    def security(self) -> SecurityConfig:
        return self._security

    @property
    def signature(self) -> SignatureConfig:
        return self._signature

    @property
    def logging(self) -> LoggingConfig:
        return self._logging

    @property
    def app(self) -> AppConfig:
        return self._app

    @property
    def config_hash(self) -> str:
        return self._config_hash

    @classmethod
    def load(cls, env_prefix: str = "SDCVAULT") -> SdcConfig:
        """
        Load configuration with environment variable overrides.

        Environment variables are prefixed with SDCVAULT_ and use double
        underscores for nested values.

        Examples:
            SDCVAULT_LOGGING__LEVEL=DEBUG
            SDCVAULT_SECURITY__KDF_ITERATIONS=300000
            SDCVAULT_SIGNATURE__ALGORITHM=ECDSA
            SDCVAULT_PATHS__DATA_DIR=/custom/path
        """
        env = cls._parse_env_overrides(env_prefix)

        paths_kwargs: dict[str, Any] = {}
        for name in ("data_dir", "log_dir"):
            if f"paths.{name}" in env:
                paths_kwargs[name] = Path(env[f"paths.{name}"])

        security_kwargs: dict[str, Any] = {}
        for name, convert in (
            ("kdf_iterations", int),
            ("key_derivation", str),
            ("kdf_timeout_seconds", float),
            ("kdf_workers", int),
            ("max_decryption_failures", int),
            ("failure_window_seconds", int),
        ):
            if f"security.{name}" in env:
                security_kwargs[name] = convert(env[f"security.{name}"])

        signature_kwargs: dict[str, Any] = {}
        for name, convert in (
            ("algorithm", str),
            ("hash_algorithm", str),
            ("key_size", int),
            ("certificate_validity_days", int),
            ("max_signature_age_days", int),
            ("clock_skew_seconds", int),
        ):
            if f"signature.{name}" in env:
                signature_kwargs[name] = convert(env[f"signature.{name}"])

        logging_kwargs: dict[str, Any] = {}
        if "logging.level" in env:
            logging_kwargs["level"] = env["logging.level"]
        for name in ("enable_console", "enable_file", "enable_json"):
            if f"logging.{name}" in env:
                logging_kwargs[name] = env[f"logging.{name}"].lower() == "true"

        # debug_mode cannot be overridden via env
        app_kwargs: dict[str, Any] = {}
        if "app.base_url" in env:
            app_kwargs["base_url"] = env["app.base_url"]

        return cls(
            paths=PathConfig(**paths_kwargs) if paths_kwargs else None,
            security=SecurityConfig(**security_kwargs) if security_kwargs else None,
            signature=SignatureConfig(**signature_kwargs) if signature_kwargs else None,
            logging=LoggingConfig(**logging_kwargs) if logging_kwargs else None,
            app=AppConfig(**app_kwargs) if app_kwargs else None,
        )

    @staticmethod
    def _parse_env_overrides(prefix: str) -> dict[str, str]:
        """Parse environment variables with the given prefix."""
        overrides: dict[str, str] = {}
        prefix_upper = f"{prefix.upper()}_"

        for key, value in os.environ.items():
            if key.startswith(prefix_upper):
                config_key = key[len(prefix_upper):].lower().replace("__", ".")

                # SECURITY: never take secrets from the environment
                if _is_sensitive_key(config_key):
                    continue

                overrides[config_key] = value

        return overrides

    @classmethod
    def get_instance(cls) -> SdcConfig:
        """Get or create the process-wide configuration instance."""
        if cls._instance is None:
            cls._instance = cls.load()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the process-wide instance. Use only for testing."""
        cls._instance = None

    def ensure_directories(self) -> None:
        """Create all required directories with owner-only permissions."""
        import stat

        for directory in (self._paths.data_dir, self._paths.log_dir):
            directory.mkdir(parents=True, exist_ok=True)
            if platform.system().lower() != "windows":
                directory.chmod(stat.S_IRWXU)

    def __repr__(self) -> str:
        return f"SdcConfig(hash={self._config_hash}, app={self._app.app_name})"

    def __setattr__(self, name: str, value: Any) -> None:
        if hasattr(self, "_frozen") and self._frozen:
            raise AttributeError("SdcConfig is immutable after initialization")
        super().__setattr__(name, value)


class SecurityWarning(UserWarning):
    """Warning for security-related configuration issues."""
    pass
