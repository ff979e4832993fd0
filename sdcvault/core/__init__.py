"""
Core module - Contains configuration, logging, errors and the SDC components.
"""

from sdcvault.core.config import SdcConfig
from sdcvault.core.logging import get_secure_logger, SecureLogFilter

__all__ = ["SdcConfig", "get_secure_logger", "SecureLogFilter"]
