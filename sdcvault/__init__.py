"""
SDCVault - Secure Document Container
====================================

Wraps documents in sealed, optionally encrypted ``.sdc`` envelopes with
expiry and view limits, signs documents with certificate-backed
e-signatures, and describes envelopes in QR access codes.

Security Notice:
- No secrets are logged
- Fail-closed design pattern
- All paths are OS-aware
"""

from sdcvault.core.config import SdcConfig
from sdcvault.core.logging import get_secure_logger
from sdcvault.core.sdc.service import (
    DecryptionResult,
    DocumentInfo,
    SDCCreationResult,
    SDCExportOptions,
    SDCFormatService,
)
from sdcvault.core.signature.service import ESignatureService

__version__ = "0.1.0"
__author__ = "SDCVault Team"

__all__ = [
    "DecryptionResult",
    "DocumentInfo",
    "ESignatureService",
    "SDCCreationResult",
    "SDCExportOptions",
    "SDCFormatService",
    "SdcConfig",
    "get_secure_logger",
    "__version__",
]
