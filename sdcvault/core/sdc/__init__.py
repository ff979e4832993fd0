"""
SDC envelope format and access policy.

The service lives in ``sdcvault.core.sdc.service``; it is not imported
here because it depends on the QR module, which depends on the envelope.
"""

from sdcvault.core.sdc.envelope import (
    FILE_FORMAT_VERSION,
    FLAG_ENCRYPTED,
    HEADER_SIZE,
    MAGIC_BYTES,
    SDC_EXTENSION,
    AccessInfo,
    KeySlot,
    SDCEnvelope,
    SDCMetadata,
    SecurityInfo,
)
from sdcvault.core.sdc.policy import AccessDecision, AccessPolicy

__all__ = [
    "FILE_FORMAT_VERSION",
    "FLAG_ENCRYPTED",
    "HEADER_SIZE",
    "MAGIC_BYTES",
    "SDC_EXTENSION",
    "AccessDecision",
    "AccessInfo",
    "AccessPolicy",
    "KeySlot",
    "SDCEnvelope",
    "SDCMetadata",
    "SecurityInfo",
]
