"""
QR access descriptors for SDC envelopes.
"""

from sdcvault.core.qr.descriptor import (
    DescriptorParseResult,
    QRMetadata,
    SDCQRData,
    build_access_url,
    decode,
    encode,
)
from sdcvault.core.qr.renderer import (
    QRCodeGenerationResult,
    QRCodeOptions,
    QRCodeRenderer,
    generate_sdc_qr_code,
)

__all__ = [
    "DescriptorParseResult",
    "QRCodeGenerationResult",
    "QRCodeOptions",
    "QRCodeRenderer",
    "QRMetadata",
    "SDCQRData",
    "build_access_url",
    "decode",
    "encode",
    "generate_sdc_qr_code",
]
