"""
QR code rendering on top of the ``qrcode`` library.

The renderer is a swappable collaborator: anything with ``render_svg`` and
``matrix`` can stand in for it.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Final, Optional, Protocol

import qrcode
import qrcode.constants
from qrcode.exceptions import DataOverflowError
from qrcode.image.svg import SvgPathImage

from sdcvault.core.logging import get_secure_logger
from sdcvault.core.qr.descriptor import SDCQRData, build_access_url, describe, encode
from sdcvault.core.sdc.envelope import SDCEnvelope

logger = get_secure_logger(__name__)

_ERROR_CORRECTION: Final[dict[str, int]] = {
    "L": qrcode.constants.ERROR_CORRECT_L,
    "M": qrcode.constants.ERROR_CORRECT_M,
    "Q": qrcode.constants.ERROR_CORRECT_Q,
    "H": qrcode.constants.ERROR_CORRECT_H,
}

# Largest symbol the standard defines
MAX_QR_VERSION: Final[int] = 40


@dataclass(frozen=True, slots=True)
class QRCodeOptions:
    error_correction: str = "M"
    box_size: int = 10
    border: int = 4

    def __post_init__(self) -> None:
        if self.error_correction not in _ERROR_CORRECTION:
            raise ValueError(f"Unknown error correction level: {self.error_correction}")
        if self.box_size < 1:
            raise ValueError("box_size must be positive")
        if self.border < 0:
            raise ValueError("border must not be negative")


@dataclass(frozen=True, slots=True)
class QRCodeGenerationResult:
    success: bool
    descriptor: Optional[SDCQRData] = None
    payload: Optional[str] = None
    svg: Optional[str] = None
    error: Optional[str] = None


class QRRenderer(Protocol):
    def render_svg(self, text: str) -> str:
        ...

    def matrix(self, text: str) -> list[list[bool]]:
        ...


class QRCodeRenderer:
    """
    Usage:
        renderer = QRCodeRenderer(QRCodeOptions(error_correction="Q"))
        svg = renderer.render_svg(payload)
    """

    __slots__ = ("_options",)

    def __init__(self, options: Optional[QRCodeOptions] = None) -> None:
        self._options = options or QRCodeOptions()

    def _build(self, text: str) -> qrcode.QRCode:
        qr = qrcode.QRCode(
            version=None,  # smallest version that fits
            error_correction=_ERROR_CORRECTION[self._options.error_correction],
            box_size=self._options.box_size,
            border=self._options.border,
        )
        qr.add_data(text)
        qr.make(fit=True)
        if qr.version > MAX_QR_VERSION:
            raise DataOverflowError(f"Payload too large for a QR code: {len(text)} chars")
        return qr

    def render_svg(self, text: str) -> str:
        image = self._build(text).make_image(image_factory=SvgPathImage)
        buffer = io.BytesIO()
        image.save(buffer)
        return buffer.getvalue().decode("utf-8")

    def matrix(self, text: str) -> list[list[bool]]:
        """Module grid including the quiet-zone border."""
        return self._build(text).get_matrix()


def generate_sdc_qr_code(
    envelope: SDCEnvelope,
    base_url: str,
    renderer: Optional[QRRenderer] = None,
    timestamp: Optional[int] = None,
) -> QRCodeGenerationResult:
    """Build the access descriptor for ``envelope`` and render it as SVG."""
    renderer = renderer or QRCodeRenderer()
    access_url = build_access_url(base_url, envelope.id, envelope.public_key)
    descriptor = describe(envelope, access_url, timestamp)
    payload = encode(envelope, access_url, descriptor.timestamp)

    try:
        svg = renderer.render_svg(payload)
    except (DataOverflowError, ValueError) as e:
        logger.error("QR code generation failed for %s: %s", envelope.id, e)
        return QRCodeGenerationResult(False, descriptor=descriptor, payload=payload, error="QR code generation failed")

    return QRCodeGenerationResult(True, descriptor=descriptor, payload=payload, svg=svg)
