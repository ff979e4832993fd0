"""
Document e-signatures backed by certificate chains.
"""

from sdcvault.core.signature.certificates import (
    Certificate,
    CertificateInfo,
    SubjectInfo,
    is_certificate_valid,
    parse_certificate,
    verify_chain,
)
from sdcvault.core.signature.service import (
    DigitalSignature,
    ESignatureService,
    GeneratedCertificate,
    SignatureOptions,
    SignerInfo,
    SigningResult,
    VerificationDetails,
    VerificationResult,
)

__all__ = [
    "Certificate",
    "CertificateInfo",
    "DigitalSignature",
    "ESignatureService",
    "GeneratedCertificate",
    "SignatureOptions",
    "SignerInfo",
    "SigningResult",
    "SubjectInfo",
    "VerificationDetails",
    "VerificationResult",
    "is_certificate_valid",
    "parse_certificate",
    "verify_chain",
]
