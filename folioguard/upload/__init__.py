from folioguard.upload.signatures import SIGNATURES, FileSignature, detect_signature
from folioguard.upload.validator import (
    DOCUMENT_POLICY,
    IMAGE_POLICY,
    MIB,
    UploadDescriptor,
    UploadPolicy,
    UploadValidationResult,
    generate_secure_filename,
    validate_uploads,
)

__all__ = [
    "DOCUMENT_POLICY",
    "IMAGE_POLICY",
    "MIB",
    "SIGNATURES",
    "FileSignature",
    "UploadDescriptor",
    "UploadPolicy",
    "UploadValidationResult",
    "detect_signature",
    "generate_secure_filename",
    "validate_uploads",
]
