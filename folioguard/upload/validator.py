"""Upload validation.

Every check runs for every file and the findings are collected, so a caller
gets the complete report instead of the first failure.
"""

from __future__ import annotations

import re
import secrets
import time
from dataclasses import dataclass, field
from typing import Sequence

from folioguard.sanitizer.patterns import ALL_CONTROL_CHARS_RE
from folioguard.upload.signatures import FileSignature, detect_signature

MIB = 1024 * 1024

IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif")
DOCUMENT_TYPES = (
    "application/pdf",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)

DANGEROUS_EXTENSIONS = (
    ".exe", ".bat", ".cmd", ".scr", ".pif", ".com", ".jar",
    ".php", ".asp", ".jsp", ".js", ".vbs", ".ps1", ".sh",
    ".msi", ".deb", ".rpm", ".dmg", ".app", ".ipa", ".apk",
)
RESERVED_NAMES = frozenset(
    {"CON", "PRN", "AUX", "NUL"}
    | {f"COM{i}" for i in range(1, 10)}
    | {f"LPT{i}" for i in range(1, 10)}
)
EMBEDDED_SCRIPT_MARKERS = (b"<script", b"javascript:", b"<?php")

_EXTENSION_SAFE_RE = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class UploadDescriptor:
    filename: str
    content_type: str
    size: int
    content: bytes | None = None


@dataclass(frozen=True)
class UploadPolicy:
    allowed_types: tuple[str, ...] = IMAGE_TYPES
    max_size: int = 5 * MIB
    max_files: int = 1
    check_magic_numbers: bool = True
    allow_executables: bool = False
    max_filename_length: int = 255

    @property
    def accepts_images(self) -> bool:
        return any(t.startswith("image/") for t in self.allowed_types)


IMAGE_POLICY = UploadPolicy(allowed_types=IMAGE_TYPES, max_size=5 * MIB, max_files=5)
DOCUMENT_POLICY = UploadPolicy(allowed_types=DOCUMENT_TYPES, max_size=10 * MIB, max_files=3)


@dataclass
class UploadValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _megabytes(size: int) -> str:
    return f"{size / MIB:.1f}MB"


def _check_filename(filename: str, policy: UploadPolicy, result: UploadValidationResult) -> None:
    # Windows drops trailing dots and spaces when storing, so "a.php. " is a.php
    stored = filename.rstrip(". ")
    lowered = stored.lower()

    if len(filename) > policy.max_filename_length:
        result.errors.append(
            f"Filename too long: {len(filename)} characters. Maximum: {policy.max_filename_length}"
        )
    if lowered.endswith(DANGEROUS_EXTENSIONS):
        result.errors.append(f"Dangerous file extension detected: {filename}")
    if ".." in filename or "/" in filename or "\\" in filename:
        result.errors.append("Invalid filename: path traversal detected")
    if ALL_CONTROL_CHARS_RE.search(filename):
        result.errors.append("Invalid filename: contains control characters")
    if stored.split(".")[0].upper() in RESERVED_NAMES:
        result.errors.append(f"Reserved filename not allowed: {filename}")

    extensions = stored.split(".")[1:]
    if len(extensions) > 1 and f".{extensions[-2].lower()}" in DANGEROUS_EXTENSIONS:
        result.warnings.append(
            f"Double extension detected: {filename}. This could be a disguised executable."
        )


def _check_signature(
    upload: UploadDescriptor,
    signature: FileSignature | None,
    policy: UploadPolicy,
    result: UploadValidationResult,
) -> None:
    if signature is None or policy.allow_executables:
        return
    if signature.dangerous:
        result.errors.append(f"Dangerous file content detected: {signature.kind} signature found")
    elif signature.warn_only:
        result.warnings.append(
            f"{signature.kind.upper()} file detected. Contents should be scanned separately."
        )
    elif signature.media_types and upload.content_type not in signature.media_types:
        result.errors.append(
            f"File content does not match declared type: {upload.content_type} "
            f"(detected {signature.kind})"
        )


def _validate_one(upload: UploadDescriptor, policy: UploadPolicy, result: UploadValidationResult) -> None:
    if upload.content_type not in policy.allowed_types:
        result.errors.append(
            f"Invalid file type: {upload.content_type}. Allowed types: {', '.join(policy.allowed_types)}"
        )
    if upload.size > policy.max_size:
        result.errors.append(
            f"File too large: {_megabytes(upload.size)}. Maximum size: {_megabytes(policy.max_size)}"
        )
    if upload.size == 0:
        result.errors.append("Empty files are not allowed")

    if upload.filename:
        _check_filename(upload.filename, policy, result)

    if upload.content is None:
        return
    if policy.check_magic_numbers:
        _check_signature(upload, detect_signature(upload.content), policy, result)
    if policy.accepts_images and upload.content_type.startswith("image/"):
        sample = upload.content.lower()
        if any(marker in sample for marker in EMBEDDED_SCRIPT_MARKERS):
            result.errors.append("Image file contains embedded scripts")


def validate_uploads(
    files: UploadDescriptor | Sequence[UploadDescriptor] | None,
    policy: UploadPolicy = IMAGE_POLICY,
) -> UploadValidationResult:
    """Validate one or more uploads against ``policy``."""
    result = UploadValidationResult()
    if isinstance(files, UploadDescriptor):
        files = [files]
    if not files:
        result.errors.append("No file provided")
        return result

    if len(files) > policy.max_files:
        result.errors.append(f"Maximum {policy.max_files} file(s) allowed")
    for upload in files:
        _validate_one(upload, policy, result)
    return result


def generate_secure_filename(original: str | None, prefix: str = "") -> str:
    """``[prefix-]<epoch ms>-<16 hex>.<ext>``; only the sanitized extension of
    the client name survives."""
    timestamp = int(time.time() * 1000)
    random_part = secrets.token_hex(8)
    extension = original.rsplit(".", 1)[-1].lower() if original else ""
    safe_extension = _EXTENSION_SAFE_RE.sub("", extension)
    stem = f"{prefix}-{timestamp}-{random_part}" if prefix else f"{timestamp}-{random_part}"
    return f"{stem}.{safe_extension}"
