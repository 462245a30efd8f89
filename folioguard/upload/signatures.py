"""Magic-number table for upload content sniffing.

The validator only asks :func:`detect_signature` what a payload looks like;
adding an entry here is enough to teach it a new file kind.
"""

from __future__ import annotations

from dataclasses import dataclass

MIN_SNIFF_LENGTH = 4


@dataclass(frozen=True)
class FileSignature:
    magic: bytes
    kind: str
    dangerous: bool
    # Warn instead of reject (archives may legitimately wrap documents)
    warn_only: bool = False
    # Declared media types consistent with this signature; empty means any
    media_types: frozenset[str] = frozenset()
    # Secondary marker at a fixed offset (RIFF containers)
    marker: tuple[int, bytes] | None = None

    def matches(self, content: bytes) -> bool:
        if not content.startswith(self.magic):
            return False
        if self.marker is not None:
            offset, value = self.marker
            return content[offset:offset + len(value)] == value
        return True


SIGNATURES: list[FileSignature] = [
    # Executables
    FileSignature(b"MZ", "exe", dangerous=True),
    FileSignature(b"\x7fELF", "elf", dangerous=True),
    FileSignature(b"\xca\xfe\xba\xbe", "java", dangerous=True),
    # Archives
    FileSignature(
        b"PK\x03\x04",
        "zip",
        dangerous=False,
        warn_only=True,
    ),
    # Scripts
    FileSignature(b"<?php", "php", dangerous=True),
    FileSignature(b"<%", "asp", dangerous=True),
    FileSignature(b"<script", "js", dangerous=True),
    FileSignature(b"#!", "shell", dangerous=True),
    # Benign formats, used to catch a declared type that lies
    FileSignature(b"\xff\xd8\xff", "jpeg", dangerous=False, media_types=frozenset({"image/jpeg", "image/jpg"})),
    FileSignature(b"\x89PNG\r\n\x1a\n", "png", dangerous=False, media_types=frozenset({"image/png"})),
    FileSignature(b"GIF87a", "gif", dangerous=False, media_types=frozenset({"image/gif"})),
    FileSignature(b"GIF89a", "gif", dangerous=False, media_types=frozenset({"image/gif"})),
    FileSignature(b"RIFF", "webp", dangerous=False, media_types=frozenset({"image/webp"}), marker=(8, b"WEBP")),
    FileSignature(b"%PDF-", "pdf", dangerous=False, media_types=frozenset({"application/pdf"})),
]


def detect_signature(content: bytes | None, table: list[FileSignature] | None = None) -> FileSignature | None:
    """Return the first signature ``content`` starts with, if any."""
    if not content or len(content) < MIN_SNIFF_LENGTH:
        return None
    for signature in table if table is not None else SIGNATURES:
        if signature.matches(content):
            return signature
    return None
