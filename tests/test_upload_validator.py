"""Tests for upload validation, content sniffing and secure filenames."""

from __future__ import annotations

import re

import pytest

from folioguard.upload import (
    DOCUMENT_POLICY,
    IMAGE_POLICY,
    MIB,
    FileSignature,
    UploadDescriptor,
    UploadPolicy,
    detect_signature,
    generate_secure_filename,
    validate_uploads,
)

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 64
GIF = b"GIF89a" + b"\x00" * 32
EXE = b"MZ\x90\x00" + b"\x00" * 64
ZIP = b"PK\x03\x04" + b"\x00" * 64
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def png(name: str = "photo.png", content: bytes = PNG, content_type: str = "image/png") -> UploadDescriptor:
    return UploadDescriptor(name, content_type, len(content), content)


class TestBasicChecks:
    def test_valid_png(self):
        result = validate_uploads(png(), IMAGE_POLICY)
        assert result.ok
        assert result.errors == []
        assert result.warnings == []

    @pytest.mark.parametrize("files", [None, []])
    def test_no_file(self, files):
        result = validate_uploads(files, IMAGE_POLICY)
        assert result.errors == ["No file provided"]

    def test_too_many_files(self):
        result = validate_uploads([png() for _ in range(6)], IMAGE_POLICY)
        assert "Maximum 5 file(s) allowed" in result.errors

    def test_type_not_allowed(self):
        pdf = UploadDescriptor("doc.pdf", "application/pdf", 10, b"%PDF-1.7\n")
        result = validate_uploads(pdf, IMAGE_POLICY)
        assert any(e.startswith("Invalid file type: application/pdf") for e in result.errors)

    def test_empty_file(self):
        result = validate_uploads(UploadDescriptor("a.png", "image/png", 0, b""), IMAGE_POLICY)
        assert "Empty files are not allowed" in result.errors

    def test_filename_too_long(self):
        result = validate_uploads(png("a" * 300 + ".png"), IMAGE_POLICY)
        assert any(e.startswith("Filename too long: 304 characters") for e in result.errors)


class TestCollectsEveryError:
    def test_oversized_and_dangerous_extension_both_reported(self):
        upload = UploadDescriptor("evil.exe", "image/png", 6 * MIB)
        result = validate_uploads(upload, IMAGE_POLICY)

        assert "File too large: 6.0MB. Maximum size: 5.0MB" in result.errors
        assert "Dangerous file extension detected: evil.exe" in result.errors
        assert not result.ok

    def test_errors_across_files(self):
        files = [png("one.php"), png("two.sh")]
        result = validate_uploads(files, IMAGE_POLICY)
        assert "Dangerous file extension detected: one.php" in result.errors
        assert "Dangerous file extension detected: two.sh" in result.errors


class TestFilenameChecks:
    @pytest.mark.parametrize("name", ["../etc/passwd.png", "dir/photo.png", "dir\\photo.png"])
    def test_path_traversal(self, name):
        result = validate_uploads(png(name), IMAGE_POLICY)
        assert "Invalid filename: path traversal detected" in result.errors

    def test_control_characters(self):
        result = validate_uploads(png("a\x00b.png"), IMAGE_POLICY)
        assert "Invalid filename: contains control characters" in result.errors

    @pytest.mark.parametrize("name", ["CON.png", "con.png", "LPT1.png", "com9.jpg"])
    def test_reserved_names(self, name):
        result = validate_uploads(png(name), IMAGE_POLICY)
        assert f"Reserved filename not allowed: {name}" in result.errors

    def test_double_extension_is_warning(self):
        result = validate_uploads(png("invoice.exe.png"), IMAGE_POLICY)
        assert result.ok
        assert result.warnings == [
            "Double extension detected: invoice.exe.png. This could be a disguised executable."
        ]

    @pytest.mark.parametrize("name", ["evil.php.", "evil.php ", "evil.php. ", "EVIL.PHP . "])
    def test_trailing_dots_and_spaces_do_not_hide_extension(self, name):
        result = validate_uploads(png(name), IMAGE_POLICY)
        assert f"Dangerous file extension detected: {name}" in result.errors

    def test_trailing_dot_does_not_hide_double_extension(self):
        result = validate_uploads(png("invoice.exe.png."), IMAGE_POLICY)
        assert result.warnings == [
            "Double extension detected: invoice.exe.png.. This could be a disguised executable."
        ]

    def test_trailing_dot_reserved_name(self):
        result = validate_uploads(png("CON."), IMAGE_POLICY)
        assert "Reserved filename not allowed: CON." in result.errors


class TestContentChecks:
    def test_executable_content_rejected(self):
        result = validate_uploads(png(content=EXE), IMAGE_POLICY)
        assert "Dangerous file content detected: exe signature found" in result.errors

    def test_executables_allowed_by_policy(self):
        policy = UploadPolicy(allow_executables=True)
        assert validate_uploads(png("tool.png", content=EXE), policy).ok

    def test_declared_type_must_match_content(self):
        result = validate_uploads(png(content=JPEG), IMAGE_POLICY)
        assert "File content does not match declared type: image/png (detected jpeg)" in result.errors

    def test_jpg_alias_matches_jpeg(self):
        assert validate_uploads(png("a.jpg", JPEG, "image/jpg"), IMAGE_POLICY).ok

    def test_magic_number_check_can_be_disabled(self):
        policy = UploadPolicy(check_magic_numbers=False)
        assert validate_uploads(png(content=JPEG), policy).ok

    def test_zip_is_warning(self):
        upload = UploadDescriptor("report.docx", DOCX, len(ZIP), ZIP)
        result = validate_uploads(upload, DOCUMENT_POLICY)
        assert result.ok
        assert result.warnings == ["ZIP file detected. Contents should be scanned separately."]

    def test_image_with_embedded_script(self):
        content = GIF + b"<script>alert(1)</script>"
        result = validate_uploads(png("a.gif", content, "image/gif"), IMAGE_POLICY)
        assert "Image file contains embedded scripts" in result.errors

    def test_embedded_script_check_is_case_insensitive(self):
        content = PNG + b"<SCRIPT src=x>"
        result = validate_uploads(png(content=content), IMAGE_POLICY)
        assert "Image file contains embedded scripts" in result.errors

    def test_content_checks_skipped_without_bytes(self):
        upload = UploadDescriptor("photo.png", "image/png", 1024)
        assert validate_uploads(upload, IMAGE_POLICY).ok


class TestDetectSignature:
    def test_short_content(self):
        assert detect_signature(b"MZ") is None
        assert detect_signature(None) is None

    def test_webp_requires_marker(self):
        assert detect_signature(b"RIFF\x00\x00\x00\x00WEBPVP8 ").kind == "webp"
        assert detect_signature(b"RIFF\x00\x00\x00\x00WAVEfmt ") is None

    def test_shell_script(self):
        assert detect_signature(b"#!/bin/sh\necho hi").kind == "shell"

    def test_custom_table(self):
        table = [FileSignature(b"\x00asm", "wasm", dangerous=True)]
        assert detect_signature(b"\x00asm\x01\x00\x00\x00", table).kind == "wasm"
        assert detect_signature(PNG, table) is None


class TestSecureFilename:
    def test_format_with_prefix(self):
        name = generate_secure_filename("My Photo.JPG", prefix="blog")
        assert re.fullmatch(r"blog-\d{13}-[0-9a-f]{16}\.jpg", name)

    def test_format_without_prefix(self):
        assert re.fullmatch(r"\d{13}-[0-9a-f]{16}\.gz", generate_secure_filename("archive.tar.gz"))

    def test_extension_stripped_of_unsafe_characters(self):
        assert generate_secure_filename("x.p/h%p").endswith(".php")

    def test_names_are_unique(self):
        assert len({generate_secure_filename("a.png") for _ in range(100)}) == 100
