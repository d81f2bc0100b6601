"""
Upload validation and image processing.

Validation checks, in order: size, MIME allow-list, extension/MIME agreement,
magic bytes, and (for SVG) script-like content. Raster images are
auto-rotated, stripped of metadata, capped at a maximum dimension and
re-encoded to WebP; width-based variants are generated alongside.
"""
from __future__ import annotations

import io
import json
import os
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime

from PIL import Image, ImageOps, UnidentifiedImageError

ALLOWED_TYPES: dict[str, tuple[str, ...]] = {
    # Images
    "image/jpeg": (".jpg", ".jpeg"),
    "image/png": (".png",),
    "image/gif": (".gif",),
    "image/webp": (".webp",),
    "image/svg+xml": (".svg",),
    "image/bmp": (".bmp",),
    "image/tiff": (".tif", ".tiff"),
    # Documents
    "application/pdf": (".pdf",),
    "application/msword": (".doc",),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": (".docx",),
    "application/vnd.ms-excel": (".xls",),
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": (".xlsx",),
    "application/vnd.ms-powerpoint": (".ppt",),
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": (".pptx",),
    # Audio
    "audio/mpeg": (".mp3",),
    "audio/wav": (".wav",),
    "audio/ogg": (".ogg", ".oga"),
    "audio/mp4": (".m4a",),
    "audio/aac": (".aac",),
    "audio/flac": (".flac",),
    "audio/webm": (".weba",),
    # Video
    "video/mp4": (".mp4", ".m4v"),
    "video/webm": (".webm",),
    "video/ogg": (".ogv",),
    "video/quicktime": (".mov",),
    "video/x-msvideo": (".avi",),
    "video/mpeg": (".mpeg", ".mpg"),
    # Archives
    "application/zip": (".zip",),
    "application/x-rar-compressed": (".rar",),
    "application/gzip": (".gz",),
    "application/x-7z-compressed": (".7z",),
    # Text / data
    "text/plain": (".txt", ".log"),
    "text/markdown": (".md",),
    "text/csv": (".csv",),
    "application/json": (".json",),
    "application/xml": (".xml",),
}

_OLE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
_ZIP = b"PK\x03\x04"
_RIFF = b"RIFF"
_EBML = b"\x1a\x45\xdf\xa3"
_OGG = b"OggS"

# (offset, prefix) pairs; any match accepts the file
FILE_SIGNATURES: dict[str, tuple[tuple[int, bytes], ...]] = {
    "image/jpeg": ((0, b"\xff\xd8\xff"),),
    "image/png": ((0, b"\x89PNG\r\n\x1a\n"),),
    "image/gif": ((0, b"GIF87a"), (0, b"GIF89a")),
    "image/webp": ((0, _RIFF),),
    "image/svg+xml": ((0, b"<?xml"), (0, b"<svg")),
    "image/bmp": ((0, b"BM"),),
    "image/tiff": ((0, b"II*\x00"), (0, b"MM\x00*")),
    "application/pdf": ((0, b"%PDF"),),
    "application/msword": ((0, _OLE),),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ((0, _ZIP),),
    "application/vnd.ms-excel": ((0, _OLE),),
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ((0, _ZIP),),
    "application/vnd.ms-powerpoint": ((0, _OLE),),
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": ((0, _ZIP),),
    "audio/mpeg": ((0, b"\xff\xfb"), (0, b"\xff\xfa"), (0, b"\xff\xf3"), (0, b"\xff\xf2"), (0, b"ID3")),
    "audio/wav": ((0, _RIFF),),
    "audio/ogg": ((0, _OGG),),
    "audio/mp4": ((4, b"ftyp"),),
    "audio/aac": ((0, b"\xff\xf1"), (0, b"\xff\xf9")),
    "audio/flac": ((0, b"fLaC"),),
    "audio/webm": ((0, _EBML),),
    "video/mp4": ((4, b"ftyp"),),
    "video/webm": ((0, _EBML),),
    "video/ogg": ((0, _OGG),),
    "video/quicktime": ((4, b"ftyp"), (4, b"moov"), (4, b"wide"), (4, b"mdat")),
    "video/x-msvideo": ((0, _RIFF),),
    "video/mpeg": ((0, b"\x00\x00\x01\xba"), (0, b"\x00\x00\x01\xb3")),
    "application/zip": ((0, _ZIP), (0, b"PK\x05\x06")),
    "application/x-rar-compressed": ((0, b"Rar!\x1a\x07"),),
    "application/gzip": ((0, b"\x1f\x8b"),),
    "application/x-7z-compressed": ((0, b"7z\xbc\xaf\x27\x1c"),),
    "application/xml": ((0, b"<?xml"),),
}

PROCESSABLE_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")

TYPE_GROUPS: dict[str, tuple[str, ...]] = {
    "images": ("image/",),
    "videos": ("video/",),
    "audio": ("audio/",),
    "documents": ("application/pdf", "application/msword", "application/vnd.", "text/"),
}

_SVG_DANGEROUS = (
    re.compile(r"<script[\s>]", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    re.compile(r"<!--.*?-->", re.IGNORECASE | re.DOTALL),
)


@dataclass(frozen=True)
class VariantSpec:
    name: str
    width: int
    height: int | None
    quality: int
    fit: str  # "cover" or "inside"


IMAGE_VARIANTS: tuple[VariantSpec, ...] = (
    VariantSpec("thumbnail", 150, 150, 80, "cover"),
    VariantSpec("small", 400, None, 85, "inside"),
    VariantSpec("medium", 800, None, 85, "inside"),
    VariantSpec("large", 1200, None, 85, "inside"),
    VariantSpec("xlarge", 1920, None, 90, "inside"),
)
ORIGINAL_WEBP_QUALITY = 90


class UploadError(ValueError):
    """Rejected upload; message is safe to show the client."""


@dataclass
class ProcessedFile:
    key: str
    filename: str
    data: bytes
    mime_type: str
    width: int | None = None
    height: int | None = None
    variant_name: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ProcessedUpload:
    original: ProcessedFile
    variants: list[ProcessedFile] = field(default_factory=list)


# ---------- Validation ----------
def validate_extension(filename: str, mime_type: str) -> bool:
    ext = os.path.splitext(filename or "")[1].lower()
    return ext in ALLOWED_TYPES.get(mime_type, ())


def validate_magic_bytes(data: bytes, mime_type: str) -> bool:
    if mime_type not in ALLOWED_TYPES:
        return False
    if mime_type.startswith("text/") or mime_type == "application/json":
        if b"\x00" in data:
            return False
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            return False
        if mime_type == "application/json":
            try:
                json.loads(text)
            except ValueError:
                return False
        return True
    signatures = FILE_SIGNATURES.get(mime_type)
    if not signatures:
        return True
    return any(data[off:off + len(sig)] == sig for off, sig in signatures)


def svg_is_safe(data: bytes) -> bool:
    head = data[:10000].decode("utf-8", errors="ignore")
    return not any(p.search(head) for p in _SVG_DANGEROUS)


def validate_upload(data: bytes, filename: str, mime_type: str, *, max_size_bytes: int) -> None:
    """Raise UploadError if the file must be rejected."""
    if len(data) > max_size_bytes:
        raise UploadError(f"File too large. Maximum size is {round(max_size_bytes / (1024 * 1024))}MB")
    if not data:
        raise UploadError("File is empty")
    if mime_type not in ALLOWED_TYPES:
        raise UploadError(f"File type not allowed: {mime_type or 'unknown'}")
    if not validate_extension(filename, mime_type):
        raise UploadError("File extension does not match file type")
    if not validate_magic_bytes(data, mime_type):
        raise UploadError("File content does not match declared type")
    if mime_type == "image/svg+xml" and not svg_is_safe(data):
        raise UploadError("File contains potentially dangerous content")


def media_type_group(mime_type: str) -> str:
    for group, prefixes in TYPE_GROUPS.items():
        if any(mime_type.startswith(p) for p in prefixes):
            return group
    return "other"


# ---------- Naming ----------
def storage_dir(now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    return f"uploads/{now:%Y}/{now:%m}/{now:%d}"


def random_base_name() -> str:
    return f"{secrets.token_hex(4)}-{secrets.token_hex(4)}"


# ---------- Image pipeline ----------
def _prepare(img: Image.Image) -> Image.Image:
    img = ImageOps.exif_transpose(img)
    if img.mode not in ("RGB", "RGBA"):
        has_alpha = img.mode in ("LA", "PA") or (img.mode == "P" and "transparency" in img.info)
        img = img.convert("RGBA" if has_alpha else "RGB")
    return img


def _encode_webp(img: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="WEBP", quality=quality, method=4)
    return buf.getvalue()


def _resize_for_variant(img: Image.Image, spec: VariantSpec) -> Image.Image:
    if spec.fit == "cover" and spec.height:
        return ImageOps.fit(img, (spec.width, spec.height), Image.Resampling.LANCZOS)
    w, h = img.size
    if w <= spec.width:
        return img.copy()
    new_h = max(1, round(h * spec.width / w))
    return img.resize((spec.width, new_h), Image.Resampling.LANCZOS)


def should_generate(spec: VariantSpec, width: int, height: int) -> bool:
    """Skip variants the original is not larger than."""
    return not (width <= spec.width and (spec.height is None or height <= spec.height))


def process_image(
    data: bytes,
    mime_type: str,
    *,
    max_dimension: int = 4096,
    generate_variants: bool = True,
    now: datetime | None = None,
) -> ProcessedUpload:
    try:
        src = Image.open(io.BytesIO(data))
        src.load()
    except Image.DecompressionBombError as e:
        raise UploadError("Image dimensions too large") from e
    except (UnidentifiedImageError, OSError) as e:
        raise UploadError("Image could not be decoded") from e

    directory = storage_dir(now)
    base = random_base_name()

    if mime_type == "image/gif":
        # Re-encoding would drop animation frames; store as uploaded.
        fname = f"{base}-original.gif"
        original = ProcessedFile(
            key=f"{directory}/{fname}",
            filename=fname,
            data=data,
            mime_type="image/gif",
            width=src.width,
            height=src.height,
        )
        return ProcessedUpload(original=original)

    img = _prepare(src)
    src_w, src_h = img.size

    capped = img
    if src_w > max_dimension or src_h > max_dimension:
        capped = img.copy()
        capped.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)

    fname = f"{base}-original.webp"
    original = ProcessedFile(
        key=f"{directory}/{fname}",
        filename=fname,
        data=_encode_webp(capped, ORIGINAL_WEBP_QUALITY),
        mime_type="image/webp",
        width=capped.width,
        height=capped.height,
    )
    result = ProcessedUpload(original=original)
    if not generate_variants:
        return result

    for spec in IMAGE_VARIANTS:
        if not should_generate(spec, src_w, src_h):
            continue
        resized = _resize_for_variant(img, spec)
        vname = f"{base}-{spec.name}.webp"
        result.variants.append(
            ProcessedFile(
                key=f"{directory}/{vname}",
                filename=vname,
                data=_encode_webp(resized, spec.quality),
                mime_type="image/webp",
                width=resized.width,
                height=resized.height,
                variant_name=spec.name,
            )
        )
    return result


def process_plain_file(data: bytes, mime_type: str, *, now: datetime | None = None) -> ProcessedUpload:
    ext = ALLOWED_TYPES[mime_type][0]
    fname = f"{random_base_name()}{ext}"
    return ProcessedUpload(
        original=ProcessedFile(key=f"{storage_dir(now)}/{fname}", filename=fname, data=data, mime_type=mime_type)
    )
