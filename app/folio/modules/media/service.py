from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select, update

from app.folio.audit import record_event
from app.folio.models import User
from app.folio.modules.media.models import MediaAsset, MediaVariant
from app.folio.modules.media.processing import (
    PROCESSABLE_IMAGE_TYPES,
    TYPE_GROUPS,
    ProcessedUpload,
    process_image,
    process_plain_file,
    validate_upload,
)
from app.folio.storage import Storage, StorageError
from app.folio.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

MEDIA_URL_PREFIX = "/media/"


def file_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def public_url_for(key: str) -> str:
    return f"{MEDIA_URL_PREFIX}{key}"


def serialize_variant(v: MediaVariant) -> dict:
    return {
        "id": v.id,
        "variantName": v.variant_name,
        "filename": v.filename,
        "url": v.public_url,
        "mimeType": v.mime_type,
        "fileSize": v.file_size,
        "width": v.width,
        "height": v.height,
    }


def serialize_asset(a: MediaAsset) -> dict:
    return {
        "id": a.id,
        "filename": a.filename,
        "originalFilename": a.original_filename,
        "mimeType": a.mime_type,
        "fileSize": a.file_size,
        "url": a.public_url,
        "storagePath": a.storage_path,
        "altText": a.alt_text,
        "caption": a.caption,
        "width": a.width,
        "height": a.height,
        "isProcessed": a.is_processed,
        "uploadedBy": a.uploaded_by_user_id,
        "createdAt": iso(a.created_at),
        "variants": [serialize_variant(v) for v in a.variants],
    }


def best_variant_url(asset: MediaAsset, width: int) -> str | None:
    """Smallest variant at least `width` wide, else the largest variant, else the original."""
    sized = sorted((v for v in asset.variants if v.width), key=lambda v: v.width)
    if not sized:
        return asset.public_url
    for v in sized:
        if v.width >= width:
            return v.public_url
    return sized[-1].public_url


def variant_url(asset: MediaAsset | None, name: str) -> str | None:
    if asset is None:
        return None
    for v in asset.variants:
        if v.variant_name == name:
            return v.public_url
    return asset.public_url


# ---------- Queries ----------
def _type_clause(type_: str):
    if type_ == "other":
        known = [MediaAsset.mime_type.startswith(p) for prefixes in TYPE_GROUPS.values() for p in prefixes]
        return ~or_(*known)
    prefixes = TYPE_GROUPS[type_]
    return or_(*[MediaAsset.mime_type.startswith(p) for p in prefixes])


def list_assets(
    s: "Session",
    *,
    page: int = 1,
    page_size: int = 20,
    type_: str | None = None,
    search: str | None = None,
) -> tuple[list[MediaAsset], int]:
    q = select(MediaAsset)
    if type_:
        q = q.where(_type_clause(type_))
    if search:
        pattern = f"%{search}%"
        q = q.where(or_(MediaAsset.original_filename.ilike(pattern), MediaAsset.alt_text.ilike(pattern)))
    total = s.scalar(select(func.count()).select_from(q.subquery())) or 0
    rows = (
        s.execute(q.order_by(MediaAsset.created_at.desc(), MediaAsset.id.desc()).offset((page - 1) * page_size).limit(page_size))
        .scalars()
        .all()
    )
    return list(rows), total


def media_stats(s: "Session") -> dict:
    stats = {"total": 0, "totalSize": 0}
    for group in (*TYPE_GROUPS.keys(), "other"):
        stats[group] = s.scalar(select(func.count(MediaAsset.id)).where(_type_clause(group))) or 0
    stats["total"] = s.scalar(select(func.count(MediaAsset.id))) or 0
    stats["totalSize"] = int(s.scalar(select(func.coalesce(func.sum(MediaAsset.file_size), 0))) or 0)
    return stats


def find_by_hash(s: "Session", file_hash: str) -> MediaAsset | None:
    return s.execute(select(MediaAsset).where(MediaAsset.file_hash == file_hash).limit(1)).scalar_one_or_none()


# ---------- Writes ----------
def _store(storage: Storage, processed: ProcessedUpload) -> list[str]:
    written: list[str] = []
    try:
        for f in (processed.original, *processed.variants):
            storage.put_bytes(f.key, f.data, content_type=f.mime_type)
            written.append(f.key)
    except StorageError:
        delete_stored_files(storage, written)
        raise
    return written


def delete_stored_files(storage: Storage, keys: list[str]) -> None:
    for key in keys:
        try:
            storage.delete(key)
        except StorageError as e:
            logger.warning("Media file delete failed key=%s err=%s", key, e)


def upload_asset(
    s: "Session",
    storage: Storage,
    *,
    data: bytes,
    filename: str,
    mime_type: str,
    alt_text: str | None,
    user: User,
    upload_ip: str | None,
    max_size_bytes: int,
    max_dimension: int = 4096,
    generate_variants: bool = True,
) -> tuple[MediaAsset, bool]:
    """
    Validate, process, store and record an upload.

    Returns (asset, is_duplicate). Raises UploadError for rejected files and
    StorageError when the bytes could not be written.
    """
    validate_upload(data, filename, mime_type, max_size_bytes=max_size_bytes)

    file_hash = file_digest(data)
    existing = find_by_hash(s, file_hash)
    if existing:
        return existing, True

    if mime_type in PROCESSABLE_IMAGE_TYPES:
        processed = process_image(
            data, mime_type, max_dimension=max_dimension, generate_variants=generate_variants
        )
    else:
        processed = process_plain_file(data, mime_type)

    _store(storage, processed)

    orig = processed.original
    asset = MediaAsset(
        filename=orig.filename,
        original_filename=filename,
        mime_type=orig.mime_type,
        file_size=orig.size,
        storage_path=orig.key,
        public_url=public_url_for(orig.key),
        alt_text=(alt_text or "")[:300] or None,
        width=orig.width,
        height=orig.height,
        file_hash=file_hash,
        is_processed=True,
        upload_ip=upload_ip,
        uploaded_by_user_id=user.id,
    )
    for v in processed.variants:
        asset.variants.append(
            MediaVariant(
                variant_name=v.variant_name or "unknown",
                filename=v.filename,
                storage_path=v.key,
                public_url=public_url_for(v.key),
                mime_type=v.mime_type,
                file_size=v.size,
                width=v.width,
                height=v.height,
            )
        )
    s.add(asset)
    s.flush()

    record_event(
        s,
        actor=user,
        action="media.upload",
        entity_type="MediaAsset",
        entity_id=str(asset.id),
        metadata={
            "filename": filename,
            "mime_type": asset.mime_type,
            "size_bytes": asset.file_size,
            "sha256": file_hash,
            "variants": [v.variant_name for v in asset.variants],
        },
    )
    return asset, False


def validate_asset_update(payload: dict) -> list[str]:
    errors: list[str] = []
    alt = payload.get("altText")
    caption = payload.get("caption")
    if alt is not None and (not isinstance(alt, str) or len(alt) > 300):
        errors.append("Alt text too long" if isinstance(alt, str) else "altText must be a string")
    if caption is not None and (not isinstance(caption, str) or len(caption) > 1000):
        errors.append("Caption too long" if isinstance(caption, str) else "caption must be a string")
    return errors


def update_asset(s: "Session", asset: MediaAsset, payload: dict, user: User) -> MediaAsset:
    changes: dict[str, str | None] = {}
    if "altText" in payload:
        asset.alt_text = payload.get("altText") or None
        changes["alt_text"] = asset.alt_text
    if "caption" in payload:
        asset.caption = payload.get("caption") or None
        changes["caption"] = asset.caption
    record_event(s, actor=user, action="media.update", entity_type="MediaAsset", entity_id=str(asset.id), metadata=changes)
    return asset


def storage_keys(asset: MediaAsset) -> list[str]:
    return [asset.storage_path, *[v.storage_path for v in asset.variants]]


def delete_assets(s: "Session", ids: list[int], user: User) -> tuple[int, list[str]]:
    """Delete rows (variants cascade) and clear avatar references.

    Returns the number of assets deleted and their storage keys. Callers remove
    the files with delete_stored_files() once the transaction has committed.
    """
    assets = list(s.execute(select(MediaAsset).where(MediaAsset.id.in_(ids))).scalars().all())
    if not assets:
        return 0, []
    found_ids = [a.id for a in assets]
    keys = [k for a in assets for k in storage_keys(a)]

    s.execute(update(User).where(User.avatar_media_id.in_(found_ids)).values(avatar_media_id=None))
    for a in assets:
        s.delete(a)
    record_event(
        s,
        actor=user,
        action="media.delete",
        entity_type="MediaAsset",
        entity_id=",".join(str(i) for i in found_ids),
        metadata={"count": len(found_ids), "files": keys},
    )
    s.flush()
    return len(found_ids), keys
