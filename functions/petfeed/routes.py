"""
HTTP routes for the pet photo feed.
"""

from __future__ import annotations

import hmac
import logging
from uuid import uuid4

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    Query,
    Request,
    UploadFile,
)

from petfeed.config import Settings, get_settings
from petfeed.cursor import encode_cursor
from petfeed.dependencies import get_blob_store, get_post_store
from petfeed.schemas import (
    CreatePostResponse,
    ListPostsQuery,
    ListPostsResponse,
    NewPostFields,
    OkResponse,
    PostOut,
)
from petfeed.storage import BlobStore
from petfeed.store import PostRecord, PostStore

logger = logging.getLogger(__name__)

router = APIRouter()

IMAGE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/avif": "avif",
}


def _first_header_value(value: str) -> str:
    return value.split(",")[0].strip()


def _absolute_url(request: Request, reference: str, settings: Settings) -> str:
    if not reference.startswith("/"):
        return reference
    if settings.public_base_url:
        return f"{settings.public_base_url}{reference}"
    proto = _first_header_value(
        request.headers.get("x-forwarded-proto") or request.url.scheme or "http"
    )
    host = _first_header_value(
        request.headers.get("x-forwarded-host")
        or request.headers.get("host")
        or request.url.netloc
    )
    return f"{proto}://{host}{reference}"


def _to_post_out(record: PostRecord, request: Request, settings: Settings) -> PostOut:
    return PostOut(
        id=record.id,
        petName=record.pet_name,
        petType=record.pet_type,
        caption=record.caption,
        createdAt=record.created_at,
        imageUrl=_absolute_url(request, record.image_url, settings),
    )


def _bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        return ""
    return authorization[len("Bearer "):].strip()


def _discard_blob(blobs: BlobStore, reference: str) -> None:
    try:
        blobs.delete(reference)
    except Exception:
        logger.warning("Failed to delete image %s", reference, exc_info=True)


@router.get("/health", response_model=OkResponse)
def health():
    return OkResponse()


@router.get("/posts", response_model=ListPostsResponse)
def list_posts(
    request: Request,
    limit: str | None = Query(None),
    sort: str | None = Query(None),
    q: str | None = Query(None),
    cursor: str | None = Query(None),
    store: PostStore = Depends(get_post_store),
    settings: Settings = Depends(get_settings),
):
    params = ListPostsQuery(limit=limit, sort=sort, q=q, cursor=cursor)
    rows = store.list_posts(
        limit=params.limit, sort=params.sort, query=params.q, cursor=params.cursor
    )
    next_cursor = None
    if rows and len(rows) == params.limit:
        last = rows[-1]
        next_cursor = encode_cursor(last.created_at, last.id)
    return ListPostsResponse(
        posts=[_to_post_out(row, request, settings) for row in rows],
        nextCursor=next_cursor,
    )


@router.post("/posts", response_model=CreatePostResponse, status_code=201)
def create_post(
    request: Request,
    photo: UploadFile | None = File(None),
    petName: str = Form(""),
    petType: str = Form(""),
    caption: str = Form(""),
    store: PostStore = Depends(get_post_store),
    blobs: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_settings),
):
    """
    Store the uploaded image, then record the post. The image is always
    written first so no post can point at a missing blob.
    """
    if photo is None or not photo.filename:
        raise HTTPException(
            status_code=400, detail='Missing photo file (field name must be "photo").'
        )

    max_bytes = settings.max_upload_bytes
    data = photo.file.read(max_bytes + 1)
    if len(data) > max_bytes:
        max_mb = round(max_bytes / (1024 * 1024))
        raise HTTPException(status_code=413, detail=f"File too large. Max is {max_mb}MB.")
    if not data:
        raise HTTPException(status_code=400, detail="Missing photo file.")

    mime = (photo.content_type or "").split(";")[0].strip().lower()
    ext = IMAGE_EXTENSIONS.get(mime)
    if not ext:
        raise HTTPException(
            status_code=415,
            detail="Unsupported image type. Please upload JPG/PNG/WebP/GIF/AVIF.",
        )

    fields = NewPostFields(petName=petName, petType=petType, caption=caption)
    reference = blobs.put(f"pet-photos/{uuid4().hex}.{ext}", data, mime)
    record = store.insert_post(
        pet_name=fields.petName,
        pet_type=fields.petType,
        caption=fields.caption,
        image_url=reference,
    )
    logger.info("Created post %s", record.id)
    return CreatePostResponse(post=_to_post_out(record, request, settings))


@router.delete("/posts", response_model=OkResponse, include_in_schema=False)
@router.delete("/posts/{post_id}", response_model=OkResponse)
def delete_post(
    background_tasks: BackgroundTasks,
    post_id: str = "",
    authorization: str | None = Header(None),
    store: PostStore = Depends(get_post_store),
    blobs: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_settings),
):
    if not settings.admin_token:
        raise HTTPException(
            status_code=403, detail="Delete is disabled (ADMIN_TOKEN not set)."
        )
    token = _bearer_token(authorization)
    if not hmac.compare_digest(token.encode("utf-8"), settings.admin_token.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized.")

    post_id = post_id.strip()
    if not post_id:
        raise HTTPException(status_code=400, detail="Missing id.")

    removed = store.delete_post(post_id)
    if removed is None:
        raise HTTPException(status_code=404, detail="Not found.")

    logger.info("Deleted post %s", removed.id)
    if removed.image_url:
        background_tasks.add_task(_discard_blob, blobs, removed.image_url)
    return OkResponse()
