"""
Post storage for Postgres (via SQLAlchemy) and a flat JSON file.

Both implementations satisfy the same ``PostStore`` contract and must agree on
filtering and ordering for identical inputs.
"""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Literal, Optional, Protocol

from sqlalchemy import (
    BigInteger,
    Column,
    Index,
    String,
    and_,
    create_engine,
    delete,
    func,
    or_,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from petfeed.cursor import Cursor

logger = logging.getLogger(__name__)

SortOrder = Literal["newest", "oldest"]

DEFAULT_LIMIT = 20
MAX_LIMIT = 50
PET_NAME_MAX = 40
PET_TYPE_MAX = 24
CAPTION_MAX = 240
QUERY_MAX = 80
DEFAULT_PET_TYPE = "Other"


class StoreError(RuntimeError):
    """Raised when persisted post data cannot be read."""


class PostStore(Protocol):
    """Interface for post persistence."""

    def list_posts(
        self,
        *,
        limit: int = DEFAULT_LIMIT,
        sort: SortOrder = "newest",
        query: str = "",
        cursor: Optional[Cursor] = None,
    ) -> list["PostRecord"]:
        ...

    def insert_post(
        self,
        *,
        pet_name: str,
        pet_type: str,
        caption: str,
        image_url: str,
    ) -> "PostRecord":
        ...

    def delete_post(self, post_id: str) -> Optional["PostRecord"]:
        ...


@dataclass(frozen=True)
class PostRecord:
    id: str
    pet_name: str
    pet_type: str
    caption: str
    image_url: str
    created_at: int

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "petName": self.pet_name,
            "petType": self.pet_type,
            "caption": self.caption,
            "imageUrl": self.image_url,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PostRecord":
        created_at = data.get("createdAt") or 0
        return cls(
            id=str(data["id"]),
            pet_name=data.get("petName") or "",
            pet_type=data.get("petType") or "",
            caption=data.get("caption") or "",
            # Older documents stored a site-relative "imagePath".
            image_url=data.get("imageUrl") or data.get("imagePath") or "",
            created_at=int(created_at),
        )


def now_ms() -> int:
    return int(time.time() * 1000)


def new_post_id() -> str:
    return uuid.uuid4().hex


def safe_text(value: object, max_len: int | None = None) -> str:
    if not isinstance(value, str):
        return ""
    trimmed = value.strip()
    if not max_len:
        return trimmed
    return trimmed[:max_len]


def clamp_limit(limit: object) -> int:
    try:
        value = float(limit)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    if not math.isfinite(value) or value == 0:
        return DEFAULT_LIMIT
    return int(max(1, min(MAX_LIMIT, value)))


def normalize_sort(sort: object) -> SortOrder:
    return "oldest" if sort == "oldest" else "newest"


def normalize_query(query: object) -> str:
    return safe_text(query, QUERY_MAX).lower()


def normalize_fields(pet_name: str, pet_type: str, caption: str) -> tuple[str, str, str]:
    return (
        safe_text(pet_name, PET_NAME_MAX),
        safe_text(pet_type, PET_TYPE_MAX) or DEFAULT_PET_TYPE,
        safe_text(caption, CAPTION_MAX),
    )


def search_haystack(record: PostRecord) -> str:
    return f"{record.pet_name} {record.pet_type} {record.caption}".lower()


def select_page(
    records: list[PostRecord],
    *,
    limit: int,
    sort: SortOrder,
    query: str,
    cursor: Optional[Cursor],
) -> list[PostRecord]:
    """Filter, order and slice an in-memory record set."""
    limit = clamp_limit(limit)
    sort = normalize_sort(sort)
    query = normalize_query(query)

    items = records
    if query:
        items = [r for r in items if query in search_haystack(r)]

    descending = sort == "newest"
    items = sorted(items, key=lambda r: (r.created_at, r.id), reverse=descending)

    if cursor is not None:
        key = (cursor.created_at, cursor.id)
        if descending:
            items = [r for r in items if (r.created_at, r.id) < key]
        else:
            items = [r for r in items if (r.created_at, r.id) > key]

    return items[:limit]


class JsonFilePostStore:
    """
    Flat-file backend: a single JSON document ``{"posts": [...]}``.

    Every list call loads and scans the whole document, which is fine for the
    small corpora this backend targets. All mutations run on one writer
    thread so concurrent requests never interleave read-modify-write cycles.
    """

    def __init__(
        self,
        path: str,
        *,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[], str] = new_post_id,
    ):
        self.path = path
        self._clock = clock
        self._id_factory = id_factory
        self._writer = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="posts-writer"
        )
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        if not os.path.exists(path):
            self._write_all([])

    def _read_all(self) -> list[PostRecord]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return []
        try:
            data = json.loads(raw or "{}")
        except json.JSONDecodeError as exc:
            raise StoreError(f"Corrupt posts file: {self.path}") from exc
        posts = data.get("posts") if isinstance(data, dict) else None
        if not isinstance(posts, list):
            return []
        records = []
        for entry in posts:
            if not isinstance(entry, dict) or not entry.get("id"):
                continue
            try:
                records.append(PostRecord.from_dict(entry))
            except (TypeError, ValueError, OverflowError):
                logger.warning("Skipping unreadable post %r in %s", entry.get("id"), self.path)
        return records

    def _write_all(self, records: list[PostRecord]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(prefix=".posts-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"posts": [r.as_dict() for r in records]}, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _mutate(self, fn):
        return self._writer.submit(fn).result()

    def list_posts(
        self,
        *,
        limit: int = DEFAULT_LIMIT,
        sort: SortOrder = "newest",
        query: str = "",
        cursor: Optional[Cursor] = None,
    ) -> list[PostRecord]:
        return select_page(
            self._read_all(), limit=limit, sort=sort, query=query, cursor=cursor
        )

    def insert_post(
        self,
        *,
        pet_name: str,
        pet_type: str,
        caption: str,
        image_url: str,
    ) -> PostRecord:
        pet_name, pet_type, caption = normalize_fields(pet_name, pet_type, caption)

        def _insert() -> PostRecord:
            record = PostRecord(
                id=self._id_factory(),
                pet_name=pet_name,
                pet_type=pet_type,
                caption=caption,
                image_url=image_url,
                created_at=self._clock(),
            )
            records = self._read_all()
            records.append(record)
            self._write_all(records)
            return record

        return self._mutate(_insert)

    def delete_post(self, post_id: str) -> Optional[PostRecord]:
        def _delete() -> Optional[PostRecord]:
            records = self._read_all()
            for idx, record in enumerate(records):
                if record.id == post_id:
                    del records[idx]
                    self._write_all(records)
                    return record
            return None

        return self._mutate(_delete)

    def clear(self) -> None:
        """Remove every post (useful in tests)."""
        self._mutate(lambda: self._write_all([]))

    def close(self) -> None:
        self._writer.shutdown(wait=True)


class SqlPostStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(
        self,
        database_url: str,
        *,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[], str] = new_post_id,
        **engine_kwargs,
    ):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlPostStore")
        engine_kwargs.setdefault("pool_pre_ping", True)
        self.engine = create_engine(database_url, future=True, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        self._clock = clock
        self._id_factory = id_factory
        Base.metadata.create_all(self.engine)

    def _to_record(self, row: "PostRow") -> PostRecord:
        return PostRecord(
            id=row.id,
            pet_name=row.pet_name,
            pet_type=row.pet_type,
            caption=row.caption,
            image_url=row.image_url,
            created_at=row.created_at,
        )

    def list_posts(
        self,
        *,
        limit: int = DEFAULT_LIMIT,
        sort: SortOrder = "newest",
        query: str = "",
        cursor: Optional[Cursor] = None,
    ) -> list[PostRecord]:
        limit = clamp_limit(limit)
        sort = normalize_sort(sort)
        query = normalize_query(query)

        stmt = select(PostRow)
        if query:
            haystack = func.lower(
                PostRow.pet_name + " " + PostRow.pet_type + " " + PostRow.caption,
                type_=String,
            )
            stmt = stmt.where(haystack.contains(query, autoescape=True))

        if sort == "oldest":
            if cursor is not None:
                stmt = stmt.where(
                    or_(
                        PostRow.created_at > cursor.created_at,
                        and_(
                            PostRow.created_at == cursor.created_at,
                            PostRow.id > cursor.id,
                        ),
                    )
                )
            stmt = stmt.order_by(PostRow.created_at.asc(), PostRow.id.asc())
        else:
            if cursor is not None:
                stmt = stmt.where(
                    or_(
                        PostRow.created_at < cursor.created_at,
                        and_(
                            PostRow.created_at == cursor.created_at,
                            PostRow.id < cursor.id,
                        ),
                    )
                )
            stmt = stmt.order_by(PostRow.created_at.desc(), PostRow.id.desc())

        with self.Session() as session:
            rows = session.execute(stmt.limit(limit)).scalars().all()
            return [self._to_record(row) for row in rows]

    def insert_post(
        self,
        *,
        pet_name: str,
        pet_type: str,
        caption: str,
        image_url: str,
    ) -> PostRecord:
        pet_name, pet_type, caption = normalize_fields(pet_name, pet_type, caption)
        with self.Session() as session:
            row = PostRow(
                id=self._id_factory(),
                pet_name=pet_name,
                pet_type=pet_type,
                caption=caption,
                image_url=image_url,
                created_at=self._clock(),
            )
            session.add(row)
            session.commit()
            return self._to_record(row)

    def delete_post(self, post_id: str) -> Optional[PostRecord]:
        with self.Session() as session:
            row = session.get(PostRow, post_id)
            if not row:
                return None
            record = self._to_record(row)
            session.delete(row)
            session.commit()
            return record

    def clear(self) -> None:
        """Remove every post (useful in tests)."""
        with self.Session() as session:
            session.execute(delete(PostRow))
            session.commit()


Base = declarative_base()


class PostRow(Base):
    __tablename__ = "pet_photo_posts"

    id = Column(String, primary_key=True)
    pet_name = Column(String, nullable=False, default="")
    pet_type = Column(String, nullable=False, default="")
    caption = Column(String, nullable=False, default="")
    image_url = Column(String, nullable=False)
    created_at = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index(
            "pet_photo_posts_created_at_id_idx",
            created_at.desc(),
            id.desc(),
        ),
    )
