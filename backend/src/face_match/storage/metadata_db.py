"""Metadata database for events and photos.

This module provides a SQLAlchemy store for Event and Photo records and the
queue operations the indexing pipeline needs: claiming pending photos,
recording terminal outcomes and batch reads for search result joins.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Iterable
import logging
import uuid

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    Text,
    ForeignKey,
    Index as DBIndex,
    func
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..face import ProcessingStatus, ValidationError

logger = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PhotoStoreError(Exception):
    """Raised when a metadata store operation fails."""
    pass


class ClaimError(PhotoStoreError):
    """Raised when pending photos cannot be read from the queue."""
    pass


class DuplicateRecordError(PhotoStoreError):
    """Raised when an event or photo id is already registered."""
    pass


class Event(Base):
    """Event table.

    Only id and status are read by the indexing and search pipeline.
    """
    __tablename__ = 'events'

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    status = Column(String(16), nullable=False, default="active", index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Photo(Base):
    """Photo table.

    Holds the blob locator, the public URL and the processing state of a
    photo. The photo id is the correlation key sent to the vision service.
    """
    __tablename__ = 'photos'

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(64), ForeignKey('events.id'), nullable=False, index=True)

    # Storage
    file_path = Column(String(1024), nullable=False)
    storage_url = Column(String(2048), nullable=True)
    file_name = Column(String(255), nullable=True)
    file_size = Column(Integer, nullable=False, default=0)

    # Processing state
    is_processed = Column(Boolean, nullable=False, default=False, index=True)
    faces_indexed = Column(Integer, nullable=False, default=0)
    indexed_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(16), nullable=False, default=ProcessingStatus.PENDING.value)
    error_log = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        DBIndex('idx_photos_queue', 'is_processed', 'event_id', 'created_at'),
    )

    @property
    def processing_status(self) -> ProcessingStatus:
        return ProcessingStatus(self.status)

    def to_dict(self) -> dict:
        """Convert photo record to dictionary.

        Returns:
            Dictionary representation of the photo
        """
        return {
            'id': self.id,
            'event_id': self.event_id,
            'file_path': self.file_path,
            'storage_url': self.storage_url,
            'file_name': self.file_name,
            'file_size': self.file_size,
            'is_processed': self.is_processed,
            'faces_indexed': self.faces_indexed,
            'indexed_at': self.indexed_at.isoformat() if self.indexed_at else None,
            'status': self.status,
            'error_log': self.error_log,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class PhotoStore:
    """Database store for events and photos.

    Manages records with support for:
    - Event lookup and photo registration
    - Claiming pending photos for indexing
    - Terminal success/failure updates (one transaction per photo)
    - Batch reads by photo id
    """

    def __init__(self, database_url: str = "sqlite:///face_match.db", echo: bool = False):
        """Initialize photo store.

        Args:
            database_url: SQLAlchemy database URL
            echo: Log emitted SQL
        """
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        self.database_url = database_url

        connect_args = {'check_same_thread': False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(
            database_url,
            echo=echo,
            pool_pre_ping=True,
            connect_args=connect_args
        )
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        Base.metadata.create_all(self.engine)

        logger.info(f"PhotoStore initialized: {self.engine.url.render_as_string(hide_password=True)}")

    @contextmanager
    def session_scope(self):
        """Provide a transactional scope for database operations.

        Usage:
            with store.session_scope() as session:
                session.add(photo)
                # Commit happens automatically on success
                # Rollback happens automatically on exception
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            session.close()

    # Events

    def add_event(self, event_id: str, name: str = "", status: str = "active") -> Event:
        """Insert an event record.

        Args:
            event_id: Event identifier
            name: Display name
            status: 'active' or 'inactive'

        Returns:
            The created Event (detached)
        """
        if not event_id:
            raise ValidationError("Event ID is required")
        if status not in ("active", "inactive"):
            raise ValidationError(f"Invalid event status: {status!r}")

        with self.session_scope() as session:
            event = Event(id=str(event_id), name=name, status=status)
            session.add(event)
            try:
                session.flush()
            except IntegrityError as e:
                raise DuplicateRecordError(f"Event already exists: {event_id}") from e
            session.expunge(event)
        logger.debug(f"Added event {event_id} ({status})")
        return event

    def get_event(self, event_id: str) -> Optional[Event]:
        """Get event record by ID.

        Returns:
            Event record or None if not found
        """
        with self.session_scope() as session:
            event = session.get(Event, str(event_id))
            if event:
                session.expunge(event)
            return event

    def set_event_status(self, event_id: str, status: str) -> bool:
        with self.session_scope() as session:
            event = session.get(Event, str(event_id))
            if not event:
                return False
            event.status = status
            return True

    # Photos

    def register_photo(
        self,
        event_id: str,
        file_path: str,
        storage_url: Optional[str] = None,
        file_name: Optional[str] = None,
        file_size: int = 0,
        photo_id: Optional[str] = None
    ) -> Photo:
        """Register a pending photo for an event.

        Args:
            event_id: Owning event
            file_path: Blob locator
            storage_url: Public URL of the photo
            file_name: Original file name
            file_size: Size in bytes
            photo_id: Explicit id (generated if omitted)

        Returns:
            The created Photo (detached)

        Raises:
            ValidationError: If required fields are missing or the event is unknown
        """
        photos = self.bulk_register([{
            'id': photo_id,
            'event_id': event_id,
            'file_path': file_path,
            'storage_url': storage_url,
            'file_name': file_name,
            'file_size': file_size,
        }])
        return photos[0]

    def bulk_register(self, rows: Iterable[Dict[str, Any]]) -> List[Photo]:
        """Register many pending photos in one transaction.

        Args:
            rows: Dictionaries with event_id, file_path and optional
                id, storage_url, file_name, file_size

        Returns:
            Created Photo records (detached)
        """
        rows = list(rows)
        if not rows:
            raise ValidationError("No photos to register")

        for row in rows:
            if not row.get('event_id') or not row.get('file_path'):
                raise ValidationError("Missing required fields: event_id, file_path")

        with self.session_scope() as session:
            event_ids = {str(row['event_id']) for row in rows}
            known = {
                e.id for e in session.query(Event.id).filter(Event.id.in_(event_ids)).all()
            }
            missing = event_ids - known
            if missing:
                raise ValidationError(f"Unknown event(s): {', '.join(sorted(missing))}")

            photos = []
            for row in rows:
                photo = Photo(
                    id=str(row.get('id') or uuid.uuid4()),
                    event_id=str(row['event_id']),
                    file_path=row['file_path'],
                    storage_url=row.get('storage_url'),
                    file_name=row.get('file_name') or "unknown",
                    file_size=int(row.get('file_size') or 0),
                    is_processed=False,
                    faces_indexed=0,
                    status=ProcessingStatus.PENDING.value,
                )
                session.add(photo)
                photos.append(photo)

            try:
                session.flush()
            except IntegrityError as e:
                raise DuplicateRecordError("Photo already registered") from e
            for photo in photos:
                session.expunge(photo)

        logger.info(f"Registered {len(photos)} photo(s)")
        return photos

    def get_photo(self, photo_id: str) -> Optional[Photo]:
        with self.session_scope() as session:
            photo = session.get(Photo, str(photo_id))
            if photo:
                session.expunge(photo)
            return photo

    def claim_pending(self, event_id: Optional[str] = None, limit: int = 50) -> List[Photo]:
        """Read up to `limit` unprocessed photos, oldest first.

        No lock is taken: concurrent callers may read the same photos.

        Args:
            event_id: Restrict to one event (None for every event)
            limit: Maximum photos to return

        Returns:
            List of pending Photo records (detached)

        Raises:
            ClaimError: If the read fails
        """
        try:
            with self.session_scope() as session:
                query = session.query(Photo).filter(Photo.is_processed == False)  # noqa: E712
                if event_id is not None:
                    query = query.filter(Photo.event_id == str(event_id))
                photos = query.order_by(Photo.created_at, Photo.id).limit(limit).all()
                for photo in photos:
                    session.expunge(photo)
        except SQLAlchemyError as e:
            raise ClaimError(f"Failed to claim pending photos: {e}") from e

        logger.debug(f"Claimed {len(photos)} pending photo(s) (event={event_id})")
        return photos

    def mark_indexed(self, photo_id: str, face_count: int, indexed_at: Optional[datetime] = None) -> bool:
        """Record a successful indexing attempt.

        Args:
            photo_id: Photo ID
            face_count: Faces indexed (may be 0)
            indexed_at: Completion time (default: now)

        Returns:
            True if updated, False if the photo no longer exists
        """
        if face_count < 0:
            raise ValueError(f"face_count must be >= 0, got {face_count}")

        return self._update_photo(
            photo_id,
            is_processed=True,
            faces_indexed=face_count,
            indexed_at=indexed_at or _utcnow(),
            status=ProcessingStatus.INDEXED.value,
            error_log=None,
        )

    def mark_failed(self, photo_id: str, reason: str) -> bool:
        """Record a terminal indexing failure.

        Args:
            photo_id: Photo ID
            reason: Error message

        Returns:
            True if updated, False if the photo no longer exists
        """
        return self._update_photo(
            photo_id,
            is_processed=True,
            faces_indexed=0,
            indexed_at=None,
            status=ProcessingStatus.FAILED.value,
            error_log=reason,
        )

    def _update_photo(self, photo_id: str, **fields) -> bool:
        try:
            with self.session_scope() as session:
                updated = session.query(Photo).filter(
                    Photo.id == str(photo_id)
                ).update(fields, synchronize_session=False)
        except SQLAlchemyError as e:
            raise PhotoStoreError(f"Failed to update photo {photo_id}: {e}") from e

        if not updated:
            logger.warning(f"Photo {photo_id} not found for update")
        return bool(updated)

    def get_photos_by_ids(self, photo_ids: Iterable[str]) -> List[Photo]:
        """Get photos for a list of ids in a single query.

        Args:
            photo_ids: Photo IDs (unknown ids are ignored)

        Returns:
            List of Photo records (detached), in no particular order
        """
        ids = list({str(pid) for pid in photo_ids})
        if not ids:
            return []

        try:
            with self.session_scope() as session:
                photos = session.query(Photo).filter(Photo.id.in_(ids)).all()
                for photo in photos:
                    session.expunge(photo)
                return photos
        except SQLAlchemyError as e:
            raise PhotoStoreError(f"Failed to read photos: {e}") from e

    def count_photos(self, event_id: Optional[str] = None, pending_only: bool = False) -> int:
        """Count photos, optionally for one event or only unprocessed ones."""
        with self.session_scope() as session:
            query = session.query(func.count(Photo.id))
            if event_id is not None:
                query = query.filter(Photo.event_id == str(event_id))
            if pending_only:
                query = query.filter(Photo.is_processed == False)  # noqa: E712
            return query.scalar() or 0

    def get_stats(self, event_id: Optional[str] = None) -> Dict[str, Any]:
        """Get processing statistics.

        Returns:
            Dictionary with per-status photo counts and indexed face total
        """
        with self.session_scope() as session:
            query = session.query(
                Photo.status,
                func.count(Photo.id),
                func.coalesce(func.sum(Photo.faces_indexed), 0)
            )
            if event_id is not None:
                query = query.filter(Photo.event_id == str(event_id))
            rows = query.group_by(Photo.status).all()

        counts = {s.value: 0 for s in ProcessingStatus}
        total_faces = 0
        for status, count, faces in rows:
            counts[status] = count
            total_faces += int(faces or 0)

        return {
            'event_id': event_id,
            'total_photos': sum(counts.values()),
            'pending': counts[ProcessingStatus.PENDING.value],
            'indexed': counts[ProcessingStatus.INDEXED.value],
            'failed': counts[ProcessingStatus.FAILED.value],
            'total_faces_indexed': total_faces,
        }
