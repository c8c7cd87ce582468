import asyncio
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, create_engine, func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from shared.clients.meta.MetaClientInterface import MetaClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.document import DocumentMetadata, DocumentRecord, ProcessingStatus, utc_now
from shared.models.errors import StoreUnavailableError

Base = declarative_base()


class DocumentRow(Base):
    __tablename__ = "documents"
    doc_id = Column(String, primary_key=True)
    user_id = Column(String, index=True, nullable=False)
    filename = Column(String, nullable=False)
    original_name = Column(String, nullable=False)
    blob_key = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String, nullable=False)
    processing_status = Column(String, index=True, nullable=False, default=ProcessingStatus.PENDING.value)
    error_message = Column(Text, nullable=True)
    doc_metadata = Column("metadata", JSON, nullable=False, default=dict)
    uploaded_at = Column(DateTime(timezone=True), index=True, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes, everything is written in UTC
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _to_record(row: DocumentRow) -> DocumentRecord:
    return DocumentRecord(
        doc_id=row.doc_id,
        user_id=row.user_id,
        filename=row.filename,
        original_name=row.original_name,
        blob_key=row.blob_key,
        file_size=row.file_size,
        mime_type=row.mime_type,
        processing_status=ProcessingStatus(row.processing_status),
        error_message=row.error_message,
        metadata=DocumentMetadata.model_validate(row.doc_metadata or {}),
        uploaded_at=_as_utc(row.uploaded_at),
        updated_at=_as_utc(row.updated_at),
    )


class MetaClientSql(MetaClientInterface):
    """Document metadata store on any SQLAlchemy database (SQLite by default).

    The ORM is synchronous, each operation runs in a worker thread.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._url = self.get_config_val("URL", default="sqlite:///./data/docintel.db", val_type="string")
        self._engine = None
        self._session_factory: sessionmaker | None = None

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Sql"

    def _get_required_config(self) -> list[EnvConfig]:
        return [EnvConfig(env_key="URL", val_type="string", default="sqlite:///./data/docintel.db")]

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport=None) -> None:
        kwargs: dict = {"pool_pre_ping": True}
        if self._url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": self.timeout}
            if self._url in ("sqlite://", "sqlite:///:memory:"):
                # one shared connection, otherwise every thread sees its own empty database
                kwargs["poolclass"] = StaticPool
            else:
                Path(self._url.split("///", 1)[-1]).parent.mkdir(parents=True, exist_ok=True)
        self._engine = create_engine(self._url, **kwargs)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)

    async def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None

    async def do_healthcheck(self) -> bool:
        try:
            await self._run(lambda session: session.execute(select(1)).scalar())
        except StoreUnavailableError:
            return False
        return True

    async def do_initialize(self) -> None:
        """Create the documents table if it does not exist. Idempotent."""
        if self._engine is None:
            raise RuntimeError("SQL engine not initialised. Call boot() before making requests.")
        await asyncio.to_thread(Base.metadata.create_all, self._engine)

    @contextmanager
    def _session_scope(self):
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def _run(self, operation):
        """Run operation(session) in a worker thread inside one transaction."""
        if self._session_factory is None:
            raise RuntimeError("SQL engine not initialised. Call boot() before making requests.")

        def _work():
            with self._session_scope() as session:
                return operation(session)

        try:
            return await asyncio.to_thread(_work)
        except OperationalError as e:
            self.logging.error("Metadata store unavailable: %s", e)
            raise StoreUnavailableError(f"Metadata store unavailable: {e}") from e

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_create(self, record: DocumentRecord) -> DocumentRecord:
        def _op(session: Session) -> None:
            session.add(DocumentRow(
                doc_id=record.doc_id,
                user_id=record.user_id,
                filename=record.filename,
                original_name=record.original_name,
                blob_key=record.blob_key,
                file_size=record.file_size,
                mime_type=record.mime_type,
                processing_status=record.processing_status.value,
                error_message=record.error_message,
                doc_metadata=record.metadata.model_dump(exclude_none=True),
                uploaded_at=record.uploaded_at,
                updated_at=record.updated_at,
            ))
        await self._run(_op)
        return record

    async def do_get(self, doc_id: str, user_id: str) -> DocumentRecord | None:
        def _op(session: Session) -> DocumentRecord | None:
            row = session.execute(
                select(DocumentRow).where(DocumentRow.doc_id == doc_id, DocumentRow.user_id == user_id)
            ).scalar_one_or_none()
            return _to_record(row) if row else None
        return await self._run(_op)

    async def do_get_many(self, doc_ids: list[str], user_id: str) -> dict[str, DocumentRecord]:
        if not doc_ids:
            return {}

        def _op(session: Session) -> dict[str, DocumentRecord]:
            rows = session.execute(
                select(DocumentRow).where(DocumentRow.doc_id.in_(set(doc_ids)), DocumentRow.user_id == user_id)
            ).scalars().all()
            return {row.doc_id: _to_record(row) for row in rows}
        return await self._run(_op)

    async def do_list_by_user(self, user_id: str, page: int = 1, limit: int = 10) -> tuple[list[DocumentRecord], int]:
        page = max(1, page)
        limit = max(1, limit)

        def _op(session: Session) -> tuple[list[DocumentRecord], int]:
            total = session.execute(
                select(func.count()).select_from(DocumentRow).where(DocumentRow.user_id == user_id)
            ).scalar_one()
            rows = session.execute(
                select(DocumentRow)
                .where(DocumentRow.user_id == user_id)
                .order_by(DocumentRow.uploaded_at.desc(), DocumentRow.doc_id)
                .offset((page - 1) * limit)
                .limit(limit)
            ).scalars().all()
            return [_to_record(row) for row in rows], int(total)
        return await self._run(_op)

    async def do_update_status(self, doc_id: str, user_id: str, status: ProcessingStatus, error_message: str | None = None) -> bool:
        error = error_message if status == ProcessingStatus.FAILED else None

        def _op(session: Session) -> bool:
            result = session.execute(
                update(DocumentRow)
                .where(DocumentRow.doc_id == doc_id, DocumentRow.user_id == user_id)
                .values(processing_status=status.value, error_message=error, updated_at=utc_now())
            )
            return result.rowcount > 0
        return await self._run(_op)

    async def do_update_metadata(self, doc_id: str, user_id: str, metadata: DocumentMetadata) -> bool:
        def _op(session: Session) -> bool:
            result = session.execute(
                update(DocumentRow)
                .where(DocumentRow.doc_id == doc_id, DocumentRow.user_id == user_id)
                .values(doc_metadata=metadata.model_dump(exclude_none=True), updated_at=utc_now())
            )
            return result.rowcount > 0
        return await self._run(_op)

    async def do_update_fields(self, doc_id: str, user_id: str, filename: str | None = None, metadata: dict | None = None) -> DocumentRecord | None:
        def _op(session: Session) -> DocumentRecord | None:
            row = session.execute(
                select(DocumentRow).where(DocumentRow.doc_id == doc_id, DocumentRow.user_id == user_id)
            ).scalar_one_or_none()
            if row is None:
                return None
            if filename is not None:
                row.filename = filename
            if metadata is not None:
                merged = DocumentMetadata.model_validate({**(row.doc_metadata or {}), **metadata})
                row.doc_metadata = merged.model_dump(exclude_none=True)
            row.updated_at = utc_now()
            session.flush()
            return _to_record(row)
        return await self._run(_op)

    async def do_delete(self, doc_id: str, user_id: str) -> bool:
        def _op(session: Session) -> bool:
            row = session.execute(
                select(DocumentRow).where(DocumentRow.doc_id == doc_id, DocumentRow.user_id == user_id)
            ).scalar_one_or_none()
            if row is None:
                return False
            session.delete(row)
            return True
        return await self._run(_op)

    async def do_find_by_status(self, statuses: list[ProcessingStatus], updated_before: datetime | None = None) -> list[DocumentRecord]:
        def _op(session: Session) -> list[DocumentRecord]:
            query = select(DocumentRow).where(DocumentRow.processing_status.in_([s.value for s in statuses]))
            if updated_before is not None:
                query = query.where(DocumentRow.updated_at < updated_before)
            rows = session.execute(query.order_by(DocumentRow.updated_at)).scalars().all()
            return [_to_record(row) for row in rows]
        return await self._run(_op)
