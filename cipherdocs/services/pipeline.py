"""
CipherDocs Document Processing Pipeline
validate -> extract -> chunk -> embed -> encrypt -> upload

Everything up to upload happens locally; the durable store only ever
receives ciphertext. Each stage reports progress inside its window and
checks the cancellation token before it starts. A failed or cancelled
job is terminal; the caller retries the whole job.
"""

import asyncio
import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Union

from cipherdocs.core.config import settings
from cipherdocs.core.errors import (
    CipherDocsError,
    EncryptionError,
    ExtractionError,
    NotInitializedError,
    PipelineError,
    ProcessingCancelledError,
    UploadError,
    ValidationError,
)
from cipherdocs.models.document import ChunkMetadata, DocumentCreate, EncryptedChunkCreate
from cipherdocs.models.processing import ContentType, ProcessingResult, ProcessingStatus
from cipherdocs.services.chunking import TextChunk, chunk_text, join_pages
from cipherdocs.services.embedding import EmbeddingModel, generate_batch_embeddings
from cipherdocs.services.extraction import (
    DEFAULT_EXTRACTORS,
    ExtractionResult,
    TextExtractor,
    UploadedFile,
    WebsiteExtractor,
    validate_document_file,
    validate_website_url,
)
from cipherdocs.services.progress import ProcessingProgressReporter, stage_progress
from cipherdocs.services.searchable_encryption import SearchableEncryptionProvider
from cipherdocs.services.session import KeyContext

logger = logging.getLogger(__name__)

CredentialsRequired = Callable[[], Union[None, Awaitable[None]]]

# Report encryption progress every N chunks
ENCRYPTION_REPORT_EVERY = 10


class DocumentStore(Protocol):
    async def create_document(self, payload: DocumentCreate) -> str: ...


class CancellationToken:
    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ProcessingCancelledError()


@dataclass
class ProcessingOptions:
    chunk_size: Optional[int] = None
    chunk_overlap: Optional[int] = None
    embedding_batch_size: Optional[int] = None
    project_id: Optional[str] = None
    job_id: Optional[str] = None


@dataclass
class _Job:
    job_id: str
    token: CancellationToken
    content_type: ContentType
    started: float = field(default_factory=time.monotonic)
    progress: float = 0.0
    chunk_count: int = 0
    embeddings_generated: int = 0

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


@dataclass
class _Source:
    """Extracted content plus the descriptive fields of the upload"""
    name: str
    original_name: str
    type: str
    file_size: int
    extraction: ExtractionResult
    extra_metadata: Dict[str, object] = field(default_factory=dict)


class DocumentProcessingPipeline:
    def __init__(
        self,
        embedding_model: EmbeddingModel,
        document_store: DocumentStore,
        reporter: Optional[ProcessingProgressReporter] = None,
        extractors: Optional[Mapping[str, TextExtractor]] = None,
        website_extractor: Optional[WebsiteExtractor] = None,
        on_credentials_required: Optional[CredentialsRequired] = None,
        encryption_concurrency: Optional[int] = None,
    ):
        self.embedding_model = embedding_model
        self.document_store = document_store
        self.reporter = reporter or ProcessingProgressReporter()
        self.extractors = dict(extractors) if extractors is not None else dict(DEFAULT_EXTRACTORS)
        self.website_extractor = website_extractor or WebsiteExtractor()
        self.on_credentials_required = on_credentials_required
        self.encryption_concurrency = encryption_concurrency or settings.ENCRYPTION_CONCURRENCY

    # ==================== Entry Points ====================

    async def process_document(
        self,
        file: UploadedFile,
        context: Optional[KeyContext],
        options: Optional[ProcessingOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ProcessingResult:
        options = options or ProcessingOptions()
        provider = await self._require_encryption(context)
        job = self._new_job(options, cancel_token, ContentType.DOCUMENT)
        logger.info(f"🚀 Processing document {file.name} as job {job.job_id}")

        async def load() -> _Source:
            await self._stage(job, ProcessingStatus.VALIDATING, 0, "Validating file")
            validate_document_file(file)

            await self._stage(job, ProcessingStatus.EXTRACTING, 0, f"Extracting text from {file.name}")
            extractor = self.extractors.get(file.content_type)
            if extractor is None:
                raise ValidationError("Only PDF and TXT files are supported.")
            extraction = await asyncio.to_thread(extractor.extract, file)
            return _Source(
                name=file.name,
                original_name=file.name,
                type=file.content_type,
                file_size=file.size,
                extraction=extraction,
            )

        return await self._run(
            job,
            provider,
            load,
            chunk_size=options.chunk_size or settings.DOCUMENT_CHUNK_SIZE,
            chunk_overlap=options.chunk_overlap if options.chunk_overlap is not None else settings.DOCUMENT_CHUNK_OVERLAP,
            batch_size=options.embedding_batch_size,
            project_id=options.project_id,
        )

    async def process_website(
        self,
        url: str,
        context: Optional[KeyContext],
        options: Optional[ProcessingOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ProcessingResult:
        options = options or ProcessingOptions()
        provider = await self._require_encryption(context)
        job = self._new_job(options, cancel_token, ContentType.WEBSITE)
        logger.info(f"🚀 Processing website {url} as job {job.job_id}")

        async def load() -> _Source:
            await self._stage(job, ProcessingStatus.VALIDATING, 0, "Validating URL")
            clean_url = validate_website_url(url)

            await self._stage(job, ProcessingStatus.EXTRACTING, 0, f"Fetching {clean_url}")
            extraction = await self.website_extractor.extract_url_async(clean_url)
            title = str(extraction.metadata.get("title") or clean_url)
            return _Source(
                name=title,
                original_name=clean_url,
                type="website",
                file_size=len(extraction.text.encode("utf-8")),
                extraction=extraction,
                extra_metadata={
                    "url": clean_url,
                    "title": title,
                    "description": extraction.metadata.get("description", ""),
                    "extractedAt": extraction.metadata.get("extractedAt"),
                    "contentLength": extraction.metadata.get("contentLength"),
                },
            )

        return await self._run(
            job,
            provider,
            load,
            chunk_size=options.chunk_size or settings.WEBSITE_CHUNK_SIZE,
            chunk_overlap=options.chunk_overlap if options.chunk_overlap is not None else settings.WEBSITE_CHUNK_OVERLAP,
            batch_size=options.embedding_batch_size,
            project_id=options.project_id,
        )

    # ==================== Orchestration ====================

    async def _require_encryption(self, context: Optional[KeyContext]) -> SearchableEncryptionProvider:
        if context is None or not context.is_ready:
            logger.warning("🔑 Encryption keys are not loaded, requesting credentials")
            await self._signal_credentials_required()
            raise NotInitializedError()
        return context.encryption

    async def _signal_credentials_required(self) -> None:
        if self.on_credentials_required is None:
            return
        result = self.on_credentials_required()
        if inspect.isawaitable(result):
            await result

    @staticmethod
    def _new_job(options: ProcessingOptions, token: Optional[CancellationToken], content_type: ContentType) -> _Job:
        return _Job(
            job_id=options.job_id or str(uuid.uuid4()),
            token=token or CancellationToken(),
            content_type=content_type,
        )

    async def _report(self, job: _Job, status: ProcessingStatus, progress: float, step: str) -> None:
        job.progress = progress
        await self.reporter.report(job.job_id, status, progress, step, content_type=job.content_type)

    async def _stage(self, job: _Job, status: ProcessingStatus, fraction: float, step: str) -> None:
        """Cancellation checkpoint followed by a progress update"""
        await self._check_remote_cancel(job)
        job.token.raise_if_cancelled()
        await self._report(job, status, stage_progress(status, fraction), step)

    async def _check_remote_cancel(self, job: _Job) -> None:
        if self.reporter.job_store is None or job.token.cancelled:
            return
        status = await self.reporter.get_status(job.job_id)
        if status is not None and status.cancel_requested:
            logger.info(f"🛑 Cancellation requested remotely for job {job.job_id}")
            job.token.cancel()

    async def _run(self, job: _Job, provider, load, chunk_size, chunk_overlap, batch_size, project_id) -> ProcessingResult:
        try:
            await self._report(job, ProcessingStatus.INITIALIZED, 0, "Starting processing")
            source = await load()
            document_id = await self._process_source(
                job, provider, source, chunk_size, chunk_overlap, batch_size, project_id
            )
        except ProcessingCancelledError as e:
            logger.info(f"🛑 Job {job.job_id} cancelled")
            await self.reporter.report(
                job.job_id, ProcessingStatus.CANCELLED, job.progress, str(e), content_type=job.content_type
            )
            return self._result(job, ProcessingStatus.CANCELLED)
        except NotInitializedError as e:
            logger.warning(f"🔑 Job {job.job_id} lost its encryption keys")
            await self._signal_credentials_required()
            return await self._fail(job, str(e), "encrypting")
        except PipelineError as e:
            logger.error(f"❌ Job {job.job_id} failed during {e.stage}: {e}")
            return await self._fail(job, str(e), e.stage)
        except ValidationError as e:
            logger.error(f"❌ Job {job.job_id} rejected: {e}")
            return await self._fail(job, str(e), "validating")
        except Exception as e:
            logger.error(f"❌ Unexpected error in job {job.job_id}: {e}", exc_info=True)
            return await self._fail(job, "Unexpected processing error", "processing")

        await self._report(job, ProcessingStatus.COMPLETED, 100, "Processing complete")
        logger.info(f"✅ Job {job.job_id} completed: document {document_id}, {job.chunk_count} chunks in {job.elapsed_ms}ms")
        return self._result(job, ProcessingStatus.COMPLETED, document_id=document_id)

    async def _fail(self, job: _Job, message: str, stage: str) -> ProcessingResult:
        await self.reporter.report(job.job_id, ProcessingStatus.ERROR, 0, message, content_type=job.content_type)
        return self._result(job, ProcessingStatus.ERROR, error=message, error_stage=stage)

    @staticmethod
    def _result(job: _Job, status: ProcessingStatus, document_id: Optional[str] = None,
                error: Optional[str] = None, error_stage: Optional[str] = None) -> ProcessingResult:
        return ProcessingResult(
            job_id=job.job_id,
            status=status,
            success=status == ProcessingStatus.COMPLETED,
            document_id=document_id,
            error=error,
            error_stage=error_stage,
            chunk_count=job.chunk_count,
            embeddings_generated=job.embeddings_generated,
            processing_time_ms=job.elapsed_ms,
        )

    async def _process_source(
        self,
        job: _Job,
        provider: SearchableEncryptionProvider,
        source: _Source,
        chunk_size: int,
        chunk_overlap: int,
        batch_size: Optional[int],
        project_id: Optional[str],
    ) -> str:
        text, page_offsets = join_pages(source.extraction.pages)
        if not text:
            raise ExtractionError("No text could be extracted from the content")
        await self._report(job, ProcessingStatus.EXTRACTING, stage_progress(ProcessingStatus.EXTRACTING, 1), "Text extracted")

        # Chunking
        await self._stage(job, ProcessingStatus.CHUNKING, 0, "Splitting text into chunks")
        chunks = chunk_text(text, chunk_size, chunk_overlap, page_offsets)
        job.chunk_count = len(chunks)
        await self._report(job, ProcessingStatus.CHUNKING, stage_progress(ProcessingStatus.CHUNKING, 1), f"Created {len(chunks)} text chunks")

        # Embedding
        await self._stage(job, ProcessingStatus.EMBEDDING, 0, "Generating embeddings")

        async def on_batch(percent: int) -> None:
            job.token.raise_if_cancelled()
            await self._report(
                job,
                ProcessingStatus.EMBEDDING,
                stage_progress(ProcessingStatus.EMBEDDING, percent / 100),
                f"Generated embeddings ({percent}%)",
            )

        embeddings = await generate_batch_embeddings(
            self.embedding_model, [chunk.content for chunk in chunks], batch_size, on_batch
        )
        job.embeddings_generated = len(embeddings)

        # Encryption
        await self._stage(job, ProcessingStatus.ENCRYPTING, 0, "Encrypting document")
        payload = await self._encrypt(job, provider, source, text, chunks, embeddings, project_id)

        # Upload
        await self._stage(job, ProcessingStatus.UPLOADING, 0, "Uploading encrypted document")
        job.token.raise_if_cancelled()
        try:
            return await self.document_store.create_document(payload)
        except CipherDocsError as e:
            raise UploadError(f"Failed to upload document: {e}") from e

    # ==================== Encryption ====================

    def _encrypt_metadata(self, provider: SearchableEncryptionProvider, source: _Source, chunk_count: int) -> dict:
        metadata = {
            "originalName": provider.encrypt_metadata(source.original_name),
            "fileType": provider.encrypt_metadata(source.type),
            "pageCount": source.extraction.page_count,
            "chunkCount": chunk_count,
            "created": datetime.now(timezone.utc).isoformat(),
        }
        for key, value in source.extra_metadata.items():
            metadata[key] = provider.encrypt_metadata(value) if isinstance(value, str) else value
        return metadata

    async def _encrypt(
        self,
        job: _Job,
        provider: SearchableEncryptionProvider,
        source: _Source,
        text: str,
        chunks: List[TextChunk],
        embeddings: List[List[float]],
        project_id: Optional[str],
    ) -> DocumentCreate:
        try:
            name = provider.encrypt_metadata(source.name)
            original_name = provider.encrypt_metadata(source.original_name)
            metadata = self._encrypt_metadata(provider, source, len(chunks))
            content = provider.encrypt_text(text)
        except (NotInitializedError, ProcessingCancelledError):
            raise
        except CipherDocsError as e:
            raise EncryptionError(f"Failed to encrypt document: {e}") from e

        encrypted_chunks = await self._encrypt_chunks(job, provider, chunks, embeddings)

        return DocumentCreate(
            name=name,
            original_name=original_name,
            type=source.type,
            file_size=source.file_size,
            page_count=source.extraction.page_count,
            project_id=project_id,
            encrypted_content=content,
            encrypted_metadata=metadata,
            chunks=encrypted_chunks,
        )

    async def _encrypt_chunks(
        self,
        job: _Job,
        provider: SearchableEncryptionProvider,
        chunks: List[TextChunk],
        embeddings: List[List[float]],
    ) -> List[EncryptedChunkCreate]:
        semaphore = asyncio.Semaphore(self.encryption_concurrency)
        total = len(chunks)
        done = 0

        async def encrypt_one(chunk: TextChunk, embedding: List[float]) -> EncryptedChunkCreate:
            nonlocal done
            async with semaphore:
                job.token.raise_if_cancelled()
                try:
                    encrypted = EncryptedChunkCreate(
                        chunk_number=chunk.chunk_number,
                        encrypted_content=provider.encrypt_text(chunk.content),
                        encrypted_embedding=provider.encrypt_vector(embedding),
                        metadata=ChunkMetadata(chunk_number=chunk.chunk_number, page_number=chunk.page_number),
                    )
                except NotInitializedError:
                    raise
                except CipherDocsError as e:
                    raise EncryptionError(f"Failed to encrypt chunk {chunk.chunk_number}: {e}") from e

                done += 1
                if done % ENCRYPTION_REPORT_EVERY == 0 or done == total:
                    job.token.raise_if_cancelled()
                    await self._report(
                        job,
                        ProcessingStatus.ENCRYPTING,
                        stage_progress(ProcessingStatus.ENCRYPTING, done / total),
                        f"Encrypted {done}/{total} chunks",
                    )
                else:
                    await asyncio.sleep(0)
                return encrypted

        tasks = [asyncio.create_task(encrypt_one(chunk, embedding)) for chunk, embedding in zip(chunks, embeddings)]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
