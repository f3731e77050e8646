"""FastAPI handlers for imaging intake management."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from src.connectors.registry import CONNECTORS
from src.database.connection import get_db
from src.imaging.classifier import template_error
from src.imaging.document_filer import find_document
from src.imaging.errors import (
    ImagingError,
    NotFoundError,
    QueueConflictError,
    ReferentialIntegrityError,
    StorageError,
)
from src.imaging.poll_orchestrator import PollingOrchestrator, PollingScheduler
from src.imaging.unindexed_queue import UnindexedQueueManager
from src.models.barcode_pattern import BarcodePattern
from src.models.bucket import Bucket
from src.models.document import Document
from src.models.document_type import DocumentType
from src.models.monitoring_config import POST_PROCESS_ACTIONS, MonitoringConfig
from src.models.poll_run_log import PollRunLog
from src.models.unindexed_item import STATUS_PENDING, UnindexedItem

logger = logging.getLogger(__name__)

router = APIRouter()

# Global pipeline instances
orchestrator = PollingOrchestrator()
polling_scheduler = PollingScheduler(orchestrator)
queue_manager = UnindexedQueueManager(store=orchestrator.filer.store)


def raise_http_error(e: ImagingError):
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (QueueConflictError, ReferentialIntegrityError)):
        raise HTTPException(status_code=409, detail=str(e))
    if isinstance(e, StorageError):
        raise HTTPException(status_code=500, detail=str(e))
    raise HTTPException(status_code=400, detail=str(e))


def _non_null(values: dict, keep=()) -> dict:
    """Drop explicit nulls from a partial update, except for nullable columns in ``keep``."""
    return {field: value for field, value in values.items() if value is not None or field in keep}


# Pydantic models for API
class BucketCreate(BaseModel):
    name: str
    url: str
    description: Optional[str] = None
    is_active: bool = True


class BucketUpdate(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class DocumentTypeCreate(BaseModel):
    name: str
    description: Optional[str] = None
    is_active: bool = True


class DocumentTypeUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class BarcodePatternCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    pattern_template: str = "{documentType}-{detailLineId}"
    separator: str = "-"
    fixed_document_type: Optional[str] = None
    bucket_id: int
    priority: int = 0
    is_active: bool = True


class BarcodePatternUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    pattern_template: Optional[str] = None
    separator: Optional[str] = None
    fixed_document_type: Optional[str] = None
    bucket_id: Optional[int] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class MonitoringConfigCreate(BaseModel):
    name: Optional[str] = None
    provider: str = "office365"
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    monitored_email: Optional[str] = None
    gmail_client_id: Optional[str] = None
    gmail_client_secret: Optional[str] = None
    gmail_refresh_token: Optional[str] = None
    gmail_monitored_label: str = "INBOX"
    imaging_bucket_id: Optional[int] = None
    polling_interval: int = 5
    is_enabled: bool = False
    check_all_messages: bool = False
    post_process_action: str = "mark_read"
    processed_folder_path: str = "Processed"
    post_process_action_on_failure: str = "none"
    failure_folder_path: str = "Failed"


class MonitoringConfigUpdate(BaseModel):
    name: Optional[str] = None
    provider: Optional[str] = None
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    monitored_email: Optional[str] = None
    gmail_client_id: Optional[str] = None
    gmail_client_secret: Optional[str] = None
    gmail_refresh_token: Optional[str] = None
    gmail_monitored_label: Optional[str] = None
    imaging_bucket_id: Optional[int] = None
    polling_interval: Optional[int] = None
    is_enabled: Optional[bool] = None
    check_all_messages: Optional[bool] = None
    post_process_action: Optional[str] = None
    processed_folder_path: Optional[str] = None
    post_process_action_on_failure: Optional[str] = None
    failure_folder_path: Optional[str] = None


class ResolveRequest(BaseModel):
    detail_line_id: str
    document_type_id: int
    bill_number: Optional[str] = None
    indexed_by: Optional[str] = None


class DiscardRequest(BaseModel):
    discarded_by: Optional[str] = None


# Bucket endpoints
@router.get("/buckets")
async def list_buckets(db: Session = Depends(get_db)):
    """List imaging buckets."""
    return [bucket.dict() for bucket in db.query(Bucket).order_by(Bucket.name).all()]


@router.post("/buckets")
async def create_bucket(bucket_data: BucketCreate, db: Session = Depends(get_db)):
    """Create an imaging bucket."""
    existing = db.query(Bucket).filter(Bucket.name == bucket_data.name).first()
    if existing:
        raise HTTPException(status_code=400, detail="Bucket with this name already exists")

    bucket = Bucket(**bucket_data.dict())
    db.add(bucket)
    db.commit()
    db.refresh(bucket)

    logger.info(f"Created bucket: {bucket.name}")
    return bucket.dict()


@router.put("/buckets/{bucket_id}")
async def update_bucket(bucket_id: int, bucket_data: BucketUpdate, db: Session = Depends(get_db)):
    """Update an imaging bucket."""
    bucket = db.query(Bucket).filter(Bucket.id == bucket_id).first()
    if not bucket:
        raise HTTPException(status_code=404, detail="Bucket not found")

    values = _non_null(bucket_data.dict(exclude_unset=True), keep=("description",))
    if "name" in values:
        existing = db.query(Bucket).filter(Bucket.name == values["name"], Bucket.id != bucket_id).first()
        if existing:
            raise HTTPException(status_code=400, detail="Bucket with this name already exists")

    for field, value in values.items():
        setattr(bucket, field, value)

    db.commit()
    db.refresh(bucket)

    logger.info(f"Updated bucket: {bucket.name}")
    return bucket.dict()


@router.delete("/buckets/{bucket_id}")
async def delete_bucket(bucket_id: int, db: Session = Depends(get_db)):
    """Delete a bucket that nothing references."""
    bucket = db.query(Bucket).filter(Bucket.id == bucket_id).first()
    if not bucket:
        raise HTTPException(status_code=404, detail="Bucket not found")

    references = (
        db.query(Document).filter(Document.bucket_id == bucket_id).count()
        + db.query(UnindexedItem).filter(UnindexedItem.bucket_id == bucket_id).count()
        + db.query(BarcodePattern).filter(BarcodePattern.bucket_id == bucket_id).count()
        + db.query(MonitoringConfig).filter(MonitoringConfig.imaging_bucket_id == bucket_id).count()
    )
    if references:
        raise_http_error(ReferentialIntegrityError(f"Bucket '{bucket.name}' is still referenced ({references})"))

    name = bucket.name
    db.delete(bucket)
    db.commit()

    logger.info(f"Deleted bucket: {name}")
    return {"message": f"Bucket '{name}' deleted successfully"}


# Document type endpoints
@router.get("/document-types")
async def list_document_types(db: Session = Depends(get_db)):
    """List document types."""
    return [dt.dict() for dt in db.query(DocumentType).order_by(DocumentType.name).all()]


@router.post("/document-types")
async def create_document_type(type_data: DocumentTypeCreate, db: Session = Depends(get_db)):
    """Create a document type."""
    name = type_data.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Document type name is required")
    existing = db.query(DocumentType).filter(func.lower(DocumentType.name) == name.lower()).first()
    if existing:
        raise HTTPException(status_code=400, detail="Document type with this name already exists")

    document_type = DocumentType(name=name, description=type_data.description, is_active=type_data.is_active)
    db.add(document_type)
    db.commit()
    db.refresh(document_type)

    logger.info(f"Created document type: {document_type.name}")
    return document_type.dict()


@router.put("/document-types/{type_id}")
async def update_document_type(type_id: int, type_data: DocumentTypeUpdate, db: Session = Depends(get_db)):
    """Update a document type. Deactivating one stops dynamic patterns from matching it."""
    document_type = db.query(DocumentType).filter(DocumentType.id == type_id).first()
    if not document_type:
        raise HTTPException(status_code=404, detail="Document type not found")

    values = _non_null(type_data.dict(exclude_unset=True), keep=("description",))
    if "name" in values:
        name = values["name"].strip()
        if not name:
            raise HTTPException(status_code=400, detail="Document type name is required")
        existing = (
            db.query(DocumentType)
            .filter(func.lower(DocumentType.name) == name.lower(), DocumentType.id != type_id)
            .first()
        )
        if existing:
            raise HTTPException(status_code=400, detail="Document type with this name already exists")
        values["name"] = name

    for field, value in values.items():
        setattr(document_type, field, value)

    db.commit()
    db.refresh(document_type)

    logger.info(f"Updated document type: {document_type.name}")
    return document_type.dict()


@router.delete("/document-types/{type_id}")
async def delete_document_type(type_id: int, db: Session = Depends(get_db)):
    """Delete a document type that nothing references."""
    document_type = db.query(DocumentType).filter(DocumentType.id == type_id).first()
    if not document_type:
        raise HTTPException(status_code=404, detail="Document type not found")

    references = (
        db.query(Document).filter(Document.document_type_id == type_id).count()
        + db.query(UnindexedItem).filter(UnindexedItem.document_type_id == type_id).count()
    )
    if references:
        raise_http_error(ReferentialIntegrityError(
            f"Document type '{document_type.name}' is still referenced ({references})"
        ))

    name = document_type.name
    db.delete(document_type)
    db.commit()

    logger.info(f"Deleted document type: {name}")
    return {"message": f"Document type '{name}' deleted successfully"}


# Barcode pattern endpoints
@router.get("/barcode-patterns")
async def list_barcode_patterns(db: Session = Depends(get_db)):
    """List barcode patterns in evaluation order."""
    patterns = db.query(BarcodePattern).order_by(BarcodePattern.priority, BarcodePattern.id).all()
    return [pattern.dict() for pattern in patterns]


def _validate_pattern(values: dict, db: Session):
    error = template_error(values["pattern_template"], values["separator"], values.get("fixed_document_type"))
    if error:
        raise HTTPException(status_code=400, detail=error)
    if not db.query(Bucket).filter(Bucket.id == values["bucket_id"]).first():
        raise HTTPException(status_code=404, detail="Bucket not found")


@router.post("/barcode-patterns")
async def create_barcode_pattern(pattern_data: BarcodePatternCreate, db: Session = Depends(get_db)):
    """Create a barcode pattern."""
    values = pattern_data.dict()
    _validate_pattern(values, db)

    pattern = BarcodePattern(**values)
    db.add(pattern)
    db.commit()
    db.refresh(pattern)

    logger.info(f"Created barcode pattern {pattern.id}: {pattern.pattern_template} (priority {pattern.priority})")
    return pattern.dict()


@router.put("/barcode-patterns/{pattern_id}")
async def update_barcode_pattern(pattern_id: int, pattern_data: BarcodePatternUpdate,
                                 db: Session = Depends(get_db)):
    """Update a barcode pattern."""
    pattern = db.query(BarcodePattern).filter(BarcodePattern.id == pattern_id).first()
    if not pattern:
        raise HTTPException(status_code=404, detail="Barcode pattern not found")

    values = _non_null(pattern_data.dict(exclude_unset=True), keep=("name", "description", "fixed_document_type"))
    merged = {
        "pattern_template": pattern.pattern_template,
        "separator": pattern.separator,
        "fixed_document_type": pattern.fixed_document_type,
        "bucket_id": pattern.bucket_id,
        **values,
    }
    _validate_pattern(merged, db)

    for field, value in values.items():
        setattr(pattern, field, value)

    db.commit()
    db.refresh(pattern)

    logger.info(f"Updated barcode pattern {pattern.id}")
    return pattern.dict()


@router.delete("/barcode-patterns/{pattern_id}")
async def delete_barcode_pattern(pattern_id: int, db: Session = Depends(get_db)):
    """Delete a barcode pattern."""
    pattern = db.query(BarcodePattern).filter(BarcodePattern.id == pattern_id).first()
    if not pattern:
        raise HTTPException(status_code=404, detail="Barcode pattern not found")

    db.delete(pattern)
    db.commit()

    logger.info(f"Deleted barcode pattern {pattern_id}")
    return {"message": f"Barcode pattern {pattern_id} deleted successfully"}


# Monitoring configuration endpoints
def _validate_config(values: dict, db: Session):
    provider = values.get("provider")
    if provider is not None and provider not in CONNECTORS:
        raise HTTPException(status_code=400, detail=f"Unsupported provider: {provider}")
    for field in ("post_process_action", "post_process_action_on_failure"):
        action = values.get(field)
        if action is not None and action not in POST_PROCESS_ACTIONS:
            raise HTTPException(status_code=400, detail=f"Invalid {field}: {action}")
    interval = values.get("polling_interval")
    if interval is not None and interval < 1:
        raise HTTPException(status_code=400, detail="polling_interval must be at least 1 minute")
    bucket_id = values.get("imaging_bucket_id")
    if bucket_id is not None and not db.query(Bucket).filter(Bucket.id == bucket_id).first():
        raise HTTPException(status_code=404, detail="Bucket not found")


@router.get("/monitoring-configs")
async def list_monitoring_configs(db: Session = Depends(get_db)):
    """List monitoring configurations (secrets omitted)."""
    return [config.dict() for config in db.query(MonitoringConfig).order_by(MonitoringConfig.id).all()]


@router.post("/monitoring-configs")
async def create_monitoring_config(config_data: MonitoringConfigCreate, db: Session = Depends(get_db)):
    """Create a monitoring configuration."""
    values = config_data.dict()
    _validate_config(values, db)

    config = MonitoringConfig(**values)
    db.add(config)
    db.commit()
    db.refresh(config)

    logger.info(f"Created monitoring config {config.id} ({config.provider})")
    return config.dict()


@router.put("/monitoring-configs/{config_id}")
async def update_monitoring_config(config_id: int, config_data: MonitoringConfigUpdate,
                                   db: Session = Depends(get_db)):
    """Update a monitoring configuration."""
    config = db.query(MonitoringConfig).filter(MonitoringConfig.id == config_id).first()
    if not config:
        raise HTTPException(status_code=404, detail="Monitoring configuration not found")

    values = config_data.dict(exclude_unset=True)
    _validate_config(values, db)

    for field, value in values.items():
        setattr(config, field, value)

    db.commit()
    db.refresh(config)

    logger.info(f"Updated monitoring config {config.id}")
    return config.dict()


@router.post("/monitoring-configs/{config_id}/run")
async def run_monitoring_config(config_id: int, db: Session = Depends(get_db)):
    """Manually trigger a poll; shares the run lock with the scheduler."""
    if not db.query(MonitoringConfig).filter(MonitoringConfig.id == config_id).first():
        raise HTTPException(status_code=404, detail="Monitoring configuration not found")

    summary = await orchestrator.run_config(config_id)
    return summary.dict()


@router.get("/poll-logs")
async def list_poll_logs(config_id: Optional[int] = None, limit: int = 50, db: Session = Depends(get_db)):
    """List recent polling runs."""
    query = db.query(PollRunLog)
    if config_id is not None:
        query = query.filter(PollRunLog.config_id == config_id)
    logs = query.order_by(PollRunLog.created_at.desc(), PollRunLog.id.desc()).limit(limit).all()
    return [log.dict() for log in logs]


# Unindexed queue endpoints
@router.get("/unindexed")
async def list_unindexed(bucket_id: Optional[int] = None, status: Optional[str] = STATUS_PENDING,
                         limit: int = 200, db: Session = Depends(get_db)):
    """List unindexed queue items."""
    try:
        items = queue_manager.list_items(db, bucket_id=bucket_id, status=status, limit=limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [item.dict() for item in items]


@router.post("/unindexed/{item_id}/resolve")
async def resolve_unindexed(item_id: int, request: ResolveRequest, db: Session = Depends(get_db)):
    """Index a pending item manually."""
    try:
        document = queue_manager.resolve(
            db,
            item_id,
            detail_line_id=request.detail_line_id,
            document_type_id=request.document_type_id,
            bill_number=request.bill_number,
            user=request.indexed_by,
        )
    except ImagingError as e:
        raise_http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return document.dict()


@router.post("/unindexed/{item_id}/discard")
async def discard_unindexed(item_id: int, request: Optional[DiscardRequest] = None,
                            db: Session = Depends(get_db)):
    """Discard a pending item; its file is retained."""
    try:
        item = queue_manager.discard(db, item_id, user=request.discarded_by if request else None)
    except ImagingError as e:
        raise_http_error(e)
    return item.dict()


# Document endpoints
@router.get("/documents/lookup")
async def lookup_document(bucket_id: int, document_type_id: int, detail_line_id: str,
                          db: Session = Depends(get_db)):
    """Find the newest document filed for a detail line."""
    try:
        return find_document(db, bucket_id, document_type_id, detail_line_id)
    except ImagingError as e:
        raise_http_error(e)


@router.post("/documents")
async def upload_document(
    bucket_id: int = Form(...),
    document_type_id: int = Form(...),
    detail_line_id: str = Form(...),
    bill_number: Optional[str] = Form(None),
    storage_path: Optional[str] = Form(None),
    uploaded_by: Optional[str] = Form(None),
    file: UploadFile = File(...),
):
    """Store a document whose index values are already known."""
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    try:
        return orchestrator.filer.store_document(
            data,
            file.filename or "document.pdf",
            bucket_id=bucket_id,
            document_type_id=document_type_id,
            detail_line_id=detail_line_id.strip(),
            bill_number=bill_number,
            storage_path=storage_path,
            uploaded_by=uploaded_by,
        )
    except ImagingError as e:
        raise_http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# System endpoints
@router.get("/status")
async def get_status(db: Session = Depends(get_db)):
    """Get system status."""
    total_configs = db.query(MonitoringConfig).count()
    enabled_configs = db.query(MonitoringConfig).filter(MonitoringConfig.is_enabled == True).count()  # noqa: E712
    last_run = db.query(PollRunLog).order_by(PollRunLog.created_at.desc(), PollRunLog.id.desc()).first()

    return {
        "status": "running",
        "scheduler_active": polling_scheduler.processing,
        "monitoring_configurations": {
            "total": total_configs,
            "enabled": enabled_configs,
        },
        "documents_filed": db.query(Document).count(),
        "unindexed_pending": db.query(UnindexedItem).filter(UnindexedItem.status == STATUS_PENDING).count(),
        "last_poll": last_run.dict() if last_run else None,
    }
