from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from ..auth.security import require_roles
from ..config import settings
from ..db import get_db
from ..errors import NotFound
from ..models.models import Department, Document, Role, Service
from ..services import request_service
from ..services.permissions import Actor
from ..services.request_service import UploadedDocument
from ..storage.blob_provider import BlobStorageProvider
from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import StorageProvider
from .serializers import serialize_detail, serialize_payment, serialize_request, serialize_service


router = APIRouter(prefix="/citizen", tags=["citizen"])

citizen_only = require_roles(Role.CITIZEN)

DOWNLOAD_URL_EXPIRES_S = 300


def get_storage() -> StorageProvider:
    """
    Storage provider for uploaded documents.
    Uses Azure Blob when configured for it, local disk otherwise.
    """
    if settings.storage_provider == "blob" and settings.azure_blob_connection and settings.azure_blob_container:
        return BlobStorageProvider()
    return LocalStorageProvider()


def document_response(doc: Document, storage: StorageProvider):
    """
    Local files are streamed directly; blob files are handed out as a
    short-lived download URL.
    """
    if isinstance(storage, LocalStorageProvider):
        path = storage._get_path(doc.storage_key)
        if not path.exists():
            raise NotFound("Document not found")
        return FileResponse(
            path=str(path),
            media_type=doc.content_type or "application/octet-stream",
            filename=doc.filename,
        )
    url = storage.get_download_url(doc.storage_key, expires_s=DOWNLOAD_URL_EXPIRES_S)
    if not url:
        raise NotFound("Document not found")
    return {"download_url": url, "expires_in": DOWNLOAD_URL_EXPIRES_S}


def _read_uploads(uploads: Optional[List[UploadFile]]) -> List[UploadedDocument]:
    documents = []
    for upload in uploads or []:
        # Browsers send an empty part when no file was chosen
        if not upload.filename:
            continue
        # Read one byte past the limit so oversize files fail validation without being loaded whole
        data = upload.file.read(settings.max_upload_bytes + 1)
        documents.append(UploadedDocument(filename=upload.filename, content_type=upload.content_type, data=data))
    return documents


@router.get("/dashboard")
def dashboard(db: Session = Depends(get_db), actor: Actor = Depends(citizen_only)):
    requests = request_service.list_for_actor(db, actor)
    return {"requests": [serialize_request(r) for r in requests]}


@router.get("/services")
def list_services(db: Session = Depends(get_db), _: Actor = Depends(citizen_only)):
    rows = (
        db.query(Service)
        .join(Department, Service.department_id == Department.id)
        .order_by(Department.name.asc(), Service.name.asc())
        .all()
    )
    return {"services": [serialize_service(s) for s in rows]}


@router.post("/apply", status_code=201)
def apply(
    service_id: str = Form(...),
    notes: Optional[str] = Form(None),
    documents: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(citizen_only),
    storage: StorageProvider = Depends(get_storage),
):
    req = request_service.submit_create(
        db,
        actor,
        service_id,
        notes=notes,
        documents=_read_uploads(documents),
        storage=storage,
    )
    return {"message": "Application submitted successfully", "request_id": str(req.id)}


@router.get("/requests/{request_id}")
def get_request(request_id: str, db: Session = Depends(get_db), actor: Actor = Depends(citizen_only)):
    detail = request_service.get_detail(db, actor, request_id)
    return serialize_detail(detail)


@router.post("/payment/{request_id}")
def confirm_payment(request_id: str, db: Session = Depends(get_db), actor: Actor = Depends(citizen_only)):
    payment = request_service.confirm_payment(db, actor, request_id)
    return {"message": "Payment completed successfully", "payment": serialize_payment(payment)}


@router.get("/requests/{request_id}/documents/{document_id}")
def download_document(
    request_id: str,
    document_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(citizen_only),
    storage: StorageProvider = Depends(get_storage),
):
    doc = request_service.get_document(db, actor, request_id, document_id)
    return document_response(doc, storage)
