"""Visualization service: stores SVG diagram content for questions.

Run with: uvicorn visual_api:app --port 8001
"""
import logging
from fastapi import FastAPI, Depends, Response
from sqlalchemy.orm import Session
from config import configure_logging
from db import VisualBase, visual_engine, get_visual_db
from errors import NotFound, register_error_handlers
from models import VisualizationContent
from schemas import VisualContentIn, UploadInit, UploadChunk, UploadFinalize
from uploads import UploadAssembler, InMemoryUploadStore

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Survey Visualization API")
register_error_handlers(app)

VisualBase.metadata.create_all(bind=visual_engine)

# one assembler per process; see uploads.py for multi-instance deployments
_assembler = UploadAssembler(InMemoryUploadStore())

def get_upload_assembler() -> UploadAssembler:
    return _assembler


def _get_content(db: Session, content_id: int) -> VisualizationContent:
    row = db.get(VisualizationContent, content_id)
    if not row:
        raise NotFound("Visualization not found")
    return row


@app.get("/health")
def health():
    return {"ok": True}

@app.post("/", status_code=201)
def create_content(body: VisualContentIn, db: Session = Depends(get_visual_db)):
    row = VisualizationContent(svg=body.svg)
    if body.details_on_hover is not None:
        row.details_on_hover = body.details_on_hover
    db.add(row)
    db.commit()
    return {"id": row.id}

@app.get("/{content_id}")
def get_content(content_id: int, db: Session = Depends(get_visual_db)):
    row = _get_content(db, content_id)
    return {"svg": row.svg, "detailsOnHover": row.details_on_hover}

@app.put("/{content_id}", status_code=204)
def replace_content(content_id: int, body: VisualContentIn, db: Session = Depends(get_visual_db)):
    """Replace content in one request (small payloads; large ones use the upload routes)."""
    row = _get_content(db, content_id)
    fields = body.model_dump(exclude_unset=True)
    if "svg" in fields:
        row.svg = fields["svg"]
    if fields.get("details_on_hover") is not None:
        row.details_on_hover = fields["details_on_hover"]
    db.commit()
    return Response(status_code=204)

@app.delete("/{content_id}", status_code=204)
def delete_content(content_id: int, db: Session = Depends(get_visual_db)):
    row = _get_content(db, content_id)
    db.delete(row)
    db.commit()
    return Response(status_code=204)

# ------------------------
# Chunked upload
# ------------------------
@app.post("/{content_id}/upload/init")
def upload_init(content_id: int, body: UploadInit, assembler: UploadAssembler = Depends(get_upload_assembler)):
    upload_id = assembler.init_upload(content_id, body.total_chunks, body.file_size)
    return {"uploadId": upload_id}

@app.post("/{content_id}/upload/chunk")
def upload_chunk(content_id: int, body: UploadChunk, assembler: UploadAssembler = Depends(get_upload_assembler)):
    received, total = assembler.receive_chunk(body.upload_id, body.chunk_index, body.data, resource_id=content_id)
    return {"received": received, "total": total}

@app.post("/{content_id}/upload/finalize", status_code=204)
def upload_finalize(content_id: int, body: UploadFinalize,
                    assembler: UploadAssembler = Depends(get_upload_assembler),
                    db: Session = Depends(get_visual_db)):
    def apply(svg: str):
        row = _get_content(db, content_id)
        row.svg = svg
        db.commit()

    assembler.finalize(body.upload_id, apply, resource_id=content_id)
    return Response(status_code=204)
