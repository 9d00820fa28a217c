import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import FastAPI, Depends, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
import pandas as pd

from config import ORIGINS, configure_logging
from db import Base, engine, get_db
from errors import NotFound, Unauthorized, Forbidden, Conflict, ValidationError, register_error_handlers
from models import User, SurveyDesign, Question, PublishedSurvey, Visualization
from schemas import *
from security import (
    hash_password, verify_password, generate_auth_token,
    require_authentication, require_owner,
)
from visual_client import VisualClient, get_visual_client
import sequencer

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Survey Designer API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)

Base.metadata.create_all(bind=engine)

NO_ACCESS_MSG = "You do not have access to this resource"
NON_NULL_QUESTION_FIELDS = ("type", "required", "allow_comment")
EXPORT_COLUMNS = ["participant_id", "question_number", "question", "type", "response", "comment"]


# Helper functions
def get_resource_by_id(db: Session, model, resource_id: int):
    """Fetch a row by primary key.

    Raises:
        NotFound: if no row has that id.
    """
    row = db.get(model, resource_id)
    if row is None:
        raise NotFound(f"{model.__name__} {resource_id} not found")
    return row

def _owned(db: Session, model, resource_id: int, user_id: int):
    row = get_resource_by_id(db, model, resource_id)
    require_owner(user_id, row.user_id, NO_ACCESS_MSG)
    return row

def _owned_question(db: Session, question_id: int, user_id: int) -> Question:
    """Questions are owned through their survey design."""
    q = get_resource_by_id(db, Question, question_id)
    design = get_resource_by_id(db, SurveyDesign, q.survey_design_id)
    require_owner(user_id, design.user_id, NO_ACCESS_MSG)
    return q

def _dump(schema, obj) -> dict:
    return schema.model_validate(obj).model_dump(by_alias=True, mode="json")

def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Store datetimes as naive UTC (SQLite drops tzinfo)."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

def _cleanup_visual_content(client: VisualClient, content_ids) -> None:
    """Best-effort removal of remote content after the local delete committed.

    Failures are logged and the orphaned content is left behind.
    """
    for content_id in content_ids:
        if not content_id:
            continue
        try:
            client.delete(content_id)
        except NotFound:
            pass
        except Exception:
            logger.warning("could not delete visualization content %s", content_id, exc_info=True)


@app.get("/health")
def health():
    """Basic readiness probe."""
    return {"ok": True}

# ------------------------
# Users
# ------------------------
@app.post("/users", status_code=201)
def register_user(body: UserCreate, db: Session = Depends(get_db)):
    """Register a new user and log them in.

    Returns:
        dict: {"id": <new_user_id>, "token": <auth token>}

    Raises:
        ValidationError: missing fields or password mismatch.
        Conflict: name already taken.
    """
    name = (body.name or "").strip()
    if not name or not body.password or not body.confirm_password:
        raise ValidationError("All fields are required.")
    if body.password != body.confirm_password:
        raise ValidationError("Passwords do not match.")
    if db.execute(select(User).where(User.name == name)).scalar_one_or_none():
        raise Conflict("User already exists.")

    user = User(name=name, password_hash=hash_password(body.password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("User already exists.")
    return {"id": user.id, "token": generate_auth_token(user.id)}

@app.post("/users/login")
def login(body: UserLogin, db: Session = Depends(get_db)):
    user = db.execute(select(User).where(User.name == body.name)).scalar_one_or_none()
    if not user or not verify_password(body.password, user.password_hash):
        raise Unauthorized("Invalid login credentials")
    return {"token": generate_auth_token(user.id)}

@app.post("/users/logout")
def logout():
    # tokens are stateless; the client drops its copy
    return {"token": None}

@app.get("/users")
def current_user(user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    user = get_resource_by_id(db, User, user_id)
    return {"id": user.id, "name": user.name}

def _require_self(user_id: int, requested_id: int):
    if user_id != requested_id:
        raise Unauthorized("You are not allowed to access this resource")

@app.get("/users/{owner_id}/surveyDesigns")
def list_survey_designs(owner_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    _require_self(user_id, owner_id)
    rows = db.execute(select(SurveyDesign).where(SurveyDesign.user_id == owner_id).order_by(SurveyDesign.id)).scalars().all()
    return {"surveyDesigns": [_dump(SurveyDesignOut, r) for r in rows]}

@app.get("/users/{owner_id}/publishedSurveys")
def list_published_surveys(owner_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    """List a user's published surveys, each with its ``responseCount``."""
    _require_self(user_id, owner_id)
    rows = db.execute(select(PublishedSurvey).where(PublishedSurvey.user_id == owner_id).order_by(PublishedSurvey.id)).scalars().all()
    return {"publishedSurveys": [_dump(PublishedSurveyOut, r) for r in rows]}

@app.get("/users/{owner_id}/visualizations")
def list_visualizations(owner_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    _require_self(user_id, owner_id)
    rows = db.execute(select(Visualization).where(Visualization.user_id == owner_id).order_by(Visualization.id)).scalars().all()
    return {"visualizations": [_dump(VisualizationOut, r) for r in rows]}

# ------------------------
# Survey designs
# ------------------------
@app.post("/surveyDesigns", status_code=201)
def create_survey_design(body: SurveyDesignCreate, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    """Create an empty survey design owned by the caller.

    Returns:
        dict: {"id": <new_design_id>}

    Raises:
        ValidationError: if name is missing or blank.
    """
    name = (body.name or "").strip()
    if not name:
        raise ValidationError("Survey design name is required")
    design = SurveyDesign(user_id=user_id, name=name)
    db.add(design)
    db.commit()
    return {"id": design.id}

@app.get("/surveyDesigns/{design_id}", response_model=SurveyDesignOut)
def get_survey_design(design_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    return _owned(db, SurveyDesign, design_id, user_id)

@app.patch("/surveyDesigns/{design_id}")
def update_survey_design(design_id: int, body: SurveyDesignUpdate, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    design = _owned(db, SurveyDesign, design_id, user_id)
    fields = body.model_dump(exclude_unset=True)
    if "name" in fields and not (fields["name"] or "").strip():
        raise ValidationError("Survey design name is required")
    for key, value in fields.items():
        setattr(design, key, value)
    db.commit()
    return {"ok": True}

@app.delete("/surveyDesigns/{design_id}")
def delete_survey_design(design_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db),
                         client: VisualClient = Depends(get_visual_client)):
    """Delete a design with its questions, then clean up their diagrams.

    Published snapshots survive; their ``surveyDesignId`` becomes null.
    """
    design = _owned(db, SurveyDesign, design_id, user_id)
    content_ids = [q.visualization_content_id for q in design.questions]
    db.delete(design)
    db.commit()
    _cleanup_visual_content(client, content_ids)
    return {"ok": True}

@app.get("/surveyDesigns/{design_id}/questions")
def list_questions(design_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    design = get_resource_by_id(db, SurveyDesign, design_id)
    require_owner(user_id, design.user_id, "You are not allowed to access this resource")
    rows = sequencer.ordered_questions(db, design_id)
    return {"questions": [_dump(QuestionOut, q) for q in rows]}

@app.post("/surveyDesigns/{design_id}/questions", status_code=201)
def create_question(design_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    """Append an empty question at the end of the design.

    Returns:
        dict: {"id": <new_question_id>}
    """
    design = get_resource_by_id(db, SurveyDesign, design_id)
    require_owner(user_id, design.user_id, "You are not allowed to access this resource")
    question = sequencer.append_question(db, design)
    return {"id": question.id}

@app.post("/surveyDesigns/{design_id}/publishedSurveys", status_code=201)
def publish_survey(design_id: int, body: PublishRequest, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    """Normalize question numbers, snapshot the non-blank questions and publish.

    Returns:
        dict: {"id": <new_published_survey_id>}

    Raises:
        ValidationError: if no question has text.
    """
    design = get_resource_by_id(db, SurveyDesign, design_id)
    require_owner(user_id, design.user_id, "You are not allowed to access this resource")
    published = sequencer.publish(
        db, design,
        name=(body.name or "").strip() or design.name,
        open_date_time=_to_utc(body.open_date_time),
        close_date_time=_to_utc(body.close_date_time),
    )
    return {"id": published.id}

# ------------------------
# Questions
# ------------------------
@app.get("/questions/{question_id}", response_model=QuestionOut)
def get_question(question_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    return _owned_question(db, question_id, user_id)

@app.patch("/questions/{question_id}")
def update_question(question_id: int, body: QuestionUpdate, user_id: int = Depends(require_authentication),
                    db: Session = Depends(get_db), client: VisualClient = Depends(get_visual_client)):
    """Update editable question fields and the attached diagram.

    ``visualizationId`` > 0 copies that visualization's SVG into the question's
    own content (created on first import); < 0 removes the attached content.

    Raises:
        UpstreamError: the visualization service failed; nothing is committed.
    """
    q = _owned_question(db, question_id, user_id)
    fields = body.model_dump(exclude_unset=True)
    for key in NON_NULL_QUESTION_FIELDS:
        if key in fields and fields[key] is None:
            raise ValidationError(f"Invalid input: {QuestionUpdate.model_fields[key].alias} cannot be null")
    visualization_id = fields.pop("visualization_id", None)

    if visualization_id and visualization_id > 0:
        source = _owned(db, Visualization, visualization_id, user_id)
        svg = client.get_svg(source.content_id).get("svg") if source.content_id else None
        if q.visualization_content_id:
            client.replace(q.visualization_content_id, svg=svg)
        else:
            q.visualization_content_id = client.create(svg=svg)
    elif visualization_id and visualization_id < 0 and q.visualization_content_id:
        try:
            client.delete(q.visualization_content_id)
        except NotFound:
            pass
        q.visualization_content_id = None

    for key, value in fields.items():
        setattr(q, key, value)
    sequencer.touch(q.survey_design)
    db.commit()
    return {"ok": True}

@app.delete("/questions/{question_id}")
def delete_question(question_id: int, user_id: int = Depends(require_authentication),
                    db: Session = Depends(get_db), client: VisualClient = Depends(get_visual_client)):
    """Delete a question and renumber the survivors 1..N."""
    q = _owned_question(db, question_id, user_id)
    content_id = q.visualization_content_id
    sequencer.delete_question(db, q)
    _cleanup_visual_content(client, [content_id])
    return {"ok": True}

@app.post("/questions/{question_id}/moveUp")
def move_question_up(question_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    q = _owned_question(db, question_id, user_id)
    return {"ok": True, "moved": sequencer.move_up(db, q)}

@app.post("/questions/{question_id}/moveDown")
def move_question_down(question_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    q = _owned_question(db, question_id, user_id)
    return {"ok": True, "moved": sequencer.move_down(db, q)}

# ------------------------
# Published surveys (designer end)
# ------------------------
@app.get("/publishedSurveys/{published_id}", response_model=PublishedSurveyOut)
def get_published_survey(published_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    return _owned(db, PublishedSurvey, published_id, user_id)

@app.patch("/publishedSurveys/{published_id}")
def update_published_survey(published_id: int, body: PublishedSurveyUpdate, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    """Rename or reschedule (reopen/extend). The snapshot and results are immutable here."""
    pub = _owned(db, PublishedSurvey, published_id, user_id)
    fields = body.model_dump(exclude_unset=True)
    if "name" in fields:
        pub.name = fields["name"]
    if "open_date_time" in fields:
        pub.open_date_time = _to_utc(fields["open_date_time"])
    if "close_date_time" in fields:
        pub.close_date_time = _to_utc(fields["close_date_time"])
    db.commit()
    return {"ok": True}

@app.delete("/publishedSurveys/{published_id}")
def delete_published_survey(published_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    pub = _owned(db, PublishedSurvey, published_id, user_id)
    db.delete(pub)
    db.commit()
    return {"ok": True}

@app.get("/publishedSurveys/{published_id}/export.csv")
def export_results_csv(published_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    """Export participant answers as CSV, one row per answer.

    Answers are matched to snapshot questions by ``questionNumber`` (or
    ``questionId`` for older submissions).

    Returns:
        Response: text/csv attachment `published_survey_<id>_results.csv`.
    """
    pub = _owned(db, PublishedSurvey, published_id, user_id)
    by_number = {q.get("number"): q for q in pub.questions or []}
    by_id = {q.get("id"): q for q in pub.questions or []}

    rows = []
    for p in (pub.results or {}).get("participants", []):
        for a in p.get("answers") or []:
            if "questionNumber" in a:
                q = by_number.get(_as_int(a.get("questionNumber")), {})
            else:
                q = by_id.get(_as_int(a.get("questionId")), {})
            rows.append({
                "participant_id": p.get("participantId"),
                "question_number": q.get("number", _as_int(a.get("questionNumber"))),
                "question": q.get("text"),
                "type": q.get("type"),
                "response": a.get("response", a.get("answer")),
                "comment": a.get("comment"),
            })

    df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
    df["question_number"] = df["question_number"].astype("Int64")
    df = df.sort_values(["participant_id", "question_number"], kind="stable")
    csv_bytes = df.to_csv(index=False).encode("utf-8")
    return Response(content=csv_bytes, media_type="text/csv",
                    headers={"Content-Disposition": f"attachment; filename=published_survey_{published_id}_results.csv"})

def _as_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None

# ------------------------
# Take survey (participant end, no auth)
# ------------------------
def _published_by_hash(db: Session, link_hash: str) -> PublishedSurvey:
    pub = db.execute(select(PublishedSurvey).where(PublishedSurvey.link_hash == link_hash)).scalar_one_or_none()
    if not pub:
        raise NotFound(f"Requested resource /takeSurvey/{link_hash} does not exist")
    return pub

@app.get("/takeSurvey/{link_hash}")
def take_survey(link_hash: str, db: Session = Depends(get_db)):
    """Load a published snapshot for a participant.

    Questions are sorted by (number, id) and renumbered 1..M. Results are
    not exposed to participants.
    """
    pub = _published_by_hash(db, link_hash)
    payload = _dump(PublishedSurveyOut, pub)
    for key in ("results", "responseCount", "userId"):
        payload.pop(key, None)

    ordered = sorted(payload["questions"], key=lambda q: (_as_int(q.get("number")) or 0, _as_int(q.get("id")) or 0))
    payload["questions"] = [{**q, "number": pos} for pos, q in enumerate(ordered, start=1)]
    return payload

@app.patch("/takeSurvey/{link_hash}")
def submit_answers(link_hash: str, body: TakeSurveySubmit, db: Session = Depends(get_db)):
    """Record one participant's answers.

    Returns:
        dict: {"ok": True, "participantId": int}

    Raises:
        NotFound: unknown link.
        Forbidden: the survey is pending or closed.
    """
    pub = _published_by_hash(db, link_hash)
    if pub.status != "in-progress":
        raise Forbidden("This survey is not currently accepting responses")

    participants = list((pub.results or {}).get("participants", []))
    participant_id = len(participants)
    participants.append({"participantId": participant_id, "answers": body.answers})
    pub.results = {"participants": participants}
    pub.updated_at = datetime.now(timezone.utc)
    db.commit()
    return {"ok": True, "participantId": participant_id}

# ------------------------
# Visualizations (records owned here, content stored by the visualization service)
# ------------------------
@app.post("/visualizations", status_code=201)
def create_visualization(body: VisualizationCreate, user_id: int = Depends(require_authentication),
                         db: Session = Depends(get_db), client: VisualClient = Depends(get_visual_client)):
    name = (body.name or "").strip()
    if not name:
        raise ValidationError("Visualization name is required")
    content_id = client.create(svg=body.svg, details_on_hover=body.details_on_hover)
    row = Visualization(user_id=user_id, name=name, content_id=content_id)
    db.add(row)
    db.commit()
    return {"id": row.id, "contentId": content_id}

@app.get("/visualizations/{visualization_id}", response_model=VisualizationOut)
def get_visualization(visualization_id: int, user_id: int = Depends(require_authentication), db: Session = Depends(get_db)):
    return _owned(db, Visualization, visualization_id, user_id)

@app.patch("/visualizations/{visualization_id}")
def update_visualization(visualization_id: int, body: VisualizationUpdate, user_id: int = Depends(require_authentication),
                         db: Session = Depends(get_db), client: VisualClient = Depends(get_visual_client)):
    row = _owned(db, Visualization, visualization_id, user_id)
    fields = body.model_dump(exclude_unset=True)
    if "name" in fields:
        if not (fields["name"] or "").strip():
            raise ValidationError("Visualization name is required")
        row.name = fields["name"].strip()
    if fields.get("details_on_hover") is not None and row.content_id:
        client.replace(row.content_id, detailsOnHover=fields["details_on_hover"])
    db.commit()
    return {"ok": True}

@app.delete("/visualizations/{visualization_id}")
def delete_visualization(visualization_id: int, user_id: int = Depends(require_authentication),
                         db: Session = Depends(get_db), client: VisualClient = Depends(get_visual_client)):
    row = _owned(db, Visualization, visualization_id, user_id)
    content_id = row.content_id
    db.delete(row)
    db.commit()
    _cleanup_visual_content(client, [content_id])
    return {"ok": True}

@app.post("/visualizations/content/{content_id}/touch")
def touch_visualization(content_id: int, db: Session = Depends(get_db)):
    """Bump ``updatedAt`` of the record pointing at ``content_id`` (called by the visualization side)."""
    row = db.execute(select(Visualization).where(Visualization.content_id == content_id)).scalars().first()
    if not row:
        raise NotFound("Visualization not found")
    row.updated_at = datetime.now(timezone.utc)
    db.commit()
    return {"ok": True}

# ------------------------
# Visualizations: chunked upload relay
# ------------------------
@app.post("/visualizations/{visualization_id}/upload/init")
def relay_upload_init(visualization_id: int, body: UploadInit, user_id: int = Depends(require_authentication),
                      db: Session = Depends(get_db), client: VisualClient = Depends(get_visual_client)):
    row = _owned(db, Visualization, visualization_id, user_id)
    return client.upload_init(row.content_id, body.total_chunks, body.file_size)

@app.post("/visualizations/{visualization_id}/upload/chunk")
def relay_upload_chunk(visualization_id: int, body: UploadChunk, user_id: int = Depends(require_authentication),
                       db: Session = Depends(get_db), client: VisualClient = Depends(get_visual_client)):
    row = _owned(db, Visualization, visualization_id, user_id)
    return client.upload_chunk(row.content_id, body.upload_id, body.chunk_index, body.data)

@app.post("/visualizations/{visualization_id}/upload/finalize", status_code=204)
def relay_upload_finalize(visualization_id: int, body: UploadFinalize, user_id: int = Depends(require_authentication),
                          db: Session = Depends(get_db), client: VisualClient = Depends(get_visual_client)):
    row = _owned(db, Visualization, visualization_id, user_id)
    client.upload_finalize(row.content_id, body.upload_id)
    row.updated_at = datetime.now(timezone.utc)
    db.commit()
    return Response(status_code=204)
