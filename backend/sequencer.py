"""Question ordering within a survey design.

Question numbers of a design are kept dense (1..N). The store enforces
uniqueness on (survey_design_id, number), so every rewrite of more than one
row goes through a two-phase pass that first lifts rows out of the 1..N range.
Each public operation is a single transaction: it commits on success and
rolls back on any error, so a partial renumber is never committed.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from sqlalchemy import select, func
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from config import RENUMBER_OFFSET
from errors import Conflict, ValidationError
from models import Question, SurveyDesign, PublishedSurvey
from schemas import QuestionOut
from security import generate_link_hash

logger = logging.getLogger(__name__)

APPEND_ATTEMPTS = 5
PARK_NUMBER = 0


@contextmanager
def atomic(db: Session):
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def touch(design: SurveyDesign) -> None:
    """Bump the design's "last modified" marker."""
    design.updated_at = datetime.now(timezone.utc)


def ordered_questions(db: Session, survey_design_id: int) -> list[Question]:
    return db.execute(
        select(Question)
        .where(Question.survey_design_id == survey_design_id)
        .order_by(Question.number, Question.id)
    ).scalars().all()


def next_number(db: Session, survey_design_id: int) -> int:
    current = db.execute(
        select(func.max(Question.number)).where(Question.survey_design_id == survey_design_id)
    ).scalar_one_or_none()
    return (current or 0) + 1


def append_question(db: Session, design: SurveyDesign, **fields) -> Question:
    """Insert a question numbered max+1 and commit.

    A concurrent append may take the same number first; the unique constraint
    rejects ours and we retry with a freshly computed number.

    Raises:
        Conflict: if no free number could be claimed after APPEND_ATTEMPTS tries.
    """
    design_id = design.id
    for attempt in range(1, APPEND_ATTEMPTS + 1):
        row = Question(survey_design_id=design_id, number=next_number(db, design_id), **fields)
        db.add(row)
        touch(design)
        try:
            db.commit()
            return row
        except IntegrityError:
            db.rollback()
            logger.info("question number collision on design %s (attempt %d), retrying", design_id, attempt)
    raise Conflict("Could not assign a question number, please retry")


def renumber(db: Session, survey_design_id: int, offset: int = RENUMBER_OFFSET) -> list[Question]:
    """Rewrite sibling numbers to 1..N in (number, id) order. Flushes, does not commit.

    Phase 1 moves every row to lift+position, where lift is at least the
    current max number and at least N, so no lifted value can meet a row that
    has not been moved yet, and no final value can meet a lifted one.
    """
    rows = ordered_questions(db, survey_design_id)
    if all(q.number == pos for pos, q in enumerate(rows, start=1)):
        return rows

    lift = max(offset, len(rows), max(q.number for q in rows))
    for pos, q in enumerate(rows, start=1):
        q.number = lift + pos
    db.flush()
    for pos, q in enumerate(rows, start=1):
        q.number = pos
    db.flush()
    return rows


def delete_question(db: Session, question: Question) -> None:
    """Delete a question and close the gap it leaves."""
    design = question.survey_design
    with atomic(db):
        db.delete(question)
        db.flush()
        renumber(db, design.id)
        touch(design)


def _swap(db: Session, a: Question, b: Question) -> None:
    a_number, b_number = a.number, b.number
    a.number = PARK_NUMBER
    db.flush()
    b.number = a_number
    db.flush()
    a.number = b_number
    db.flush()


def _move(db: Session, question: Question, step: int) -> bool:
    neighbour = db.execute(
        select(Question)
        .where(Question.survey_design_id == question.survey_design_id,
               Question.number == question.number + step)
        .order_by(Question.id)
    ).scalars().first()
    # already at the edge, or a gap in the numbering
    if neighbour is None:
        return False
    with atomic(db):
        _swap(db, question, neighbour)
        touch(question.survey_design)
    return True


def move_up(db: Session, question: Question) -> bool:
    """Swap with the previous sibling. Returns False when there is none."""
    return _move(db, question, -1)


def move_down(db: Session, question: Question) -> bool:
    """Swap with the next sibling. Returns False when there is none."""
    return _move(db, question, +1)


def build_snapshot(questions: list[Question]) -> list[dict]:
    """Serialize non-blank questions, numbered 1..M for the snapshot only."""
    kept = [q for q in questions if (q.text or "").strip()]
    snapshot = []
    for pos, q in enumerate(kept, start=1):
        item = QuestionOut.model_validate(q).model_dump(by_alias=True, mode="json")
        item["number"] = pos
        snapshot.append(item)
    return snapshot


def publish(db: Session, design: SurveyDesign, name, open_date_time, close_date_time) -> PublishedSurvey:
    """Normalize the live design, then store an immutable snapshot of it.

    Raises:
        ValidationError: if the design has no non-blank question.
    """
    with atomic(db):
        rows = renumber(db, design.id)
        snapshot = build_snapshot(rows)
        if not snapshot:
            raise ValidationError("Survey must have at least one question with text to publish")

        published = PublishedSurvey(
            user_id=design.user_id,
            survey_design_id=design.id,
            name=name,
            open_date_time=open_date_time,
            close_date_time=close_date_time,
            link_hash=generate_link_hash(name),
            survey_design={
                "id": design.id,
                "name": design.name,
                "title": design.title,
                "introText": design.intro_text,
                "conclusionText": design.conclusion_text,
            },
            questions=snapshot,
        )
        db.add(published)
        touch(design)
    logger.info("published design %s as survey %s with %d questions", design.id, published.id, len(snapshot))
    return published
