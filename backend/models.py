from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from db import Base, VisualBase


def _utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    survey_designs = relationship("SurveyDesign", back_populates="user", cascade="all, delete-orphan")

class SurveyDesign(Base):
    __tablename__ = "survey_designs"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    title = Column(String(255), nullable=True)
    intro_text = Column(Text, nullable=True)
    conclusion_text = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    user = relationship("User", back_populates="survey_designs")
    questions = relationship("Question", back_populates="survey_design", cascade="all, delete-orphan",
                             order_by="Question.number")

class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (UniqueConstraint("survey_design_id", "number", name="uq_question_design_number"),)
    id = Column(Integer, primary_key=True, index=True)
    survey_design_id = Column(Integer, ForeignKey("survey_designs.id", ondelete="CASCADE"), index=True, nullable=False)
    number = Column(Integer, nullable=False)
    text = Column(Text, nullable=True)
    type = Column(String(50), nullable=False, default="Multiple Choice")
    choices = Column(JSON, nullable=True)
    min = Column(Integer, nullable=True)
    max = Column(Integer, nullable=True)
    required = Column(Boolean, default=False)
    allow_comment = Column(Boolean, default=False)
    visualization_content_id = Column(Integer, nullable=True)
    survey_design = relationship("SurveyDesign", back_populates="questions")

class PublishedSurvey(Base):
    __tablename__ = "published_surveys"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    survey_design_id = Column(Integer, ForeignKey("survey_designs.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(255), nullable=True)
    open_date_time = Column(DateTime(timezone=True), nullable=True)
    close_date_time = Column(DateTime(timezone=True), nullable=True)
    link_hash = Column(String(255), unique=True, index=True, nullable=False)
    survey_design = Column(JSON, nullable=True)
    questions = Column(JSON, nullable=False, default=list)
    results = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def status(self):
        """pending / in-progress / closed, derived from the open and close dates."""
        now = _utcnow().replace(tzinfo=None)
        opens = _naive_utc(self.open_date_time)
        closes = _naive_utc(self.close_date_time)
        if opens and now < opens:
            return "pending"
        if closes and now >= closes:
            return "closed"
        return "in-progress"

    @property
    def response_count(self):
        return len((self.results or {}).get("participants", []))

class Visualization(Base):
    __tablename__ = "visualizations"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    content_id = Column(Integer, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# --- visualization API store ---

class VisualizationContent(VisualBase):
    __tablename__ = "visualization_contents"
    id = Column(Integer, primary_key=True, index=True)
    svg = Column(Text, nullable=True)
    details_on_hover = Column(Boolean, nullable=False, default=True)


def _naive_utc(value):
    # SQLite hands DateTime columns back without tzinfo
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
