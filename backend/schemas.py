# schemas.py
from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from config import MAX_UPLOAD_CHUNKS


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire (both accepted on input)."""
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True

# ------------------------
# Users
# ------------------------
class UserCreate(CamelModel):
    name: Optional[str] = None
    password: Optional[str] = None
    confirm_password: Optional[str] = None

class UserLogin(CamelModel):
    name: str = ""
    password: str = ""

class UserOut(CamelModel):
    id: int
    name: str

# ------------------------
# Survey designs
# ------------------------
class SurveyDesignCreate(CamelModel):
    name: Optional[str] = None

class SurveyDesignUpdate(CamelModel):
    name: Optional[str] = None
    title: Optional[str] = None
    intro_text: Optional[str] = None
    conclusion_text: Optional[str] = None

class SurveyDesignOut(CamelModel):
    id: int
    user_id: int
    name: str
    title: Optional[str] = None
    intro_text: Optional[str] = None
    conclusion_text: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

# ------------------------
# Questions
# ------------------------
class QuestionOut(CamelModel):
    id: int
    survey_design_id: int
    number: int
    text: Optional[str] = None
    type: str
    choices: Optional[List[Any]] = None
    min: Optional[int] = None
    max: Optional[int] = None
    required: bool = False
    allow_comment: bool = False
    visualization_content_id: Optional[int] = None

class QuestionUpdate(CamelModel):
    text: Optional[str] = None
    type: Optional[str] = None
    choices: Optional[List[Any]] = None
    min: Optional[int] = None
    max: Optional[int] = None
    required: Optional[bool] = None
    allow_comment: Optional[bool] = None
    # >0 imports that visualization's SVG, <0 removes the attached one
    visualization_id: Optional[int] = None

# ------------------------
# Published surveys
# ------------------------
class PublishRequest(CamelModel):
    name: Optional[str] = None
    open_date_time: Optional[datetime] = None
    close_date_time: Optional[datetime] = None

class PublishedSurveyUpdate(CamelModel):
    name: Optional[str] = None
    open_date_time: Optional[datetime] = None
    close_date_time: Optional[datetime] = None

class PublishedSurveyOut(CamelModel):
    id: int
    user_id: int
    survey_design_id: Optional[int] = None
    name: Optional[str] = None
    open_date_time: Optional[datetime] = None
    close_date_time: Optional[datetime] = None
    link_hash: str
    status: str
    survey_design: Optional[dict] = None
    questions: List[dict] = []
    results: Optional[dict] = None
    response_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class TakeSurveySubmit(CamelModel):
    answers: List[dict] = []

# ------------------------
# Visualizations
# ------------------------
class VisualizationCreate(CamelModel):
    name: Optional[str] = None
    svg: Optional[str] = None
    details_on_hover: bool = True

class VisualizationUpdate(CamelModel):
    name: Optional[str] = None
    details_on_hover: Optional[bool] = None

class VisualizationOut(CamelModel):
    id: int
    user_id: int
    name: str
    content_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class VisualContentIn(CamelModel):
    svg: Optional[str] = None
    details_on_hover: Optional[bool] = None

class VisualContentOut(CamelModel):
    svg: Optional[str] = None
    details_on_hover: bool = True

# ------------------------
# Chunked uploads
# ------------------------
class UploadInit(CamelModel):
    total_chunks: int = Field(..., ge=1, le=MAX_UPLOAD_CHUNKS)
    file_size: Optional[int] = None

class UploadChunk(CamelModel):
    upload_id: str
    chunk_index: int
    data: str = ""

class UploadFinalize(CamelModel):
    upload_id: str
