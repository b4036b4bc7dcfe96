from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, Response
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, create_engine, text
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import Session, sessionmaker

from .assessment_engine import (
    STATUS_COMPLETED,
    AssessmentConfig,
    AssessmentError,
    AssessmentSession,
    SessionClosedError,
    UnknownQuestionError,
    cancel_session,
    complete_session,
    dump_questions,
    dump_responses,
    restore_session,
    start_session,
    submit_response,
)
from .companion import companion_reply, fallback_mood_summary, summarize_journal_mood
from .crisis_detector import CRISIS_NEXT_STEPS, CRISIS_RESOURCES, crisis_payload, detect_crisis
from .gemini_client import GeminiClient, get_gemini_client

APP_VERSION = "1.0.0"
REPO_ROOT = Path(__file__).resolve().parents[3]
load_dotenv(REPO_ROOT / ".env")

logger = logging.getLogger(__name__)


def resolve_db_path() -> str:
    db_env = (os.getenv("MANAS_DB_PATH") or os.getenv("DB_PATH") or "").strip()
    db_path = Path(db_env) if db_env else (REPO_ROOT / "manas.db")
    if not db_path.is_absolute():
        db_path = REPO_ROOT / db_path
    return str(db_path)


def resolve_upload_dir() -> Path:
    upload_env = os.getenv("MANAS_UPLOAD_DIR", "").strip()
    upload_dir = Path(upload_env) if upload_env else (REPO_ROOT / "uploads")
    if not upload_dir.is_absolute():
        upload_dir = REPO_ROOT / upload_dir
    return upload_dir


DB_PATH = resolve_db_path()
DATABASE_URL = f"sqlite:///{DB_PATH}"
SECRET_KEY = os.getenv("MANAS_SECRET_KEY", "CHANGE_ME")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24
JOURNAL_RATE_LIMIT = 10
MAX_AVATAR_BYTES = 5 * 1024 * 1024
MOODS = ["😊", "😐", "😔", "😡", "😴"]
CHAT_HISTORY_LIMIT = 100

engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    college = Column(String, nullable=True)
    year_of_study = Column(String, nullable=True)
    avatar_path = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class AssessmentRecord(Base):
    __tablename__ = "assessments"

    id = Column(String, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    questions_json = Column(String, nullable=False, default="[]")
    responses_json = Column(String, nullable=False, default="[]")
    status = Column(String, nullable=False)
    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    ended_reason = Column(String, nullable=True)
    stress_level = Column(Float, nullable=False, default=5.0)
    result_json = Column(String, nullable=True)
    crisis_json = Column(String, nullable=True)


class MoodEntry(Base):
    __tablename__ = "mood_entries"
    __table_args__ = (UniqueConstraint("user_id", "entry_date", name="uq_mood_user_date"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    entry_date = Column(Date, nullable=False)
    mood = Column(String, nullable=False)
    note = Column(String, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class JournalEntry(Base):
    __tablename__ = "journal_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String, nullable=True)
    content = Column(String, nullable=False)
    word_count = Column(Integer, nullable=False, default=0)
    mood_summary_json = Column(String, nullable=False, default="{}")
    template_type = Column(String, nullable=False, default="cute")
    entry_date = Column(Date, default=date.today, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String, nullable=False)
    content = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class CrisisEvent(Base):
    __tablename__ = "crisis_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    entry_date = Column(Date, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    source = Column(String, nullable=False)
    level = Column(String, nullable=False)
    matched_terms_json = Column(String, nullable=False, default="[]")
    snippet = Column(String, nullable=True)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str


class RegisterRequest(BaseModel):
    email: str
    password: str
    display_name: Optional[str] = None


class ProfileResponse(BaseModel):
    id: int
    email: str
    display_name: Optional[str] = None
    college: Optional[str] = None
    year_of_study: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    college: Optional[str] = None
    year_of_study: Optional[str] = None


class ResponseCreate(BaseModel):
    question_id: str
    answer: str = ""
    value: Optional[int] = None
    response_time_ms: int = Field(0, ge=0)
    confidence: float = Field(1.0, ge=0.0, le=1.0)
    note: Optional[str] = None


class MoodCreate(BaseModel):
    mood: str
    note: Optional[str] = None
    entry_date: Optional[date] = None


class MoodResponse(BaseModel):
    id: int
    mood: str
    note: Optional[str] = None
    entry_date: date
    updated_at: datetime
    crisis: Optional[dict] = None


class JournalCreate(BaseModel):
    content: str
    title: Optional[str] = None
    template_type: str = Field("cute", pattern="^(cute|cool)$")


class JournalUpdate(BaseModel):
    content: Optional[str] = None
    title: Optional[str] = None
    template_type: Optional[str] = Field(None, pattern="^(cute|cool)$")


class JournalResponse(BaseModel):
    id: int
    title: Optional[str] = None
    content: str
    word_count: int
    mood_summary: dict
    template_type: str
    entry_date: date
    created_at: datetime
    updated_at: datetime
    crisis: Optional[dict] = None


class ChatCreate(BaseModel):
    message: str


class ChatMessageResponse(BaseModel):
    id: int
    role: str
    content: str
    created_at: datetime


class ChatReply(BaseModel):
    user_message: ChatMessageResponse
    assistant_message: ChatMessageResponse
    source: str
    crisis: Optional[dict] = None


RESOURCES = [
    {
        "id": 1,
        "title": "Understanding College Anxiety: A Complete Guide",
        "description": "What anxiety looks like in college, why it happens, and practical ways to manage it.",
        "type": "article",
        "category": "anxiety",
        "duration": "8 min read",
    },
    {
        "id": 2,
        "title": "Mindfulness Meditation for Beginners",
        "description": "A guided introduction to mindfulness you can practise between classes.",
        "type": "video",
        "category": "stress",
        "duration": "10 min",
    },
    {
        "id": 3,
        "title": "Sleep Stories: Peaceful Campus Nights",
        "description": "A calming audio story to help you unwind and fall asleep.",
        "type": "audio",
        "category": "sleep",
        "duration": "15 min",
    },
    {
        "id": 4,
        "title": "Building Resilience During Exam Season",
        "description": "Strategies for staying steady through exam pressure and setbacks.",
        "type": "article",
        "category": "stress",
        "duration": "6 min read",
    },
    {
        "id": 5,
        "title": "Cognitive Behavioral Techniques for Students",
        "description": "Learn to notice and reframe unhelpful thought patterns.",
        "type": "video",
        "category": "depression",
        "duration": "18 min",
    },
    {
        "id": 6,
        "title": "Social Anxiety in College: Making Connections",
        "description": "Small, realistic steps for meeting people and building friendships on campus.",
        "type": "article",
        "category": "anxiety",
        "duration": "7 min read",
    },
]

app = FastAPI(title="Manas Svasthya API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.on_event("startup")
def on_startup() -> None:
    logging.basicConfig(level=logging.INFO)
    Base.metadata.create_all(bind=engine)
    ensure_journal_columns()
    logger.info("Manas Svasthya API %s using database %s", APP_VERSION, DB_PATH)


def ensure_journal_columns(bind=None) -> None:
    with (bind or engine).connect() as connection:
        journal_columns = {row[1] for row in connection.execute(text("PRAGMA table_info(journal_entries)"))}
        if "template_type" not in journal_columns:
            connection.execute(text("ALTER TABLE journal_entries ADD COLUMN template_type VARCHAR DEFAULT 'cute'"))
        if "updated_at" not in journal_columns:
            connection.execute(text("ALTER TABLE journal_entries ADD COLUMN updated_at DATETIME"))
            connection.execute(text("UPDATE journal_entries SET updated_at = created_at"))
        connection.commit()


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_ai_client() -> Optional[GeminiClient]:
    return get_gemini_client()


def get_assessment_config() -> AssessmentConfig:
    return AssessmentConfig.from_env()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError as exc:
        raise credentials_exception from exc

    user = db.query(User).filter(User.id == int(user_id)).first()
    if user is None:
        raise credentials_exception
    return user


def is_dev_mode() -> bool:
    value = os.getenv("MANAS_DEV_MODE", "").strip().lower()
    alt = os.getenv("DEV_MODE", "").strip().lower()
    return value in {"1", "true", "yes", "on"} or alt in {"1", "true", "yes", "on"}


@app.get("/health")
def health() -> dict:
    db_status = "ok"
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception:
        db_status = "error"
    return {
        "status": "ok",
        "version": APP_VERSION,
        "db": db_status,
        "ai_configured": get_gemini_client() is not None,
        "dev_mode": is_dev_mode(),
    }


@app.get("/meta")
def meta() -> dict:
    return {"version": APP_VERSION, "dev_mode": is_dev_mode(), "db_path": DB_PATH}


@app.get("/safety/resources")
def safety_resources() -> dict:
    return {
        "country": "IN",
        "helplines": CRISIS_RESOURCES,
        "next_steps": CRISIS_NEXT_STEPS,
        "safety_note": "This app is not medical advice. If you feel unsafe, call 112 or a helpline right away.",
    }


@app.get("/resources")
def list_resources(
    category: Optional[str] = Query(None, pattern="^(anxiety|stress|sleep|depression)$"),
) -> List[dict]:
    if category is None:
        return RESOURCES
    return [item for item in RESOURCES if item["category"] == category]


@app.post("/auth/register", response_model=TokenResponse)
def register_user(payload: RegisterRequest, db: Session = Depends(get_db)) -> TokenResponse:
    email = payload.email.strip().lower()
    if "@" not in email:
        raise HTTPException(status_code=400, detail="A valid email address is required")
    existing = db.query(User).filter(User.email == email).first()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    if len(payload.password) < 8:
        raise HTTPException(status_code=400, detail="Password must be at least 8 characters")
    if len(payload.password.encode("utf-8")) > 72:
        raise HTTPException(
            status_code=400,
            detail="Password too long (bcrypt limit is 72 bytes). Use a shorter password.",
        )
    user = User(
        email=email,
        hashed_password=get_password_hash(payload.password),
        display_name=(payload.display_name or "").strip() or None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    token = create_access_token({"sub": str(user.id), "email": user.email})
    return TokenResponse(access_token=token, token_type="bearer")


@app.post("/auth/login", response_model=TokenResponse)
def login_user(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
) -> TokenResponse:
    user = db.query(User).filter(User.email == form_data.username.strip().lower()).first()
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Invalid email or password")
    token = create_access_token({"sub": str(user.id), "email": user.email})
    return TokenResponse(access_token=token, token_type="bearer")


def build_profile(user: User) -> ProfileResponse:
    return ProfileResponse(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        college=user.college,
        year_of_study=user.year_of_study,
        avatar_url=f"/uploads/{Path(user.avatar_path).name}" if user.avatar_path else None,
        created_at=user.created_at,
    )


@app.get("/users/me", response_model=ProfileResponse)
def read_profile(user: User = Depends(get_current_user)) -> ProfileResponse:
    return build_profile(user)


@app.put("/users/me", response_model=ProfileResponse)
def update_profile(
    payload: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ProfileResponse:
    for field_name in ("display_name", "college", "year_of_study"):
        value = getattr(payload, field_name)
        if value is not None:
            setattr(user, field_name, value.strip() or None)
    db.commit()
    db.refresh(user)
    return build_profile(user)


@app.get("/uploads/{filename}")
def read_upload(filename: str) -> FileResponse:
    upload_dir = resolve_upload_dir()
    target = upload_dir / filename
    if Path(filename).name != filename or not filename.startswith("avatar_") or not target.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(target)


@app.post("/users/me/avatar", response_model=ProfileResponse)
async def upload_avatar(
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ProfileResponse:
    if not (file.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Please select an image file.")
    data = await file.read()
    if len(data) > MAX_AVATAR_BYTES:
        raise HTTPException(status_code=400, detail="Image must be smaller than 5MB.")
    upload_dir = resolve_upload_dir()
    upload_dir.mkdir(parents=True, exist_ok=True)
    suffix = Path(file.filename or "").suffix.lower()[:10]
    target = upload_dir / f"avatar_{user.id}_{uuid.uuid4().hex[:8]}{suffix}"
    target.write_bytes(data)
    if user.avatar_path:
        Path(user.avatar_path).unlink(missing_ok=True)
    user.avatar_path = str(target)
    db.commit()
    db.refresh(user)
    return build_profile(user)


def record_crisis_event(
    user_id: int,
    entry_date: date,
    source: str,
    level: str,
    matched_terms: List[str],
    snippet: Optional[str],
    db: Session,
) -> None:
    existing = (
        db.query(CrisisEvent)
        .filter(
            CrisisEvent.user_id == user_id,
            CrisisEvent.entry_date == entry_date,
            CrisisEvent.source == source,
            CrisisEvent.level == level,
        )
        .order_by(CrisisEvent.created_at.desc())
        .first()
    )
    if existing and snippet and existing.snippet == snippet:
        return
    db.add(CrisisEvent(
        user_id=user_id,
        entry_date=entry_date,
        created_at=datetime.utcnow(),
        source=source,
        level=level,
        matched_terms_json=json.dumps(matched_terms),
        snippet=snippet,
    ))


def load_session(record: AssessmentRecord) -> AssessmentSession:
    return restore_session(
        session_id=record.id,
        user_id=record.user_id,
        questions=json.loads(record.questions_json or "[]"),
        responses=json.loads(record.responses_json or "[]"),
        status=record.status,
        started_at=record.started_at,
        ended_at=record.ended_at,
        ended_reason=record.ended_reason,
        stress_level=record.stress_level,
        result=json.loads(record.result_json) if record.result_json else None,
        crisis=json.loads(record.crisis_json) if record.crisis_json else None,
    )


def store_session(record: AssessmentRecord, session: AssessmentSession) -> None:
    record.questions_json = json.dumps(dump_questions(session))
    record.responses_json = json.dumps(dump_responses(session))
    record.status = session.status
    record.ended_at = session.ended_at
    record.ended_reason = session.ended_reason
    record.stress_level = session.stress_level
    record.result_json = json.dumps(session.result) if session.result is not None else None
    record.crisis_json = json.dumps(session.crisis) if session.crisis is not None else None


def serialize_session(session: AssessmentSession) -> dict:
    current = session.current_question
    return {
        "id": session.id,
        "status": session.status,
        "ended_reason": session.ended_reason,
        "started_at": session.started_at.isoformat(),
        "ended_at": session.ended_at.isoformat() if session.ended_at else None,
        "question_count": len(session.questions),
        "answered_count": len(session.responses),
        "stress_level": session.stress_level,
        "current_question": current.to_dict() if current else None,
        "result": session.result,
        "crisis": session.crisis,
    }


def get_assessment_record(assessment_id: str, user: User, db: Session) -> AssessmentRecord:
    record = (
        db.query(AssessmentRecord)
        .filter(AssessmentRecord.id == assessment_id, AssessmentRecord.user_id == user.id)
        .first()
    )
    if record is None:
        raise HTTPException(status_code=404, detail="Assessment not found")
    return record


def assessment_http_error(exc: AssessmentError) -> HTTPException:
    if isinstance(exc, SessionClosedError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.post("/assessments")
def create_assessment(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: Optional[GeminiClient] = Depends(get_ai_client),
    config: AssessmentConfig = Depends(get_assessment_config),
) -> dict:
    session = start_session(user.id, client, config)
    record = AssessmentRecord(id=session.id, user_id=user.id, started_at=session.started_at)
    store_session(record, session)
    db.add(record)
    db.commit()
    return serialize_session(session)


@app.get("/assessments")
def list_assessments(
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[dict]:
    records = (
        db.query(AssessmentRecord)
        .filter(AssessmentRecord.user_id == user.id, AssessmentRecord.status == STATUS_COMPLETED)
        .order_by(AssessmentRecord.started_at.desc())
        .limit(limit)
        .all()
    )
    history = []
    for record in records:
        result = json.loads(record.result_json) if record.result_json else None
        history.append({
            "id": record.id,
            "started_at": record.started_at.isoformat(),
            "ended_at": record.ended_at.isoformat() if record.ended_at else None,
            "ended_reason": record.ended_reason,
            "answered_count": len(json.loads(record.responses_json or "[]")),
            "stress": result["stress"] if result else None,
            "anxiety": result["anxiety"] if result else None,
            "sleep": result["sleep"] if result else None,
            "overall_score": result["overall_score"] if result else None,
            "stress_level": result["stress_level"] if result else None,
        })
    return history


@app.get("/assessments/{assessment_id}")
def read_assessment(
    assessment_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    record = get_assessment_record(assessment_id, user, db)
    return serialize_session(load_session(record))


@app.post("/assessments/{assessment_id}/responses")
def answer_assessment(
    assessment_id: str,
    payload: ResponseCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: Optional[GeminiClient] = Depends(get_ai_client),
    config: AssessmentConfig = Depends(get_assessment_config),
) -> dict:
    record = get_assessment_record(assessment_id, user, db)
    session = load_session(record)
    try:
        step = submit_response(
            session,
            question_id=payload.question_id,
            answer=payload.answer,
            value=payload.value,
            response_time_ms=payload.response_time_ms,
            confidence=payload.confidence,
            note=payload.note,
            client=client,
            config=config,
        )
    except AssessmentError as exc:
        raise assessment_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    store_session(record, session)
    if step.crisis:
        last = session.responses[-1]
        record_crisis_event(
            user_id=user.id,
            entry_date=date.today(),
            source="assessment",
            level=step.crisis["level"],
            matched_terms=step.crisis.get("matched_terms", []),
            snippet=last.free_text[:200],
            db=db,
        )
    db.commit()
    return {
        "session": serialize_session(session),
        "next_question": step.next_question.to_dict() if step.next_question else None,
        "result": step.result,
        "crisis": step.crisis,
        "analysis": step.analysis,
        "completed": step.completed,
    }


@app.post("/assessments/{assessment_id}/complete")
def finish_assessment(
    assessment_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: Optional[GeminiClient] = Depends(get_ai_client),
    config: AssessmentConfig = Depends(get_assessment_config),
) -> dict:
    record = get_assessment_record(assessment_id, user, db)
    session = load_session(record)
    try:
        complete_session(session, client, config)
    except AssessmentError as exc:
        raise assessment_http_error(exc) from exc
    store_session(record, session)
    db.commit()
    return serialize_session(session)


@app.post("/assessments/{assessment_id}/cancel")
def abandon_assessment(
    assessment_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    record = get_assessment_record(assessment_id, user, db)
    session = load_session(record)
    try:
        cancel_session(session)
    except AssessmentError as exc:
        raise assessment_http_error(exc) from exc
    store_session(record, session)
    db.commit()
    return serialize_session(session)


def build_mood_response(entry: MoodEntry, crisis: Optional[dict] = None) -> MoodResponse:
    return MoodResponse(
        id=entry.id,
        mood=entry.mood,
        note=entry.note,
        entry_date=entry.entry_date,
        updated_at=entry.updated_at,
        crisis=crisis,
    )


@app.post("/mood", response_model=MoodResponse)
def log_mood(
    payload: MoodCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MoodResponse:
    if payload.mood not in MOODS:
        raise HTTPException(status_code=400, detail=f"Mood must be one of {' '.join(MOODS)}")
    today = date.today()
    entry_date = payload.entry_date or today
    if entry_date > today:
        raise HTTPException(status_code=400, detail="Mood cannot be logged for a future date")
    note = (payload.note or "").strip() or None
    entry = (
        db.query(MoodEntry)
        .filter(MoodEntry.user_id == user.id, MoodEntry.entry_date == entry_date)
        .first()
    )
    if entry is None:
        entry = MoodEntry(user_id=user.id, entry_date=entry_date, mood=payload.mood, note=note)
        db.add(entry)
    else:
        entry.mood = payload.mood
        entry.note = note
        entry.updated_at = datetime.utcnow()
    detection = detect_crisis(texts=[note or ""])
    if detection["is_crisis"]:
        record_crisis_event(
            user_id=user.id,
            entry_date=entry_date,
            source="mood",
            level=detection["level"],
            matched_terms=detection["matched_terms"],
            snippet=note[:200],
            db=db,
        )
    db.commit()
    db.refresh(entry)
    return build_mood_response(entry, crisis_payload(detection) if detection["is_crisis"] else None)


@app.get("/mood", response_model=List[MoodResponse])
def list_moods(
    days: int = Query(30, ge=1, le=365),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[MoodResponse]:
    start_date = date.today() - timedelta(days=days - 1)
    entries = (
        db.query(MoodEntry)
        .filter(MoodEntry.user_id == user.id, MoodEntry.entry_date >= start_date)
        .order_by(MoodEntry.entry_date.desc())
        .all()
    )
    return [build_mood_response(entry) for entry in entries]


@app.delete("/mood/{entry_date}")
def delete_mood(
    entry_date: date,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    deleted = (
        db.query(MoodEntry)
        .filter(MoodEntry.user_id == user.id, MoodEntry.entry_date == entry_date)
        .delete()
    )
    if not deleted:
        raise HTTPException(status_code=404, detail="No mood logged for that date")
    db.commit()
    return {"deleted": deleted}


def calculate_retry_after(oldest_created_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    if not oldest_created_at:
        return 3600
    now = now or datetime.utcnow()
    remaining = 3600 - (now - oldest_created_at).total_seconds()
    return max(60, int(remaining))


def build_journal_response(entry: JournalEntry, crisis: Optional[dict] = None) -> JournalResponse:
    return JournalResponse(
        id=entry.id,
        title=entry.title,
        content=entry.content,
        word_count=entry.word_count,
        mood_summary=json.loads(entry.mood_summary_json or "{}"),
        template_type=entry.template_type or "cute",
        entry_date=entry.entry_date,
        created_at=entry.created_at,
        updated_at=entry.updated_at or entry.created_at,
        crisis=crisis,
    )


def review_journal_text(
    content: str,
    client: Optional[GeminiClient],
) -> tuple[dict, Optional[dict]]:
    """Mood summary and crisis payload for an entry.

    Crisis text never reaches the model; the entry keeps a neutral summary.
    """
    detection = detect_crisis(texts=[content])
    if detection["is_crisis"]:
        return fallback_mood_summary("Your entry has been saved. Please look at the support options shown."), crisis_payload(detection)
    return summarize_journal_mood(content, client), None


def get_journal_entry(entry_id: int, user: User, db: Session) -> JournalEntry:
    entry = (
        db.query(JournalEntry)
        .filter(JournalEntry.id == entry_id, JournalEntry.user_id == user.id)
        .first()
    )
    if entry is None:
        raise HTTPException(status_code=404, detail="Journal entry not found")
    return entry


def record_journal_crisis(entry: JournalEntry, crisis: Optional[dict], db: Session) -> None:
    if not crisis:
        return
    record_crisis_event(
        user_id=entry.user_id,
        entry_date=entry.entry_date,
        source="journal",
        level=crisis["level"],
        matched_terms=crisis["matched_terms"],
        snippet=entry.content[:200],
        db=db,
    )


@app.post("/journal", response_model=JournalResponse)
def create_journal_entry(
    payload: JournalCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: Optional[GeminiClient] = Depends(get_ai_client),
) -> JournalResponse:
    content = payload.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Journal content cannot be empty")
    now = datetime.utcnow()
    cutoff = now - timedelta(hours=1)
    recent = (
        db.query(JournalEntry)
        .filter(JournalEntry.user_id == user.id, JournalEntry.created_at >= cutoff)
        .order_by(JournalEntry.created_at.asc())
        .all()
    )
    if len(recent) >= JOURNAL_RATE_LIMIT:
        retry_after = calculate_retry_after(recent[0].created_at, now)
        raise HTTPException(
            status_code=429,
            detail="Journal rate limit reached (10 per hour). Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )
    mood_summary, crisis = review_journal_text(content, client)
    entry = JournalEntry(
        user_id=user.id,
        title=(payload.title or "").strip() or None,
        content=content,
        word_count=len(content.split()),
        mood_summary_json=json.dumps(mood_summary),
        template_type=payload.template_type,
        entry_date=now.date(),
        created_at=now,
        updated_at=now,
    )
    db.add(entry)
    record_journal_crisis(entry, crisis, db)
    db.commit()
    db.refresh(entry)
    return build_journal_response(entry, crisis)


@app.get("/journal", response_model=List[JournalResponse])
def list_journal_entries(
    days: int = Query(30, ge=1, le=365),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[JournalResponse]:
    start_date = date.today() - timedelta(days=days - 1)
    entries = (
        db.query(JournalEntry)
        .filter(JournalEntry.user_id == user.id, JournalEntry.entry_date >= start_date)
        .order_by(JournalEntry.created_at.desc())
        .limit(200)
        .all()
    )
    return [build_journal_response(entry) for entry in entries]


@app.get("/journal/export")
def export_journal(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    entries = (
        db.query(JournalEntry)
        .filter(JournalEntry.user_id == user.id)
        .order_by(JournalEntry.created_at.asc(), JournalEntry.id.asc())
        .all()
    )
    payload = {
        "export_date": datetime.utcnow().isoformat(),
        "total_entries": len(entries),
        "entries": [build_journal_response(entry).model_dump(mode="json", exclude={"crisis"}) for entry in entries],
    }
    return Response(
        content=json.dumps(payload, indent=2, ensure_ascii=False),
        media_type="application/json",
        headers={"Content-Disposition": "attachment; filename=manas_journal_export.json"},
    )


@app.put("/journal/{entry_id}", response_model=JournalResponse)
def update_journal_entry(
    entry_id: int,
    payload: JournalUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: Optional[GeminiClient] = Depends(get_ai_client),
) -> JournalResponse:
    entry = get_journal_entry(entry_id, user, db)
    crisis = None
    if payload.content is not None:
        content = payload.content.strip()
        if not content:
            raise HTTPException(status_code=400, detail="Journal content cannot be empty")
        if content != entry.content:
            mood_summary, crisis = review_journal_text(content, client)
            entry.content = content
            entry.word_count = len(content.split())
            entry.mood_summary_json = json.dumps(mood_summary)
    if payload.title is not None:
        entry.title = payload.title.strip() or None
    if payload.template_type is not None:
        entry.template_type = payload.template_type
    entry.updated_at = datetime.utcnow()
    record_journal_crisis(entry, crisis, db)
    db.commit()
    db.refresh(entry)
    return build_journal_response(entry, crisis)


@app.delete("/journal/{entry_id}")
def delete_journal_entry(
    entry_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    entry = get_journal_entry(entry_id, user, db)
    db.delete(entry)
    db.commit()
    return {"deleted": 1}


def build_chat_message(message: ChatMessage) -> ChatMessageResponse:
    return ChatMessageResponse(
        id=message.id,
        role=message.role,
        content=message.content,
        created_at=message.created_at,
    )


@app.get("/chat/messages", response_model=List[ChatMessageResponse])
def list_chat_messages(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[ChatMessageResponse]:
    messages = (
        db.query(ChatMessage)
        .filter(ChatMessage.user_id == user.id)
        .order_by(ChatMessage.id.desc())
        .limit(CHAT_HISTORY_LIMIT)
        .all()
    )
    return [build_chat_message(message) for message in reversed(messages)]


@app.post("/chat/messages", response_model=ChatReply)
def send_chat_message(
    payload: ChatCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: Optional[GeminiClient] = Depends(get_ai_client),
) -> ChatReply:
    content = payload.message.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Message cannot be empty")
    earlier = (
        db.query(ChatMessage)
        .filter(ChatMessage.user_id == user.id)
        .order_by(ChatMessage.id.desc())
        .limit(10)
        .all()
    )
    history = [{"role": item.role, "content": item.content} for item in reversed(earlier)]
    reply = companion_reply(history, content, client)

    user_message = ChatMessage(user_id=user.id, role="user", content=content)
    db.add(user_message)
    db.flush()
    assistant_message = ChatMessage(user_id=user.id, role="assistant", content=reply["reply"])
    db.add(assistant_message)
    if reply["crisis"]:
        record_crisis_event(
            user_id=user.id,
            entry_date=date.today(),
            source="chat",
            level=reply["crisis"]["level"],
            matched_terms=reply["crisis"]["matched_terms"],
            snippet=content[:200],
            db=db,
        )
    db.commit()
    db.refresh(user_message)
    db.refresh(assistant_message)
    return ChatReply(
        user_message=build_chat_message(user_message),
        assistant_message=build_chat_message(assistant_message),
        source=reply["source"],
        crisis=reply["crisis"],
    )


@app.delete("/chat/messages")
def clear_chat_messages(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    deleted = db.query(ChatMessage).filter(ChatMessage.user_id == user.id).delete()
    db.commit()
    return {"deleted": deleted}
