# spillmate/main.py
from __future__ import annotations
import asyncio
import json
import logging
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlmodel import select, Session

from spillmate import config
from spillmate.auth import AuthSession, ensure_profile, get_auth_session, require_admin
from spillmate.db import init_db, get_session
from spillmate.messages import DEFAULT_TITLE, Conversation, Message, Role
from spillmate.models import ConversationRecord, MoodLog, Profile, ProfileRole, SafetyEvent, utcnow
from spillmate.mood import MAX_RATING, MIN_RATING, summarize_moods
from spillmate.provider import FALLBACK_REPLY, ChatProvider, GeminiChatProvider, ProviderError, ProviderLogicError
from spillmate.safety import check_moderation, moderation_enabled

logging.basicConfig(level=config.LOG_LEVEL)

app = FastAPI(title="Spillmate API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# Ensure database tables exist at import time as well (useful for tests without lifespan)
try:
    init_db()
except Exception:
    logging.exception("Database initialisation failed at import; will retry on startup")

MOOD_HISTORY_LIMIT = 30
ACTIVE_WINDOW_DAYS = 7


@lru_cache()
def _gemini_provider() -> ChatProvider:
    return GeminiChatProvider(config.GEMINI_API_KEY, config.GEMINI_MODEL, timeout=config.CHAT_TIMEOUT_SECONDS)


def get_chat_provider() -> ChatProvider:
    if not config.GEMINI_API_KEY:
        logging.error("GEMINI_API_KEY is not configured.")
        raise HTTPException(status_code=500, detail="Server is missing AI configuration.")
    return _gemini_provider()


# -------- Pydantic request models --------
class ProfileIn(BaseModel):
    id: str
    email: str
    role: ProfileRole = ProfileRole.FREE_USER


class ProfileUpdateIn(BaseModel):
    id: str
    email: str


class ConversationIn(BaseModel):
    user_id: str
    title: Optional[str] = None
    mood_before: Optional[int] = Field(default=None, ge=MIN_RATING, le=MAX_RATING)


class ConversationUpdateIn(BaseModel):
    user_id: str
    title: Optional[str] = None
    mood_after: Optional[int] = Field(default=None, ge=MIN_RATING, le=MAX_RATING)


class ChatIn(BaseModel):
    conversation_id: str
    message: str
    user_id: str


class MoodIn(BaseModel):
    user_id: str
    mood_rating: int = Field(ge=MIN_RATING, le=MAX_RATING)
    notes: Optional[str] = None


class RoleUpdateIn(BaseModel):
    userId: str
    role: ProfileRole


# -------- Serialisation helpers --------
def _profile_out(p: Profile) -> dict:
    return {
        "id": p.id,
        "email": p.email,
        "role": p.role,
        "created_at": p.created_at.isoformat(),
        "updated_at": p.updated_at.isoformat(),
    }


def _conversation_out(c: ConversationRecord) -> dict:
    try:
        messages = json.loads(c.messages or "[]")
    except ValueError:
        logging.exception("Stored messages for conversation %s are not valid JSON", c.id)
        messages = []
    return {
        "id": c.id,
        "user_id": c.user_id,
        "title": c.title,
        "messages": messages,
        "mood_before": c.mood_before,
        "mood_after": c.mood_after,
        "created_at": c.created_at.isoformat(),
        "updated_at": c.updated_at.isoformat(),
    }


def _mood_out(m: MoodLog) -> dict:
    return {
        "id": m.id,
        "user_id": m.user_id,
        "mood_rating": m.mood_rating,
        "notes": m.notes,
        "created_at": m.created_at.isoformat(),
    }


def _require_user_id(user_id: Optional[str]) -> str:
    if not user_id or not user_id.strip():
        raise HTTPException(status_code=400, detail="User ID required")
    return user_id.strip()


def _owned_conversation(db: Session, conversation_id: str, user_id: str) -> ConversationRecord:
    row = db.exec(
        select(ConversationRecord).where(ConversationRecord.id == conversation_id, ConversationRecord.user_id == user_id)
    ).first()
    if not row:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return row


# -------- Status --------
@app.get("/api/status")
def status():
    """Report whether the chat provider and moderation are configured. Never returns keys."""
    return {
        "provider": "gemini",
        "provider_configured": bool(config.GEMINI_API_KEY),
        "model": config.GEMINI_MODEL,
        "moderation": moderation_enabled(),
    }


# -------- Session & profiles --------
@app.get("/api/session")
def current_session(auth: AuthSession = Depends(get_auth_session), db: Session = Depends(get_session)):
    profile = ensure_profile(auth, db)
    if auth.email and profile.email != auth.email:
        # identity provider is the source of truth for the address
        profile.email = auth.email
        profile.updated_at = utcnow()
        db.add(profile); db.commit(); db.refresh(profile)
    return {"user_id": auth.user_id, "email": auth.email, "profile": _profile_out(profile)}


@app.get("/api/profile")
def get_profile(user_id: Optional[str] = None, db: Session = Depends(get_session)):
    uid = _require_user_id(user_id)
    profile = db.exec(select(Profile).where(Profile.id == uid)).first()
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return _profile_out(profile)


@app.post("/api/profile")
def create_profile(payload: ProfileIn, db: Session = Depends(get_session)):
    profile = Profile(id=payload.id, email=payload.email.strip().lower(), role=payload.role.value)
    try:
        db.add(profile); db.commit(); db.refresh(profile)
    except Exception:
        db.rollback()
        logging.exception("Error creating profile %s", payload.id)
        raise HTTPException(status_code=500, detail="Failed to create profile")
    return _profile_out(profile)


@app.put("/api/profile")
def update_profile(payload: ProfileUpdateIn, db: Session = Depends(get_session)):
    profile = db.exec(select(Profile).where(Profile.id == payload.id)).first()
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    email = payload.email.strip().lower()
    if not email:
        raise HTTPException(status_code=400, detail="Email required")
    profile.email = email
    profile.updated_at = utcnow()
    db.add(profile); db.commit(); db.refresh(profile)
    return _profile_out(profile)


# -------- Conversations --------
@app.get("/api/conversations")
def list_conversations(user_id: Optional[str] = None, db: Session = Depends(get_session)):
    uid = _require_user_id(user_id)
    rows = db.exec(
        select(ConversationRecord).where(ConversationRecord.user_id == uid).order_by(ConversationRecord.created_at.desc())
    ).all()
    return [_conversation_out(r) for r in rows]


@app.post("/api/conversations")
def create_conversation(payload: ConversationIn, db: Session = Depends(get_session)):
    uid = _require_user_id(payload.user_id)
    title = (payload.title or "").strip()[:120] or DEFAULT_TITLE
    row = ConversationRecord(user_id=uid, title=title, messages="[]", mood_before=payload.mood_before)
    try:
        db.add(row); db.commit(); db.refresh(row)
    except Exception:
        db.rollback()
        logging.exception("Error creating conversation for %s", uid)
        raise HTTPException(status_code=500, detail="Failed to create conversation")
    return _conversation_out(row)


@app.patch("/api/conversations/{conversation_id}")
def update_conversation(conversation_id: str, payload: ConversationUpdateIn, db: Session = Depends(get_session)):
    row = _owned_conversation(db, conversation_id, _require_user_id(payload.user_id))
    if payload.title is not None:
        title = payload.title.strip()[:120]
        if not title:
            raise HTTPException(status_code=400, detail="Title must not be empty")
        row.title = title
    if payload.mood_after is not None:
        row.mood_after = payload.mood_after
    row.updated_at = utcnow()
    db.add(row); db.commit(); db.refresh(row)
    return _conversation_out(row)


@app.delete("/api/conversations/{conversation_id}")
def delete_conversation(conversation_id: str, user_id: Optional[str] = None, confirm: bool = False,
                        db: Session = Depends(get_session)):
    row = _owned_conversation(db, conversation_id, _require_user_id(user_id))
    if not confirm:
        raise HTTPException(status_code=400, detail="Deleting a conversation requires confirm=true")
    db.delete(row)
    db.commit()
    logging.info("Deleted conversation %s", conversation_id)
    return {"status": "deleted"}


# -------- Chat --------
@app.post("/api/chat")
async def chat(payload: ChatIn, db: Session = Depends(get_session),
               provider: ChatProvider = Depends(get_chat_provider)):
    text = (payload.message or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message is required")
    uid = _require_user_id(payload.user_id)
    row = _owned_conversation(db, payload.conversation_id, uid)

    try:
        conversation = Conversation.from_dicts(row.id, row.title, json.loads(row.messages or "[]"))
    except (ValueError, TypeError, AttributeError):
        logging.exception("Conversation %s has unreadable messages", row.id)
        raise HTTPException(status_code=500, detail="Failed to process message")
    conversation.append(Message(role=Role.USER, content=text))

    # Moderation flags are recorded even if the provider call fails below
    mod = check_moderation(text)
    if mod.get("flagged"):
        db.add(SafetyEvent(user_id=uid, conversation_id=row.id, kind=mod.get("reason", "flag"),
                           severity=mod.get("severity") or "low", payload=text))
        db.commit()

    preview = (text[:120] + '...') if len(text) > 120 else text
    logging.info("/api/chat called conversation=%s preview=%s", row.id, preview)

    try:
        reply = await asyncio.wait_for(provider.generate(conversation.messages), timeout=config.CHAT_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logging.warning("Chat provider timed out for conversation %s", row.id)
        raise HTTPException(status_code=500, detail="The AI took too long to respond.")
    except ProviderLogicError:
        logging.exception("Chat request broke the round-trip contract")
        raise HTTPException(status_code=500, detail="Failed to process message")
    except ProviderError as e:
        logging.error("Chat provider failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to process message")

    assistant = conversation.append(Message(role=Role.ASSISTANT, content=(reply or "").strip() or FALLBACK_REPLY))
    row.messages = json.dumps(conversation.to_dicts())
    row.updated_at = utcnow()
    db.add(row)
    db.commit()
    return assistant.to_dict()


# -------- Mood --------
@app.post("/api/mood")
def log_mood(payload: MoodIn, db: Session = Depends(get_session)):
    uid = _require_user_id(payload.user_id)
    notes = (payload.notes or "").strip() or None
    try:
        db.add(MoodLog(user_id=uid, mood_rating=payload.mood_rating, notes=notes))
        db.commit()
    except Exception:
        db.rollback()
        logging.exception("Error logging mood for %s", uid)
        raise HTTPException(status_code=500, detail="Failed to log mood")
    return {"success": True}


@app.get("/api/mood")
def list_moods(user_id: Optional[str] = None, db: Session = Depends(get_session)):
    uid = _require_user_id(user_id)
    rows = db.exec(
        select(MoodLog).where(MoodLog.user_id == uid).order_by(MoodLog.created_at.desc(), MoodLog.id.desc())
        .limit(MOOD_HISTORY_LIMIT)
    ).all()
    return [_mood_out(r) for r in rows]


@app.get("/api/mood/summary")
def mood_summary(user_id: Optional[str] = None, db: Session = Depends(get_session)):
    uid = _require_user_id(user_id)
    rows = db.exec(select(MoodLog).where(MoodLog.user_id == uid).order_by(MoodLog.created_at.desc())).all()
    return summarize_moods(rows)


# -------- Admin --------
@app.get("/api/admin/stats")
def admin_stats(admin: Profile = Depends(require_admin), db: Session = Depends(get_session)):
    total_users = db.exec(select(func.count(Profile.id))).one()
    total_conversations = db.exec(select(func.count(ConversationRecord.id))).one()
    flagged = db.exec(select(func.count(SafetyEvent.id)).where(SafetyEvent.resolved == False)).one()  # noqa: E712
    avg_mood = db.exec(select(func.avg(MoodLog.mood_rating))).one()

    cutoff = utcnow() - timedelta(days=ACTIVE_WINDOW_DAYS)
    active = set(db.exec(select(ConversationRecord.user_id).where(ConversationRecord.updated_at >= cutoff)).all())
    active |= set(db.exec(select(MoodLog.user_id).where(MoodLog.created_at >= cutoff)).all())

    return {
        "totalUsers": total_users,
        "activeUsers": len(active),
        "totalConversations": total_conversations,
        "flaggedContent": flagged,
        "averageMood": round(float(avg_mood), 2) if avg_mood is not None else 0.0,
    }


@app.get("/api/admin/users")
def admin_users(admin: Profile = Depends(require_admin), db: Session = Depends(get_session)):
    counts = dict(db.exec(
        select(ConversationRecord.user_id, func.count(ConversationRecord.id)).group_by(ConversationRecord.user_id)
    ).all())
    rows = db.exec(select(Profile).order_by(Profile.created_at.desc())).all()
    return [{**_profile_out(p), "conversation_count": counts.get(p.id, 0)} for p in rows]


@app.get("/api/admin/flagged-content")
def admin_flagged_content(admin: Profile = Depends(require_admin), db: Session = Depends(get_session)):
    rows = db.exec(
        select(SafetyEvent).where(SafetyEvent.resolved == False).order_by(SafetyEvent.created_at.desc())  # noqa: E712
    ).all()
    emails = {p.id: p.email for p in db.exec(select(Profile)).all()}
    return [
        {
            "id": str(r.id),
            "conversation_id": r.conversation_id,
            "user_email": emails.get(r.user_id, ""),
            "content": r.payload,
            "flagged_at": r.created_at.isoformat(),
            "severity": r.severity,
        }
        for r in rows
    ]


@app.delete("/api/admin/flagged-content/{flag_id}")
def admin_resolve_flag(flag_id: int, admin: Profile = Depends(require_admin), db: Session = Depends(get_session)):
    row = db.exec(select(SafetyEvent).where(SafetyEvent.id == flag_id, SafetyEvent.resolved == False)).first()  # noqa: E712
    if not row:
        raise HTTPException(status_code=404, detail="Flag not found")
    row.resolved = True
    db.add(row); db.commit()
    logging.info("Flag %s resolved by %s", flag_id, admin.id)
    return {"success": True}


@app.put("/api/admin/users/role")
def admin_update_role(payload: RoleUpdateIn, admin: Profile = Depends(require_admin),
                      db: Session = Depends(get_session)):
    profile = db.exec(select(Profile).where(Profile.id == payload.userId)).first()
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    profile.role = payload.role.value
    profile.updated_at = utcnow()
    db.add(profile); db.commit()
    logging.info("Role of %s set to %s by %s", payload.userId, payload.role.value, admin.id)
    return {"success": True}


# -------- Startup --------
@app.on_event("startup")
def _startup():
    init_db()
    if not config.GEMINI_API_KEY:
        logging.critical("GEMINI_API_KEY is not configured; refusing to start.")
        raise RuntimeError("SERVER ERROR: GEMINI_API_KEY is not configured.")
    logging.info("Gemini model %s configured for chat.", config.GEMINI_MODEL)
    if moderation_enabled():
        logging.info("OpenAI moderation enabled.")
    else:
        logging.info("OPENAI_API_KEY not set: using heuristic moderation only.")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "spillmate.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
