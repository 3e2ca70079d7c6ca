"""
Gameplan Coach API — SQLite Version
Scouting reports, team terminology, opponent play pools and AI game plans.
Just SQLite + FastAPI; the LLM is optional (demo mode without a key).
"""

import dataclasses
import json
import logging
import os
import secrets
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import jwt
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pydantic import BaseModel, Field, field_validator

# Load .env from the backend directory (works regardless of CWD)
_backend_dir = os.path.dirname(os.path.abspath(__file__))
load_dotenv(os.path.join(_backend_dir, ".env"), override=True)

import coach_prompts
import llm_client
import playpool
import scouting
import terminology
from llm_client import LLMError, get_anthropic_client, parse_json_object
from operations import DEFAULT_TEAM_ID, PartialOperationError, StepLedger, delete_team_cascade
from playpool import SessionContext, StaleVersionError
from scouting import ScoutingReportMissing
from seed_defaults import seed as seed_default_library
from terminology import TerminologyError

# ============================================================
# LOGGING
# ============================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gameplan")

# ============================================================
# CONFIG
# ============================================================

_DATA_DIR = os.path.join(os.path.expanduser("~"), ".gameplan")
DB_FILE = os.getenv("DB_FILE", os.path.join(_DATA_DIR, "gameplan.db"))
JWT_SECRET = os.getenv("JWT_SECRET", "gameplan_dev_secret_change_in_production")
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_HOURS = int(os.getenv("JWT_EXPIRY_HOURS", "24"))
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
# Accounts registered with these emails get the admin role (library editing).
ADMIN_EMAILS = {e.strip().lower() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()}

JOIN_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
JOIN_CODE_LENGTH = 6

# ============================================================
# APP + MIDDLEWARE
# ============================================================

app = FastAPI(
    title="Gameplan Coach API",
    description="Scouting reports, play pools and game plans for football coaches",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        FRONTEND_URL,
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Accept", "Accept-Language", "Authorization", "Content-Language", "Content-Type"],
    max_age=600,
)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
security = HTTPBearer(auto_error=False)

# ============================================================
# REQUEST ID MIDDLEWARE
# ============================================================

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = str(uuid.uuid4())[:8]
    try:
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
    except Exception as exc:
        logger.exception("Middleware error on %s %s", request.method, request.url.path)
        detail = str(exc) if ENVIRONMENT == "development" else "Internal server error"
        return JSONResponse(status_code=500, content={"detail": detail})

# ============================================================
# ERROR HANDLERS
# ============================================================

@app.exception_handler(ScoutingReportMissing)
async def scouting_missing_handler(request: Request, exc: ScoutingReportMissing):
    return JSONResponse(status_code=409, content={
        "detail": "Create a scouting report for this opponent first",
        "code": "needs_scouting",
        "opponent_id": exc.opponent_id,
    })


@app.exception_handler(StaleVersionError)
async def stale_version_handler(request: Request, exc: StaleVersionError):
    return JSONResponse(status_code=409, content={
        "detail": "This play was changed by someone else. Reload and try again.",
        "code": "stale_version",
        "play_id": exc.play_id,
        "current_version": exc.current,
    })


@app.exception_handler(PartialOperationError)
async def partial_operation_handler(request: Request, exc: PartialOperationError):
    logger.error("Partial write on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={
        "detail": f"{exc.operation} did not finish",
        "code": "partial_operation",
        "completed_steps": exc.completed,
        "failed_step": exc.failed_step,
    })


@app.exception_handler(TerminologyError)
async def terminology_error_handler(request: Request, exc: TerminologyError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(LLMError)
async def llm_error_handler(request: Request, exc: LLMError):
    return JSONResponse(status_code=502, content={"detail": "AI service unavailable. Try again shortly."})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    detail = str(exc) if ENVIRONMENT == "development" else "Internal server error."
    return JSONResponse(status_code=500, content={"detail": detail})

# ============================================================
# DATABASE
# ============================================================

def get_db() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_FILE)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def _play_columns() -> str:
    cols = [f"{f} TEXT DEFAULT ''" for f in playpool.DISPLAY_FIELDS + playpool.BEATER_FIELDS]
    return ",\n            ".join(cols)


def init_db(conn: Optional[sqlite3.Connection] = None):
    """Create all tables if they don't exist, then seed the default library."""
    own = conn is None
    if own:
        os.makedirs(os.path.dirname(os.path.abspath(DB_FILE)), exist_ok=True)
        conn = get_db()
    c = conn.cursor()

    c.execute("""
        CREATE TABLE IF NOT EXISTS teams (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            join_code TEXT UNIQUE,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """)

    c.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            id TEXT PRIMARY KEY,
            team_id TEXT NOT NULL,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            first_name TEXT,
            last_name TEXT,
            role TEXT NOT NULL DEFAULT 'coach',
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (team_id) REFERENCES teams(id)
        )
    """)

    c.execute("""
        CREATE TABLE IF NOT EXISTS opponents (
            id TEXT PRIMARY KEY,
            team_id TEXT NOT NULL,
            name TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """)

    c.execute("""
        CREATE TABLE IF NOT EXISTS terminology (
            id TEXT PRIMARY KEY,
            team_id TEXT NOT NULL,
            category TEXT NOT NULL,
            concept TEXT NOT NULL,
            label TEXT,
            image_url TEXT
        )
    """)

    c.execute("""
        CREATE TABLE IF NOT EXISTS scouting_terminology (
            id TEXT PRIMARY KEY,
            category TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            is_enabled INTEGER DEFAULT 1,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """)

    c.execute("""
        CREATE TABLE IF NOT EXISTS scouting_reports (
            id TEXT PRIMARY KEY,
            team_id TEXT NOT NULL,
            opponent_id TEXT NOT NULL,
            fronts TEXT DEFAULT '[]',
            coverages TEXT DEFAULT '[]',
            blitzes TEXT DEFAULT '[]',
            fronts_pct TEXT DEFAULT '{}',
            coverages_pct TEXT DEFAULT '{}',
            blitz_pct TEXT DEFAULT '{}',
            overall_blitz_pct REAL DEFAULT 0,
            motion_percentage REAL DEFAULT 0,
            notes TEXT DEFAULT '',
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (team_id, opponent_id)
        )
    """)

    c.execute(f"""
        CREATE TABLE IF NOT EXISTS playpool (
            id TEXT PRIMARY KEY,
            team_id TEXT NOT NULL,
            opponent_id TEXT NOT NULL,
            play_id TEXT,
            category TEXT NOT NULL,
            {_play_columns()},
            customized_edit TEXT,
            notes TEXT,
            sort_order INTEGER DEFAULT 0,
            is_enabled INTEGER DEFAULT 1,
            is_locked INTEGER DEFAULT 0,
            is_favorite INTEGER DEFAULT 0,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """)

    c.execute(f"""
        CREATE TABLE IF NOT EXISTS master_play_pool (
            id TEXT PRIMARY KEY,
            category TEXT NOT NULL,
            {_play_columns()},
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """)

    c.execute("""
        CREATE TABLE IF NOT EXISTS help_videos (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            loom_url TEXT NOT NULL,
            video_type TEXT DEFAULT 'tutorial',
            position INTEGER DEFAULT 0,
            is_active INTEGER DEFAULT 1,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """)
    conn.commit()

    # Preferences used to live in the browser; now they're on the profile
    profile_cols = [col[1] for col in conn.execute("PRAGMA table_info(profiles)").fetchall()]
    if "preferences" not in profile_cols:
        conn.execute("ALTER TABLE profiles ADD COLUMN preferences TEXT DEFAULT '{}'")
        conn.commit()
        logger.info("Migration: added preferences column to profiles")

    # Row version for optimistic concurrency on play edits
    pool_cols = [col[1] for col in conn.execute("PRAGMA table_info(playpool)").fetchall()]
    if "version" not in pool_cols:
        conn.execute("ALTER TABLE playpool ADD COLUMN version INTEGER NOT NULL DEFAULT 1")
        conn.commit()
        logger.info("Migration: added version column to playpool")

    for idx_sql in [
        "CREATE INDEX IF NOT EXISTS idx_profiles_team ON profiles(team_id)",
        "CREATE INDEX IF NOT EXISTS idx_opponents_team ON opponents(team_id)",
        "CREATE INDEX IF NOT EXISTS idx_terminology_team_cat ON terminology(team_id, category)",
        "CREATE INDEX IF NOT EXISTS idx_playpool_team_opp ON playpool(team_id, opponent_id, category)",
        "CREATE INDEX IF NOT EXISTS idx_master_category ON master_play_pool(category)",
    ]:
        conn.execute(idx_sql)
    conn.commit()

    seed_default_library(conn)

    if own:
        conn.close()
    logger.info("SQLite database initialized: %s", DB_FILE)


init_db()

# ============================================================
# HELPER
# ============================================================

def row_to_dict(row: sqlite3.Row) -> dict:
    """Convert a sqlite3.Row to a plain dict."""
    return dict(row)


def gen_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def gen_join_code(conn: sqlite3.Connection) -> str:
    while True:
        code = "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(JOIN_CODE_LENGTH))
        if not conn.execute("SELECT 1 FROM teams WHERE join_code = ?", (code,)).fetchone():
            return code


def _load_preferences(raw: Optional[str]) -> dict:
    try:
        prefs = json.loads(raw or "{}")
    except (json.JSONDecodeError, TypeError):
        logger.warning("Discarding unreadable preferences: %r", raw)
        return {}
    return prefs if isinstance(prefs, dict) else {}


def _get_opponent(conn: sqlite3.Connection, team_id: str, opponent_id: str) -> dict:
    row = conn.execute(
        "SELECT * FROM opponents WHERE id = ? AND team_id = ?", (opponent_id, team_id),
    ).fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Opponent not found")
    return row_to_dict(row)


def _llm_mode() -> str:
    return "live" if get_anthropic_client() is not None else "demo"


# ============================================================
# PYDANTIC MODELS
# ============================================================

# --- Auth ---
class LoginRequest(BaseModel):
    email: str
    password: str

class RegisterRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=8)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    team_name: Optional[str] = None
    join_code: Optional[str] = None

    @field_validator("email")
    @classmethod
    def email_must_look_valid(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Invalid email address")
        return v

    @field_validator("join_code")
    @classmethod
    def normalize_join_code(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v and v.strip() else None

class UserOut(BaseModel):
    id: str
    team_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    team_name: Optional[str] = None

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut

# --- Preferences / team ---
class PreferencesUpdate(BaseModel):
    selected_opponent_id: Optional[str] = None
    motion_percentage: Optional[float] = Field(None, ge=0, le=100)
    play_counts: Optional[Dict[str, int]] = None

    @field_validator("play_counts")
    @classmethod
    def known_categories(cls, v):
        if v is not None:
            unknown = set(v) - set(playpool.CATEGORIES)
            if unknown:
                raise ValueError(f"Unknown play categories: {sorted(unknown)}")
        return v

class TeamUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)

class OpponentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)

# --- Scouting ---
class ScoutingOption(BaseModel):
    name: str = Field(..., min_length=1)
    dominate_down: str = ""
    field_area: str = ""
    notes: str = ""

class ScoutingReportIn(BaseModel):
    fronts: List[ScoutingOption] = []
    coverages: List[ScoutingOption] = []
    blitzes: List[ScoutingOption] = []
    fronts_pct: Dict[str, float] = {}
    coverages_pct: Dict[str, float] = {}
    blitz_pct: Dict[str, float] = {}
    overall_blitz_pct: float = Field(0, ge=0, le=100)
    motion_percentage: float = Field(0, ge=0, le=100)
    notes: str = ""

    @field_validator("fronts_pct", "coverages_pct", "blitz_pct")
    @classmethod
    def percentages_in_range(cls, v: Dict[str, float]) -> Dict[str, float]:
        for name, pct in v.items():
            if pct < 0 or pct > 100:
                raise ValueError(f"Percentage for {name} must be between 0 and 100")
        return v

# --- Terminology ---
class TermSelection(BaseModel):
    concept: str = Field(..., min_length=1)
    label: Optional[str] = None

class TerminologySave(BaseModel):
    selections: List[TermSelection]

class RestoreRequest(BaseModel):
    category: Optional[str] = None

# --- Play pool ---
class RegenerateRequest(BaseModel):
    opponent_id: Optional[str] = None
    play_counts: Optional[Dict[str, int]] = None

    @field_validator("play_counts")
    @classmethod
    def known_categories(cls, v):
        if v is not None:
            unknown = set(v) - set(playpool.CATEGORIES)
            if unknown:
                raise ValueError(f"Unknown play categories: {sorted(unknown)}")
        return v

class PlayUpdate(BaseModel):
    formation: Optional[str] = None
    tag: Optional[str] = None
    strength: Optional[str] = None
    motion_shift: Optional[str] = None
    concept: Optional[str] = None
    run_concept: Optional[str] = None
    run_direction: Optional[str] = None
    pass_screen_concept: Optional[str] = None
    screen_direction: Optional[str] = None
    front_beaters: Optional[str] = None
    coverage_beaters: Optional[str] = None
    blitz_beaters: Optional[str] = None
    customized_edit: Optional[str] = None
    notes: Optional[str] = None
    is_enabled: Optional[bool] = None
    is_locked: Optional[bool] = None
    is_favorite: Optional[bool] = None
    expected_version: Optional[int] = None

class AnalyzeRequest(BaseModel):
    opponent_id: Optional[str] = None

class GameplanRequest(BaseModel):
    opponent_id: Optional[str] = None
    sections: Optional[Dict[str, int]] = None

    @field_validator("sections")
    @classmethod
    def known_sections(cls, v):
        if v is None:
            return v
        unknown = set(v) - set(coach_prompts.GAMEPLAN_SECTIONS)
        if unknown:
            raise ValueError(f"Unknown game plan sections: {sorted(unknown)}")
        for key, size in v.items():
            if size < 0 or size > 30:
                raise ValueError(f"Size for {key} must be between 0 and 30")
        return v

# --- Admin ---
class HelpVideoCreate(BaseModel):
    title: str = Field(..., min_length=1)
    loom_url: str = Field(..., min_length=1)
    video_type: str = Field("tutorial", pattern="^(showcase|tutorial|tips)$")
    position: int = 0
    is_active: bool = True

class HelpVideoUpdate(BaseModel):
    title: Optional[str] = None
    loom_url: Optional[str] = None
    video_type: Optional[str] = Field(None, pattern="^(showcase|tutorial|tips)$")
    position: Optional[int] = None
    is_active: Optional[bool] = None

class MasterPlayCreate(BaseModel):
    category: str
    formation: str = ""
    tag: str = ""
    strength: str = ""
    motion_shift: str = ""
    concept: str = ""
    run_concept: str = ""
    run_direction: str = ""
    pass_screen_concept: str = ""
    screen_direction: str = ""
    front_beaters: str = ""
    coverage_beaters: str = ""
    blitz_beaters: str = ""

    @field_validator("category")
    @classmethod
    def known_category(cls, v: str) -> str:
        if v not in playpool.CATEGORIES:
            raise ValueError(f"Unknown play category: {v}")
        return v


# ============================================================
# AUTH UTILITIES
# ============================================================

def create_token(user_id: str, team_id: str, role: str) -> str:
    payload = {
        "user_id": user_id,
        "team_id": team_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRY_HOURS),
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> dict:
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(credentials.credentials, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def get_session(token_data: dict = Depends(verify_token)) -> SessionContext:
    """Build the caller's SessionContext from their profile row."""
    conn = get_db()
    row = conn.execute("SELECT * FROM profiles WHERE id = ?", (token_data["user_id"],)).fetchone()
    conn.close()
    if not row:
        raise HTTPException(status_code=401, detail="Account no longer exists")
    prefs = _load_preferences(row["preferences"])
    return SessionContext(
        team_id=row["team_id"],
        opponent_id=prefs.get("selected_opponent_id"),
        preferences=prefs,
        user_id=row["id"],
    )


def require_admin(token_data: dict = Depends(verify_token)) -> dict:
    if token_data.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return token_data


def _user_out(row, team_name: Optional[str] = None) -> UserOut:
    return UserOut(
        id=row["id"], team_id=row["team_id"], email=row["email"],
        first_name=row["first_name"], last_name=row["last_name"], role=row["role"],
        team_name=team_name,
    )


# ============================================================
# AUTH ENDPOINTS
# ============================================================

@app.post("/auth/register", response_model=TokenResponse)
async def register(req: RegisterRequest):
    team_name = (req.team_name or "").strip()
    if bool(team_name) == bool(req.join_code):
        raise HTTPException(status_code=400, detail="Provide either a team name or a join code")

    conn = get_db()
    try:
        existing = conn.execute("SELECT id FROM profiles WHERE email = ?", (req.email,)).fetchone()
        if existing:
            raise HTTPException(status_code=400, detail="Email already registered")

        if req.join_code:
            team = conn.execute("SELECT * FROM teams WHERE join_code = ?", (req.join_code,)).fetchone()
            if not team:
                raise HTTPException(status_code=404, detail="Invalid join code")
            team_id, team_name = team["id"], team["name"]
        else:
            team_id = gen_id()
            conn.execute(
                "INSERT INTO teams (id, name, join_code) VALUES (?, ?, ?)",
                (team_id, team_name, gen_join_code(conn)),
            )

        user_id = gen_id()
        role = "admin" if req.email in ADMIN_EMAILS else "coach"
        conn.execute(
            "INSERT INTO profiles (id, team_id, email, password_hash, first_name, last_name, role, preferences) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, '{}')",
            (user_id, team_id, req.email, pwd_context.hash(req.password), req.first_name, req.last_name, role),
        )
        conn.commit()
        row = conn.execute("SELECT * FROM profiles WHERE id = ?", (user_id,)).fetchone()
    finally:
        conn.close()

    logger.info("User registered: %s (team: %s)", req.email, team_name)
    return TokenResponse(access_token=create_token(user_id, team_id, role), user=_user_out(row, team_name))


@app.post("/auth/login", response_model=TokenResponse)
async def login(req: LoginRequest):
    conn = get_db()
    row = conn.execute("""
        SELECT p.*, t.name AS team_name FROM profiles p
        LEFT JOIN teams t ON t.id = p.team_id
        WHERE p.email = ?
    """, (req.email.lower().strip(),)).fetchone()
    conn.close()

    if not row:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if not pwd_context.verify(req.password, row["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    token = create_token(row["id"], row["team_id"], row["role"])
    logger.info("User logged in: %s", req.email)
    return TokenResponse(access_token=token, user=_user_out(row, row["team_name"]))


@app.get("/auth/me", response_model=UserOut)
async def get_me(token_data: dict = Depends(verify_token)):
    conn = get_db()
    row = conn.execute("""
        SELECT p.*, t.name AS team_name FROM profiles p
        LEFT JOIN teams t ON t.id = p.team_id
        WHERE p.id = ?
    """, (token_data["user_id"],)).fetchone()
    conn.close()
    if not row:
        raise HTTPException(status_code=404, detail="User not found")
    return _user_out(row, row["team_name"])


@app.delete("/auth/me")
async def delete_account(ctx: SessionContext = Depends(get_session)):
    """Delete the caller's profile; the last member out takes the team's data too."""
    conn = get_db()
    try:
        ledger = StepLedger("delete_account", user_id=ctx.user_id, team_id=ctx.team_id)

        def delete_profile():
            conn.execute("DELETE FROM profiles WHERE id = ?", (ctx.user_id,))
            conn.commit()

        ledger.run("delete profile", delete_profile)
        remaining = conn.execute(
            "SELECT COUNT(*) FROM profiles WHERE team_id = ?", (ctx.team_id,),
        ).fetchone()[0]
        team_deleted = False
        if remaining == 0 and ctx.team_id != DEFAULT_TEAM_ID:
            delete_team_cascade(conn, ctx.team_id, ledger)
            team_deleted = True
    finally:
        conn.close()

    logger.info("Account %s deleted (team deleted: %s)", ctx.user_id, team_deleted)
    return {"deleted": True, "team_deleted": team_deleted, "steps": ledger.completed}


# ============================================================
# PREFERENCES
# ============================================================

def _preferences_out(prefs: dict) -> dict:
    return {
        "selected_opponent_id": prefs.get("selected_opponent_id"),
        "motion_percentage": prefs.get("motion_percentage", 0),
        "play_counts": playpool.clamp_play_counts(prefs.get("play_counts")),
    }


@app.get("/me/preferences")
async def get_preferences(ctx: SessionContext = Depends(get_session)):
    return _preferences_out(ctx.preferences)


@app.put("/me/preferences")
async def update_preferences(body: PreferencesUpdate, ctx: SessionContext = Depends(get_session)):
    changes = body.model_dump(exclude_unset=True)
    conn = get_db()
    try:
        if changes.get("selected_opponent_id"):
            _get_opponent(conn, ctx.team_id, changes["selected_opponent_id"])
        if "play_counts" in changes:
            # null resets every category to its default count
            if changes["play_counts"] is None:
                changes["play_counts"] = playpool.clamp_play_counts(None)
            else:
                merged = {**(ctx.preferences.get("play_counts") or {}), **changes["play_counts"]}
                changes["play_counts"] = playpool.clamp_play_counts(merged)
        if "motion_percentage" in changes and changes["motion_percentage"] is None:
            changes["motion_percentage"] = 0
        prefs = {**ctx.preferences, **changes}
        conn.execute("UPDATE profiles SET preferences = ? WHERE id = ?", (json.dumps(prefs), ctx.user_id))
        conn.commit()
    finally:
        conn.close()
    return _preferences_out(prefs)


# ============================================================
# TEAM
# ============================================================

@app.get("/teams/me")
async def get_my_team(ctx: SessionContext = Depends(get_session)):
    conn = get_db()
    team = conn.execute("SELECT * FROM teams WHERE id = ?", (ctx.team_id,)).fetchone()
    members = conn.execute(
        "SELECT id, email, first_name, last_name, role, created_at FROM profiles WHERE team_id = ? ORDER BY created_at",
        (ctx.team_id,),
    ).fetchall()
    conn.close()
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    return {**row_to_dict(team), "members": [row_to_dict(m) for m in members]}


@app.put("/teams/me")
async def rename_my_team(body: TeamUpdate, ctx: SessionContext = Depends(get_session)):
    if ctx.team_id == DEFAULT_TEAM_ID:
        raise HTTPException(status_code=403, detail="The template team cannot be renamed")
    conn = get_db()
    conn.execute("UPDATE teams SET name = ? WHERE id = ?", (body.name.strip(), ctx.team_id))
    conn.commit()
    team = conn.execute("SELECT * FROM teams WHERE id = ?", (ctx.team_id,)).fetchone()
    conn.close()
    return row_to_dict(team)


# ============================================================
# OPPONENTS
# ============================================================

@app.post("/opponents", status_code=201)
async def create_opponent(body: OpponentCreate, ctx: SessionContext = Depends(get_session)):
    opponent_id = gen_id()
    conn = get_db()
    conn.execute(
        "INSERT INTO opponents (id, team_id, name, created_at) VALUES (?, ?, ?, ?)",
        (opponent_id, ctx.team_id, body.name.strip(), now_iso()),
    )
    conn.commit()
    row = conn.execute("SELECT * FROM opponents WHERE id = ?", (opponent_id,)).fetchone()
    conn.close()
    logger.info("Opponent created: %s (team %s)", body.name, ctx.team_id)
    return row_to_dict(row)


@app.get("/opponents")
async def list_opponents(ctx: SessionContext = Depends(get_session)):
    conn = get_db()
    rows = conn.execute("""
        SELECT o.*, (sr.id IS NOT NULL) AS has_scouting_report
        FROM opponents o
        LEFT JOIN scouting_reports sr ON sr.opponent_id = o.id AND sr.team_id = o.team_id
        WHERE o.team_id = ?
        ORDER BY o.name
    """, (ctx.team_id,)).fetchall()
    conn.close()
    return [dict(row_to_dict(r), has_scouting_report=bool(r["has_scouting_report"])) for r in rows]


@app.get("/opponents/{opponent_id}")
async def get_opponent(opponent_id: str, ctx: SessionContext = Depends(get_session)):
    conn = get_db()
    try:
        return _get_opponent(conn, ctx.team_id, opponent_id)
    finally:
        conn.close()


@app.delete("/opponents/{opponent_id}")
async def delete_opponent(opponent_id: str, ctx: SessionContext = Depends(get_session)):
    conn = get_db()
    try:
        _get_opponent(conn, ctx.team_id, opponent_id)
        ledger = StepLedger("delete_opponent", team_id=ctx.team_id, opponent_id=opponent_id)
        for table, column in (("playpool", "opponent_id"), ("scouting_reports", "opponent_id"), ("opponents", "id")):
            ledger.run(
                f"delete {table}",
                lambda t=table, col=column: (
                    conn.execute(f"DELETE FROM {t} WHERE team_id = ? AND {col} = ?", (ctx.team_id, opponent_id)),
                    conn.commit(),
                ),
            )
    finally:
        conn.close()
    return {"deleted": True, "steps": ledger.completed}


# ============================================================
# SCOUTING
# ============================================================

@app.get("/scouting-terminology")
async def list_scouting_terminology(
    category: Optional[str] = Query(None, pattern="^(front|coverage|blitz)$"),
    token_data: dict = Depends(verify_token),
):
    conn = get_db()
    if category:
        rows = conn.execute(
            "SELECT * FROM scouting_terminology WHERE category = ? AND is_enabled = 1 ORDER BY name",
            (category,),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM scouting_terminology WHERE is_enabled = 1 ORDER BY category, name",
        ).fetchall()
    conn.close()
    return [row_to_dict(r) for r in rows]


@app.put("/scouting-reports/{opponent_id}")
async def save_scouting_report(opponent_id: str, body: ScoutingReportIn, ctx: SessionContext = Depends(get_session)):
    conn = get_db()
    try:
        _get_opponent(conn, ctx.team_id, opponent_id)
        return scouting.save_report(conn, ctx.team_id, opponent_id, body.model_dump())
    finally:
        conn.close()


@app.get("/scouting-reports")
async def list_scouting_reports(ctx: SessionContext = Depends(get_session)):
    conn = get_db()
    try:
        return scouting.list_reports(conn, ctx.team_id)
    finally:
        conn.close()


@app.get("/scouting-reports/{opponent_id}")
async def get_scouting_report(opponent_id: str, ctx: SessionContext = Depends(get_session)):
    conn = get_db()
    try:
        _get_opponent(conn, ctx.team_id, opponent_id)
        report = scouting.get_report(conn, ctx.team_id, opponent_id)
    finally:
        conn.close()
    if report is None:
        return {**scouting.empty_report(ctx.team_id, opponent_id), "exists": False}
    return {**report, "exists": True}


@app.post("/scouting-reports/{opponent_id}/analysis")
def analyze_scouting_report(opponent_id: str, ctx: SessionContext = Depends(get_session)):
    """Stream an AI breakdown of the opponent's tendencies as plain text."""
    conn = get_db()
    try:
        _get_opponent(conn, ctx.team_id, opponent_id)
        report = scouting.get_report(conn, ctx.team_id, opponent_id)
    finally:
        conn.close()
    if report is None:
        raise ScoutingReportMissing(ctx.team_id, opponent_id)

    client = get_anthropic_client()
    if client is None:
        logger.info("No Anthropic key, streaming demo analysis for opponent %s", opponent_id)
        return StreamingResponse(iter([coach_prompts.mock_scouting_analysis(report)]), media_type="text/plain")

    chunks = llm_client.stream_text(
        client, coach_prompts.SCOUTING_ANALYST_SYSTEM, coach_prompts.build_scouting_analysis_prompt(report),
    )
    # Pull the first delta now so a provider failure is still a 502, not a broken stream.
    first = next(chunks, "")

    def relay():
        parts = [first]
        yield first
        try:
            for text in chunks:
                parts.append(text)
                yield text
        except LLMError:
            logger.error("Scouting analysis stream for opponent %s ended early", opponent_id)
            return
        coach_prompts.validate_analysis("".join(parts))

    return StreamingResponse(relay(), media_type="text/plain")


# ============================================================
# TERMINOLOGY
# ============================================================

def _check_term_category(category: Optional[str]):
    if category and category not in terminology.CATEGORIES:
        raise HTTPException(status_code=400, detail=f"Unknown terminology category: {category}")


@app.get("/terminology")
async def get_terminology(category: Optional[str] = None, ctx: SessionContext = Depends(get_session)):
    _check_term_category(category)
    conn = get_db()
    try:
        return terminology.get_team_terminology(conn, ctx.team_id, category)
    finally:
        conn.close()


@app.get("/terminology/defaults")
async def get_default_terminology(category: Optional[str] = None, token_data: dict = Depends(verify_token)):
    _check_term_category(category)
    conn = get_db()
    try:
        return terminology.get_default_terminology(conn, category)
    finally:
        conn.close()


@app.put("/terminology/{category}")
async def save_terminology(category: str, body: TerminologySave, ctx: SessionContext = Depends(get_session)):
    conn = get_db()
    try:
        rows = terminology.save_category(
            conn, ctx.team_id, category, [s.model_dump() for s in body.selections],
        )
    finally:
        conn.close()
    return {"category": category, "terminology": rows}


@app.post("/terminology/restore")
async def restore_terminology(body: RestoreRequest, ctx: SessionContext = Depends(get_session)):
    _check_term_category(body.category)
    conn = get_db()
    try:
        removed = terminology.restore_defaults(conn, ctx.team_id, body.category)
    finally:
        conn.close()
    return {"removed": removed, "category": body.category}


# ============================================================
# PLAY POOL
# ============================================================

def _with_opponent(ctx: SessionContext, opponent_id: Optional[str]) -> SessionContext:
    if opponent_id:
        return dataclasses.replace(ctx, opponent_id=opponent_id)
    return ctx


@app.get("/playpool")
async def get_play_pool(opponent_id: Optional[str] = None, ctx: SessionContext = Depends(get_session)):
    ctx = _with_opponent(ctx, opponent_id)
    targets = ctx.play_counts()
    if not ctx.opponent_id:
        return {"status": "needs_opponent", "targets": targets, "categories": {}}

    conn = get_db()
    try:
        opponent = conn.execute(
            "SELECT * FROM opponents WHERE id = ? AND team_id = ?", (ctx.opponent_id, ctx.team_id),
        ).fetchone()
        if not opponent:
            return {"status": "needs_opponent", "targets": targets, "categories": {}}
        if scouting.get_report(conn, ctx.team_id, ctx.opponent_id) is None:
            return {"status": "needs_scouting", "opponent": row_to_dict(opponent), "targets": targets, "categories": {}}
        view = playpool.pool_view(conn, ctx)
    finally:
        conn.close()
    return {"status": "ready", "opponent": row_to_dict(opponent), "targets": targets, "categories": view}


@app.post("/playpool/regenerate")
async def regenerate_play_pool(body: RegenerateRequest, ctx: SessionContext = Depends(get_session)):
    ctx = _with_opponent(ctx, body.opponent_id)
    if not ctx.opponent_id:
        raise HTTPException(status_code=400, detail="Select an opponent first")

    conn = get_db()
    try:
        _get_opponent(conn, ctx.team_id, ctx.opponent_id)
        summary = playpool.regenerate_play_pool(conn, ctx, body.play_counts)
        view = playpool.pool_view(conn, ctx)
    finally:
        conn.close()
    return {**summary, "categories": view}


@app.put("/playpool/{play_id}")
async def update_pool_play(play_id: str, body: PlayUpdate, ctx: SessionContext = Depends(get_session)):
    updates = body.model_dump(exclude_unset=True)
    expected_version = updates.pop("expected_version", None)
    conn = get_db()
    try:
        play = playpool.update_play(conn, ctx.team_id, play_id, updates, expected_version)
    finally:
        conn.close()
    if play is None:
        raise HTTPException(status_code=404, detail="Play not found")
    return dict(play, call=playpool.format_play(play))


_TOGGLE_FLAGS = {"enabled": "is_enabled", "locked": "is_locked", "lock": "is_locked", "favorite": "is_favorite"}


@app.post("/playpool/{play_id}/toggle/{flag}")
async def toggle_pool_play(
    play_id: str,
    flag: str,
    expected_version: Optional[int] = None,
    ctx: SessionContext = Depends(get_session),
):
    column = _TOGGLE_FLAGS.get(flag, flag)
    if column not in playpool.FLAG_FIELDS:
        raise HTTPException(status_code=400, detail=f"Unknown flag: {flag}")
    conn = get_db()
    try:
        play = playpool.toggle_flag(conn, ctx.team_id, play_id, column, expected_version)
    finally:
        conn.close()
    if play is None:
        raise HTTPException(status_code=404, detail="Play not found")
    return dict(play, call=playpool.format_play(play))


@app.delete("/playpool/{play_id}")
async def delete_pool_play(play_id: str, ctx: SessionContext = Depends(get_session)):
    conn = get_db()
    deleted = playpool.delete_play(conn, ctx.team_id, play_id)
    conn.close()
    if not deleted:
        raise HTTPException(status_code=404, detail="Play not found")
    return {"deleted": True}


@app.post("/playpool/analyze")
def analyze_play_pool(body: AnalyzeRequest, ctx: SessionContext = Depends(get_session)):
    """Ask the model which plays in the current pool best fit the scouting report."""
    ctx = _with_opponent(ctx, body.opponent_id)
    if not ctx.opponent_id:
        raise HTTPException(status_code=400, detail="Select an opponent first")
    conn = get_db()
    try:
        _get_opponent(conn, ctx.team_id, ctx.opponent_id)
        report = scouting.get_report(conn, ctx.team_id, ctx.opponent_id)
        if report is None:
            raise ScoutingReportMissing(ctx.team_id, ctx.opponent_id)
        calls = playpool.calls_by_category(conn, ctx)
    finally:
        conn.close()

    client = get_anthropic_client()
    if client is None:
        result = coach_prompts.mock_play_selection(report, calls)
        return {**result, "mode": "demo"}

    text = llm_client.complete_text(
        client, coach_prompts.PLAY_SELECTION_SYSTEM,
        coach_prompts.build_play_selection_prompt(report, calls),
        max_tokens=2000, temperature=0.7,
    )
    result = coach_prompts.coerce_play_selection(parse_json_object(text), calls)
    return {**result, "mode": "live"}


# ============================================================
# GAME PLAN
# ============================================================

@app.post("/gameplan/generate")
def generate_gameplan(body: GameplanRequest, ctx: SessionContext = Depends(get_session)):
    """Organize the active, enabled pool into game plan sections."""
    ctx = _with_opponent(ctx, body.opponent_id)
    if not ctx.opponent_id:
        raise HTTPException(status_code=400, detail="Select an opponent first")
    sizes = coach_prompts.default_section_sizes()
    if body.sections:
        sizes.update(body.sections)

    conn = get_db()
    try:
        _get_opponent(conn, ctx.team_id, ctx.opponent_id)
        calls = playpool.calls_by_category(conn, ctx)
    finally:
        conn.close()
    pool_calls = [c for cat in playpool.CATEGORIES for c in calls.get(cat, [])]
    if not pool_calls:
        raise HTTPException(status_code=400, detail="Play pool is empty. Build it before generating a game plan.")

    client = get_anthropic_client()
    if client is None:
        result = coach_prompts.mock_gameplan(calls, sizes)
        mode = "demo"
    else:
        text = llm_client.complete_text(
            client, coach_prompts.OFFENSIVE_COORDINATOR_SYSTEM,
            coach_prompts.build_gameplan_prompt(pool_calls, sizes),
            max_tokens=4000, temperature=0.7,
        )
        result = coach_prompts.coerce_gameplan(parse_json_object(text), sizes, pool_calls)
        mode = "live"

    logger.info("Game plan generated for team %s vs %s (%s, malformed=%s)",
                ctx.team_id, ctx.opponent_id, mode, result["malformed"])
    return {"opponent_id": ctx.opponent_id, "sizes": sizes, **result, "mode": mode}


# ============================================================
# HELP VIDEOS
# ============================================================

@app.get("/help-videos")
async def list_help_videos():
    conn = get_db()
    rows = conn.execute("SELECT * FROM help_videos WHERE is_active = 1 ORDER BY position").fetchall()
    conn.close()
    return [row_to_dict(r) for r in rows]


@app.get("/admin/help-videos")
async def list_all_help_videos(token_data: dict = Depends(require_admin)):
    conn = get_db()
    rows = conn.execute("SELECT * FROM help_videos ORDER BY position").fetchall()
    conn.close()
    return [row_to_dict(r) for r in rows]


@app.post("/admin/help-videos", status_code=201)
async def create_help_video(body: HelpVideoCreate, token_data: dict = Depends(require_admin)):
    video_id = gen_id()
    now = now_iso()
    conn = get_db()
    conn.execute(
        "INSERT INTO help_videos (id, title, loom_url, video_type, position, is_active, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        (video_id, body.title, body.loom_url, body.video_type, body.position, int(body.is_active), now, now),
    )
    conn.commit()
    row = conn.execute("SELECT * FROM help_videos WHERE id = ?", (video_id,)).fetchone()
    conn.close()
    return row_to_dict(row)


@app.put("/admin/help-videos/{video_id}")
async def update_help_video(video_id: str, body: HelpVideoUpdate, token_data: dict = Depends(require_admin)):
    changes = body.model_dump(exclude_unset=True)
    if "is_active" in changes:
        changes["is_active"] = int(bool(changes["is_active"]))
    conn = get_db()
    if changes:
        sets = ", ".join(f"{k} = ?" for k in changes)
        conn.execute(
            f"UPDATE help_videos SET {sets}, updated_at = ? WHERE id = ?",
            list(changes.values()) + [now_iso(), video_id],
        )
        conn.commit()
    row = conn.execute("SELECT * FROM help_videos WHERE id = ?", (video_id,)).fetchone()
    conn.close()
    if not row:
        raise HTTPException(status_code=404, detail="Help video not found")
    return row_to_dict(row)


@app.delete("/admin/help-videos/{video_id}")
async def delete_help_video(video_id: str, token_data: dict = Depends(require_admin)):
    conn = get_db()
    cur = conn.execute("DELETE FROM help_videos WHERE id = ?", (video_id,))
    conn.commit()
    conn.close()
    if cur.rowcount == 0:
        raise HTTPException(status_code=404, detail="Help video not found")
    return {"deleted": True}


# ============================================================
# ADMIN: MASTER PLAY POOL
# ============================================================

@app.get("/admin/master-plays")
async def list_master_plays(category: Optional[str] = None, token_data: dict = Depends(require_admin)):
    conn = get_db()
    if category:
        rows = conn.execute(
            "SELECT * FROM master_play_pool WHERE category = ? ORDER BY id", (category,),
        ).fetchall()
    else:
        rows = conn.execute("SELECT * FROM master_play_pool ORDER BY category, id").fetchall()
    conn.close()
    return [dict(row_to_dict(r), call=playpool.format_play(r)) for r in rows]


@app.post("/admin/master-plays", status_code=201)
async def create_master_play(body: MasterPlayCreate, token_data: dict = Depends(require_admin)):
    play = body.model_dump()
    play_id = gen_id()
    fields = ["category"] + list(playpool.DISPLAY_FIELDS + playpool.BEATER_FIELDS)
    conn = get_db()
    conn.execute(
        f"INSERT INTO master_play_pool (id, {', '.join(fields)}) VALUES (?, {', '.join('?' * len(fields))})",
        [play_id] + [play[f] for f in fields],
    )
    conn.commit()
    row = conn.execute("SELECT * FROM master_play_pool WHERE id = ?", (play_id,)).fetchone()
    conn.close()
    logger.info("Master play added: %s (%s)", playpool.format_play(row), body.category)
    return dict(row_to_dict(row), call=playpool.format_play(row))


# ============================================================
# HEALTH
# ============================================================

@app.get("/health")
async def health():
    conn = get_db()
    conn.execute("SELECT 1").fetchone()
    conn.close()
    return {"status": "ok", "database": "connected", "llm": _llm_mode(), "environment": ENVIRONMENT}


# ============================================================
# MAIN
# ============================================================

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8000"))
    logger.info("Starting Gameplan Coach API (SQLite) on port %d", port)
    logger.info("Database: %s", DB_FILE)
    logger.info("API Docs: http://localhost:%d/docs", port)
    uvicorn.run(app, host="0.0.0.0", port=port)
