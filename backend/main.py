"""
FastAPI Backend for the MedAnna Case Simulator - WITH SUPABASE INTEGRATION

Provides REST API endpoints with:
- JWT Authentication
- Case generation, patient roleplay, hints and SOAP notes
- Case completion scoring (EPA evaluation + weighted rubric)
- Supabase persistence for progress, streaks, leaderboard and notifications
"""

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from openai import OpenAIError
from pydantic import BaseModel
from typing import Optional, List, Dict, Literal
import os
import sys
import time
import logging
import signal

# Setup enhanced logging with pretty formatting
from lib.logger import setup_logging, get_logger

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

# Add the medanna_simulator package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)

package_src = os.path.join(project_root, 'medanna_simulator', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client, is_supabase_configured
from lib.auth import get_current_user

from medanna_simulator.case_completion import CaseCompletionService
from medanna_simulator.case_generator import CaseGenerator
from medanna_simulator.case_models import CamelModel, ChatMessage, DiagnosticCase, GenerationFilters, TrainingPhase
from medanna_simulator.case_session import CaseSession
from medanna_simulator.epa_evaluator import EPAEvaluator
from medanna_simulator.errors import BudgetExhausted, GenerationFailure, PersistenceFailure
from medanna_simulator.hint_budget import max_hints_from_env
from medanna_simulator.llm import get_model, is_llm_configured
from medanna_simulator.local_state import AppState
from medanna_simulator.notification_manager import NotificationInbox, NotificationManager
from medanna_simulator.patient_simulator import PatientSimulator
from medanna_simulator.progress_updater import ProgressUpdater
from medanna_simulator.storage import StoragePort, storage_from_env
from medanna_simulator.user_profile_manager import UserProfileManager

# Singletons so language model clients and local storage are built once
_case_generator = None
_patient_simulator = None
_epa_evaluator = None
_storage = None


def get_case_generator() -> CaseGenerator:
    global _case_generator
    if _case_generator is None:
        _case_generator = CaseGenerator()
    return _case_generator


def get_patient_simulator() -> PatientSimulator:
    global _patient_simulator
    if _patient_simulator is None:
        _patient_simulator = PatientSimulator()
    return _patient_simulator


def get_epa_evaluator() -> EPAEvaluator:
    global _epa_evaluator
    if _epa_evaluator is None:
        _epa_evaluator = EPAEvaluator()
    return _epa_evaluator


def get_storage() -> StoragePort:
    global _storage
    if _storage is None:
        _storage = storage_from_env()
    return _storage


def get_app_state(
    user: dict = Depends(get_current_user),
    storage: StoragePort = Depends(get_storage),
) -> AppState:
    """Local state (hints, transcripts, theme) namespaced to the caller."""
    return AppState(storage=storage, user_id=user["id"], max_hints=max_hints_from_env())


def get_case_session(
    app_state: AppState = Depends(get_app_state),
    simulator: PatientSimulator = Depends(get_patient_simulator),
) -> CaseSession:
    return CaseSession(app_state, simulator)


def get_progress_updater(supabase=Depends(get_supabase_client)) -> ProgressUpdater:
    return ProgressUpdater(supabase)


def get_notification_manager(supabase=Depends(get_supabase_client)) -> NotificationManager:
    return NotificationManager(supabase)


def get_profile_manager(supabase=Depends(get_supabase_client)) -> UserProfileManager:
    return UserProfileManager(supabase_client=supabase)


def get_completion_service(
    evaluator: EPAEvaluator = Depends(get_epa_evaluator),
    progress_updater: ProgressUpdater = Depends(get_progress_updater),
    app_state: AppState = Depends(get_app_state),
) -> CaseCompletionService:
    return CaseCompletionService(evaluator, progress_updater, app_state)


# Initialize FastAPI app
app = FastAPI(
    title="MedAnna Case Simulator API",
    description="REST API for AI-generated clinical cases with rubric scoring and Supabase progress tracking",
    version="1.0.0"
)

cors_origins = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== Domain Error Mapping ====================

@app.exception_handler(GenerationFailure)
async def generation_failure_handler(request: Request, exc: GenerationFailure):
    logger.warning(f"Generation failed on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc), "retryable": True})


@app.exception_handler(OpenAIError)
async def llm_unavailable_handler(request: Request, exc: OpenAIError):
    logger.error(f"Language model call failed on {request.url.path}", error=exc)
    return JSONResponse(status_code=503, content={"detail": "The AI service is unavailable. Please try again.", "retryable": True})


@app.exception_handler(BudgetExhausted)
async def budget_exhausted_handler(request: Request, exc: BudgetExhausted):
    return JSONResponse(status_code=429, content={"detail": str(exc), "hintsRemaining": 0})


@app.exception_handler(PersistenceFailure)
async def persistence_failure_handler(request: Request, exc: PersistenceFailure):
    logger.error("Case completion not fully persisted", data={"failed_writes": exc.failed_writes})
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc), "failedWrites": exc.failed_writes},
    )


# ==================== Pydantic Models ====================

class ChatRequest(CamelModel):
    case: DiagnosticCase
    message: str
    history: Optional[List[ChatMessage]] = None


class CaseRequest(CamelModel):
    case: DiagnosticCase


class CompleteRequest(CamelModel):
    case: DiagnosticCase
    chosen_diagnosis: Optional[str] = None
    mcq_answers: Dict[int, int] = {}
    transcript: Optional[List[ChatMessage]] = None


class ProfileUpdate(CamelModel):
    full_name: Optional[str] = None
    training_phase: Optional[TrainingPhase] = None


class ThemeUpdate(BaseModel):
    theme: Literal["light", "dark"]


# ==================== Endpoints ====================

@app.get("/")
async def root():
    """Health check"""
    return {
        "service": "MedAnna Case Simulator API",
        "version": app.version,
        "status": "ok",
        "llm_configured": is_llm_configured(),
        "supabase_configured": is_supabase_configured(),
        "model": get_model(),
    }


@app.post("/api/cases/generate")
async def generate_case(
    filters: GenerationFilters,
    user: dict = Depends(get_current_user),
    generator: CaseGenerator = Depends(get_case_generator),
):
    """Generate a new case for the given filters."""
    start_time = time.time()
    logger.request("POST", "/api/cases/generate", user_id=user["id"])
    logger.section("CASE GENERATION", {
        "training_phase": filters.training_phase,
        "specialties": filters.specialties or "any",
        "epas": filters.epas or "any",
        "challenge_mode": filters.challenge_mode,
    })

    case = await generator.generate_case(filters)

    logger.success("Case generated", data={"title": case.title, "specialty": case.tags.specialty})
    logger.response(200, "/api/cases/generate", duration=time.time() - start_time)
    return case.model_dump(by_alias=True)


@app.post("/api/cases/regenerate")
async def regenerate_case(
    body: CaseRequest,
    user: dict = Depends(get_current_user),
    generator: CaseGenerator = Depends(get_case_generator),
    app_state: AppState = Depends(get_app_state),
):
    """Replace the current case with a new one of the same phase and specialty."""
    logger.request("POST", "/api/cases/regenerate", user_id=user["id"])
    case = await generator.regenerate_case(body.case)
    app_state.transcripts.clear(body.case.title)
    return case.model_dump(by_alias=True)


@app.post("/api/cases/chat")
async def chat(
    body: ChatRequest,
    user: dict = Depends(get_current_user),
    session: CaseSession = Depends(get_case_session),
):
    """One student question and the patient's reply."""
    start_time = time.time()
    logger.request("POST", "/api/cases/chat", user_id=user["id"])

    reply, transcript = await session.send_message(body.case, body.message, history=body.history)

    logger.response(200, "/api/cases/chat", duration=time.time() - start_time)
    return {
        "reply": reply.model_dump(by_alias=True),
        "transcript": [msg.model_dump(by_alias=True) for msg in transcript],
    }


@app.get("/api/cases/transcript")
async def get_transcript(
    title: str,
    app_state: AppState = Depends(get_app_state),
):
    """Saved in-progress transcript for resuming a case."""
    transcript = app_state.transcripts.load(title)
    return {"title": title, "transcript": [msg.model_dump(by_alias=True) for msg in transcript]}


@app.get("/api/hints")
async def get_hints(app_state: AppState = Depends(get_app_state)):
    return {"hintsRemaining": app_state.hints.get_remaining(), "maxHints": app_state.hints.max_hints}


@app.post("/api/cases/hint")
async def request_hint(
    body: CaseRequest,
    user: dict = Depends(get_current_user),
    session: CaseSession = Depends(get_case_session),
):
    """Generate a hint; the budget is charged only once the hint exists."""
    logger.request("POST", "/api/cases/hint", user_id=user["id"])
    hint, remaining = await session.request_hint(body.case)
    return {"hint": hint.model_dump(by_alias=True), "hintsRemaining": remaining}


@app.post("/api/cases/soap-note")
async def soap_note(
    body: CaseRequest,
    user: dict = Depends(get_current_user),
    generator: CaseGenerator = Depends(get_case_generator),
):
    logger.request("POST", "/api/cases/soap-note", user_id=user["id"])
    note = await generator.generate_soap_note(body.case)
    return {"title": body.case.title, "soapNote": note}


@app.post("/api/cases/complete")
async def complete_case(
    body: CompleteRequest,
    user: dict = Depends(get_current_user),
    service: CaseCompletionService = Depends(get_completion_service),
    profiles: UserProfileManager = Depends(get_profile_manager),
):
    """Score the finished case and record progress."""
    start_time = time.time()
    logger.request("POST", "/api/cases/complete", user_id=user["id"])
    logger.section("CASE COMPLETION", {
        "title": body.case.title,
        "diagnosis": body.chosen_diagnosis,
        "answers": len(body.mcq_answers),
    })

    full_name = await profiles.get_display_name(user["id"]) or user.get("email")
    outcome = await service.finish_case(
        user["id"],
        body.case,
        body.chosen_diagnosis,
        body.mcq_answers,
        transcript=body.transcript,
        full_name=full_name,
    )

    logger.success("Case scored and recorded", data={
        "final_score": round(outcome.result.final_score, 2),
        "breakdown": outcome.result.score_breakdown.as_dict(),
        "hints_used": outcome.result.hints_used,
        "streak": outcome.progress.streak.current_streak,
    })
    logger.response(200, "/api/cases/complete", duration=time.time() - start_time)
    return outcome.as_dict()


@app.get("/api/profile")
async def get_profile(
    user: dict = Depends(get_current_user),
    profiles: UserProfileManager = Depends(get_profile_manager),
):
    profile = await profiles.get_user_profile(user["id"], user.get("user_metadata"))
    if profile is None:
        raise HTTPException(status_code=404, detail="User profile not found")
    return profile.as_dict()


@app.patch("/api/profile")
async def update_profile(
    body: ProfileUpdate,
    user: dict = Depends(get_current_user),
    profiles: UserProfileManager = Depends(get_profile_manager),
):
    profile = await profiles.update_user_profile(
        user["id"],
        full_name=body.full_name,
        training_phase=body.training_phase,
        user_metadata=user.get("user_metadata"),
    )
    if profile is None:
        raise HTTPException(status_code=404, detail="User profile not found")
    return profile.as_dict()


@app.get("/api/progress")
async def get_progress(
    user: dict = Depends(get_current_user),
    progress_updater: ProgressUpdater = Depends(get_progress_updater),
):
    return await progress_updater.get_progress(user["id"])


@app.get("/api/leaderboard")
async def get_leaderboard(progress_updater: ProgressUpdater = Depends(get_progress_updater),
                          user: dict = Depends(get_current_user)):
    limit = int(os.getenv("LEADERBOARD_LIMIT", "20"))
    rows = await progress_updater.get_leaderboard(limit=limit)
    return {
        "entries": [
            {
                "rank": rank,
                "userId": row.get("user_id"),
                "fullName": row.get("full_name"),
                "score": row.get("score"),
                "isCurrentUser": row.get("user_id") == user["id"],
            }
            for rank, row in enumerate(rows, start=1)
        ]
    }


@app.get("/api/notifications")
async def list_notifications(
    user: dict = Depends(get_current_user),
    manager: NotificationManager = Depends(get_notification_manager),
):
    inbox = NotificationInbox(manager, user["id"])
    await inbox.refresh()
    return inbox.as_dict()


@app.post("/api/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    user: dict = Depends(get_current_user),
    manager: NotificationManager = Depends(get_notification_manager),
):
    inbox = NotificationInbox(manager, user["id"])
    await inbox.refresh()
    if not await inbox.mark_read(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return inbox.as_dict()


@app.post("/api/notifications/read-all")
async def mark_all_notifications_read(
    user: dict = Depends(get_current_user),
    manager: NotificationManager = Depends(get_notification_manager),
):
    inbox = NotificationInbox(manager, user["id"])
    await inbox.refresh()
    marked = await inbox.mark_all_read()
    return {**inbox.as_dict(), "marked": marked}


@app.get("/api/preferences/theme")
async def get_theme(app_state: AppState = Depends(get_app_state)):
    return {"theme": app_state.theme}


@app.put("/api/preferences/theme")
async def set_theme(body: ThemeUpdate, app_state: AppState = Depends(get_app_state)):
    app_state.theme = body.theme
    return {"theme": app_state.theme}


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    try:
        uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
