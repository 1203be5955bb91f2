import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dqscore.config import get_settings
from dqscore.routers import api_router
from dqscore.services.query_analyzer import QueryHistory
from dqscore.services.scheduled_rule_runs import ScheduledRuleRunEngine

settings = get_settings()
log_level_name = (settings.log_level or "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
logging.getLogger("dqscore").setLevel(log_level)

app = FastAPI(title=settings.app_name)
app.state.query_history = QueryHistory(size=settings.query_history_size)

logger = logging.getLogger(__name__)

scheduled_rule_run_engine = ScheduledRuleRunEngine.from_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.frontend_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix="/api")


@app.get("/health", tags=["Health"])
def health_check() -> dict[str, str]:
    return {"status": "ok"}


@app.on_event("startup")
async def startup_scheduler() -> None:
    scheduled_rule_run_engine.start()


@app.on_event("shutdown")
async def shutdown_scheduler() -> None:
    scheduled_rule_run_engine.shutdown()
