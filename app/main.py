import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.db import SessionLocal, engine, init_db
from app.engine.session import ActiveWorkoutSession
from app.routers.achievements import router as achievements_router
from app.routers.templates import router as templates_router
from app.routers.workouts import router as workouts_router
from app.services.store import WorkoutStore

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    app.state.store = WorkoutStore(SessionLocal)
    app.state.workout_session = ActiveWorkoutSession(app.state.store, settings)
    logger.info("Workout engine ready (%s)", settings.DATABASE_URL)
    yield
    app.state.workout_session.reset()
    await engine.dispose()


app = FastAPI(title="Workout Engine API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(templates_router)
app.include_router(workouts_router)
app.include_router(achievements_router)


@app.get("/health")
def health():
    return {"ok": True}
