import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from question_bridge.concepts_api import router as concepts_router
from question_bridge.config import CORS_ORIGINS
from question_bridge.db_session import create_tables
from question_bridge.questions_api import router as questions_router
from question_bridge.suggestions_api import router as suggestions_router

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# db
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Creating database tables...")
    try:
        await create_tables()
        logger.info("Database ready.")
    except Exception:
        logger.error("Failed to prepare database during startup", exc_info=True)
        raise
    yield
    logger.info("Shutting down.")


# fastapi app
qb_app = FastAPI(title="Question Bridge", lifespan=lifespan)

# Configure CORS
qb_app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,  # Vite frontend ports
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
qb_app.include_router(concepts_router)
qb_app.include_router(suggestions_router)
qb_app.include_router(questions_router)


@qb_app.get("/")
async def root():
    return {"service": "question_bridge", "status": "ok"}
