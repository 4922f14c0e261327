from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from quicklab_backend.api.courses import course_router
from quicklab_backend.database import get_engine
from quicklab_backend.model import Base
from quicklab_backend.settings import settings

logger = logging.getLogger(__name__)

def startup_logic():
    Base.metadata.create_all(get_engine())
    logger.info(f"Database schema ready, provisioning against {settings.GITLAB_URL}")

@asynccontextmanager
async def lifespan(app: FastAPI):
    startup_logic()
    yield

app = FastAPI(lifespan=lifespan)

origins = [
    "*"
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(
    course_router,
    prefix="/courses",
    tags=["courses"],
)

@app.get("/", status_code=200)
def get_status_head():
    return {"status": "ok"}
