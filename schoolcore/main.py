import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from schoolcore.api.v1.class_history.promotions_router import router as promotions_router
from schoolcore.api.v1.classes.classes_router import router as classes_router
from schoolcore.api.v1.sections.sections_router import router as sections_router
from schoolcore.api.v1.students.student_router import router as students_router
from schoolcore.core.config import settings

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="School Core Backend")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(classes_router)
    app.include_router(sections_router)
    app.include_router(students_router)
    app.include_router(promotions_router)

    logger.info("School core API initialised")
    return app


app = create_app()
