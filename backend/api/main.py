import logging
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    InvalidTransitionError,
    PortalError,
    RecordNotFoundError,
    SlotUnavailableError,
    ValidationError,
)
from core.services import Services, create_services
from api.routers import system, auth, schedules, appointments, users, records, messages

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    AuthenticationError: 401,
    AuthorizationError: 403,
    RecordNotFoundError: 404,
    SlotUnavailableError: 409,
    InvalidTransitionError: 409,
}


def create_app(services: Optional[Services] = None) -> FastAPI:
    services = services or create_services()

    logging.basicConfig(
        level=services.settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("pymongo").setLevel(logging.WARNING)

    app = FastAPI(
        title="Hospital Portal API",
        description="Backend API for the patient, doctor and admin dashboards",
        version="1.0.0",
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=services.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include Routers
    app.include_router(system.router)
    app.include_router(auth.router)
    app.include_router(schedules.router)
    app.include_router(appointments.router)
    app.include_router(users.router)
    app.include_router(records.router)
    app.include_router(messages.router)

    @app.on_event("startup")
    async def startup_event():
        """Connect storage on startup"""
        await app.state.services.start()
        logger.info("API server started successfully")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Release storage and listeners on shutdown"""
        await app.state.services.close()
        logger.info("API server shutdown")

    # Error handlers
    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError):
        status_code = next(
            (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500
        )
        if status_code == 500:
            logger.error(f"Unhandled portal error: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.exception_handler(404)
    async def not_found_handler(request, exc):
        detail = getattr(exc, "detail", None) or "Resource not found"
        return JSONResponse(status_code=404, content={"detail": detail})

    @app.exception_handler(500)
    async def internal_error_handler(request, exc):
        logger.error(f"Internal server error: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
