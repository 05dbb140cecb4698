"""
Loan Engine API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .dependencies import LoanSystem, get_loan_system
from .loans import router as loans_router
from ..config import get_config
from ..errors import LoanEngineError
from ..logging_config import configure_logging, get_logger


ERROR_STATUS_CODES = {
    "invalid_input": 400,
    "not_found": 404,
    "conflict": 409,
    "persistence_failure": 503,
}


def create_app(system: Optional[LoanSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Pre-built loan system to serve; when omitted one is built
            from configuration on the first request
    """
    config = system.config if system else get_config()
    configure_logging(config)
    logger = get_logger("loan_engine.api")

    app = FastAPI(
        title="Loan Engine API",
        description="Loan origination and weekly repayment tracking",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if system is not None:
        app.dependency_overrides[get_loan_system] = lambda: system

    @app.exception_handler(LoanEngineError)
    async def loan_engine_error_handler(request: Request, exc: LoanEngineError):
        status_code = ERROR_STATUS_CODES.get(exc.category, 500)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        body = {"error": exc.category, "detail": exc.message}
        field = getattr(exc, "field", None)
        if field:
            body["field"] = field
        return JSONResponse(status_code=status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        field = ".".join(str(part) for part in errors[0]["loc"][1:]) if errors else None
        body = {"error": "invalid_input", "detail": errors[0]["msg"] if errors else "Invalid request"}
        if field:
            body["field"] = field
        return JSONResponse(status_code=400, content=body)

    # Include routers
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_engine_api",
            "version": "1.0.0"
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Loan Engine API",
            "version": "1.0.0",
            "description": "Loan origination and weekly repayment tracking",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "loans": "/loans",
            }
        }

    return app


app = create_app()


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "loan_engine.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
