"""
FastAPI application for the SQL judge
"""
import logging
from contextlib import asynccontextmanager
from typing import Type

from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Config
from .grading_service import GradingService
from .sandbox_manager import SandboxRegistry
from .sandbox_routes import judge_router
from .seed import load_seed_file

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "SQL Judge API"
SERVICE_VERSION = "1.0.0"


def create_app(config: Type[Config] = Config) -> FastAPI:
    """Build the application; sandboxes live in config.SANDBOX_DIR"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config.validate_config()
        config.print_config_summary()

        registry = SandboxRegistry(
            base_seed_sql=load_seed_file(config.BASE_SEED_PATH),
            scratch_dir=config.SANDBOX_DIR,
            default_group_id=config.DEFAULT_GROUP_ID,
        )
        app.state.registry = registry
        app.state.grading_service = GradingService(
            registry,
            max_sql_length=config.MAX_SQL_LENGTH,
            max_statements=config.MAX_STATEMENTS,
            atomic_execution=config.ATOMIC_EXECUTION,
        )
        logger.info(f"{SERVICE_NAME} started")
        try:
            yield
        finally:
            await registry.destroy_all()
            logger.info(f"{SERVICE_NAME} stopped")

    app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION, lifespan=lifespan)

    # Every error body has the same shape as a failed operation
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail}
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": f"Invalid request: {problems}"}
        )

    @app.get("/api/health")
    def health_check():
        return {"status": "healthy", "service": SERVICE_NAME, "version": SERVICE_VERSION}

    app.include_router(judge_router)
    return app


app = create_app()


def run():
    import uvicorn
    uvicorn.run(app, host=Config.HOST, port=Config.PORT, log_level=Config.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
