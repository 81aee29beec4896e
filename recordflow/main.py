"""Application factory for creating recordflow FastAPI instances."""

from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from .config import AppConfig, get_config, validate_config
from .core.exceptions import RecordflowError
from .core.expression import ExpressionInterpreter
from .core.logging import setup_logging, get_logger
from .core.measure_evaluator import MeasureEvaluator
from .core.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware, error_response
from .core.validation_engine import ValidationEngine
from .core.validator_registry import ValidatorRegistry
from .core.workflow_engine import WorkflowEngine
from .storage.database import SessionLocal, configure_database, create_tables
from .storage.migrations import run_migrations
from .storage.repositories import (
    SqlAuditSink,
    SqlAuthorizationService,
    SqlMetadataStore,
    SqlRecordStore,
)
from .api.endpoints import router, init_dependencies


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.metadata_store: Optional[SqlMetadataStore] = None
        self.record_store: Optional[SqlRecordStore] = None
        self.validator_registry: Optional[ValidatorRegistry] = None
        self.validation_engine: Optional[ValidationEngine] = None
        self.measure_evaluator: Optional[MeasureEvaluator] = None
        self.workflow_engine: Optional[WorkflowEngine] = None


# Global application state
app_state = ApplicationState()


def initialize_database(config: AppConfig, logger) -> sessionmaker:
    """Bind the session factory to the configured database and create tables."""
    try:
        engine = configure_database(config.database_url, echo=config.database_echo)
        create_tables(engine)
        logger.info("Database tables created")

        try:
            run_migrations(engine)
        except Exception as e:
            # Indexes only speed up lookups; the service works without them
            logger.warning(f"Database migrations failed: {str(e)}")

        return SessionLocal

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def initialize_core_components(config: AppConfig, session_factory: sessionmaker, logger) -> ApplicationState:
    """Build the stores and engines on top of one session factory."""
    interpreter = ExpressionInterpreter.from_config(config)
    metadata_store = SqlMetadataStore(session_factory)
    audit_sink = SqlAuditSink(session_factory)
    record_store = SqlRecordStore(session_factory, audit_sink)
    authorization = SqlAuthorizationService(session_factory)
    validator_registry = ValidatorRegistry()

    validation_engine = ValidationEngine(metadata_store, interpreter, validator_registry)
    measure_evaluator = MeasureEvaluator(metadata_store, interpreter)
    workflow_engine = WorkflowEngine(
        metadata_store=metadata_store,
        record_store=record_store,
        audit_sink=audit_sink,
        authorization=authorization,
        validation_engine=validation_engine
    )

    app_state.config = config
    app_state.metadata_store = metadata_store
    app_state.record_store = record_store
    app_state.validator_registry = validator_registry
    app_state.validation_engine = validation_engine
    app_state.measure_evaluator = measure_evaluator
    app_state.workflow_engine = workflow_engine

    init_dependencies(
        metadata_store=metadata_store,
        interpreter=interpreter,
        validation_engine=validation_engine,
        measure_evaluator=measure_evaluator,
        workflow_engine=workflow_engine
    )

    logger.info("Core components initialized")
    return app_state


def create_lifespan_handler(config: AppConfig, session_factory: Optional[sessionmaker] = None):
    """Create the application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger = get_logger(__name__)
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        try:
            factory = session_factory or initialize_database(config, logger)
            initialize_core_components(config, factory, logger)
            logger.info("Application startup completed successfully")
        except Exception as e:
            logger.error(f"Application startup failed: {e}")
            raise

        yield

        # Shutdown
        logger.info(f"Shutting down {config.app_name}")

    return lifespan


def create_app(config: Optional[AppConfig] = None, session_factory: Optional[sessionmaker] = None) -> FastAPI:
    """
    Create and configure a FastAPI application instance.

    Args:
        config: Application configuration; loaded from the environment when omitted
        session_factory: Existing session factory to use instead of the configured database

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = get_config()

    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Metadata-driven record validation, measures and workflow transitions",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config, session_factory)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(RecordflowError)
    async def recordflow_error_handler(request: Request, exc: RecordflowError):
        return error_response(exc, request.headers.get("X-Request-ID"))

    app.include_router(router)

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    return app
