from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from bugsync.config import CORS_ORIGINS
from bugsync.db.database import SessionLocal, create_db_and_tables
from bugsync.services.container import build_container
from bugsync.api.v1.endpoints import sync as sync_endpoints # Sync-API-Router importieren
from bugsync.api.v1.endpoints import bug_sync as bug_sync_endpoints # Bug-Sync-API-Router importieren
from bugsync.utils.logger import infoLog, errorLog, debugLog

MODULE_NAME = "MainApp"


@asynccontextmanager
async def lifespan(app: FastAPI):
    infoLog(MODULE_NAME, "Application startup sequence initiated.")
    debugLog(MODULE_NAME, "Lifespan context manager entered.")
    try:
        create_db_and_tables()
        infoLog(MODULE_NAME, "Database and tables creation process completed.")

        container = build_container(SessionLocal)
        app.state.sync_container = container
        container.start()
        infoLog(MODULE_NAME, "Sync managers started.")
    except Exception as e:
        # Ohne Sync-Dienste hat der Prozess keinen Zweck
        errorLog(MODULE_NAME, "Fatal error during sync initialisation.", details={"error": str(e), "error_type": type(e).__name__})
        raise

    yield

    debugLog(MODULE_NAME, "Lifespan context manager exiting.")
    try:
        await app.state.sync_container.shutdown()
    except Exception as shutdown_error:
        errorLog(
            MODULE_NAME,
            "Error during sync shutdown",
            details={"error": str(shutdown_error), "error_type": type(shutdown_error).__name__}
        )

    infoLog(MODULE_NAME, "Application shutting down.")

app = FastAPI(
    title="Bug Sync Backend API",
    version="0.1.0",
    lifespan=lifespan
)
debugLog(MODULE_NAME, "FastAPI app instance created.", details={"title": app.title, "version": app.version})

debugLog(MODULE_NAME, "CORS origins defined.", details={"origins": CORS_ORIGINS})

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
debugLog(MODULE_NAME, "CORS middleware added to the application.")

@app.get("/")
async def root():
    debugLog(MODULE_NAME, "Root endpoint '/' accessed.")
    return {"message": "Welcome to Bug Sync Backend API"}

@app.get("/ping")
async def ping():
    debugLog(MODULE_NAME, "Ping endpoint '/ping' accessed.")
    return {"status": "online", "message": "Bug Sync Backend is running"}

app.include_router(sync_endpoints.router, prefix="/api/v1/sync", tags=["sync"]) # Sync-API-Router einbinden
debugLog(MODULE_NAME, "Sync API router included.", details={"prefix": "/api/v1/sync", "tags": ["sync"]})
app.include_router(bug_sync_endpoints.router, prefix="/api/v1/bugs/sync", tags=["bug-sync"]) # Bug-Sync-API-Router einbinden
debugLog(MODULE_NAME, "Bug Sync API router included.", details={"prefix": "/api/v1/bugs/sync", "tags": ["bug-sync"]})

if __name__ == "__main__":
    debugLog(MODULE_NAME, "Application starting with uvicorn (direct execution).", details={"host": "0.0.0.0", "port": 8000})
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
