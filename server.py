# FastAPI Server for the Collabflow proposal lifecycle and payment workflow

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import logging
import sys

from database.config import init_db
from services.errors import WorkflowError

from routers.proposals import router as proposals_router
from routers.payments import router as payments_router
from routers.milestones import router as milestones_router
from routers.content import router as content_router
from routers.webhooks import router as webhooks_router
from routers.audit import router as audit_router

load_dotenv()

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Collabflow API",
    description="Brand / creator collaboration workflow: proposals, milestones and split payments",
    version="1.0.0"
)


@app.on_event("startup")
def startup_event():
    # Tables are managed by alembic in production; create_all is a no-op when they exist
    init_db()
    logger.info("Collabflow API started")


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message} ({exc.correlation_id})")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# CORS Setup - Allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Required when using "*"
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)


# ============================================================================
# ROUTERS
# ============================================================================
app.include_router(proposals_router)
app.include_router(payments_router)
app.include_router(milestones_router)
app.include_router(content_router)
app.include_router(webhooks_router)
app.include_router(audit_router)


@app.get("/health")
def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
