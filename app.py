"""
FastAPI application for the Content Improver
Thin HTTP handlers over ContentImprovementWorkflow
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Optional, List
import os
from datetime import datetime, timezone
from functools import lru_cache
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configure logging early so imports respect LOG_LEVEL
import logging
import sys

_log_level = os.getenv("LOG_LEVEL", os.getenv("LOGLEVEL", "INFO")).upper()
_level = getattr(logging, _log_level, logging.INFO)
# Use stderr and force replacement of handlers to avoid reentrant writes to stdout
logging.basicConfig(
    level=_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
    force=True,
)
logging.getLogger("uvicorn").setLevel(_level)
logging.getLogger("uvicorn.error").setLevel(_level)
logging.getLogger("uvicorn.access").setLevel(_level)

# Keep chatty client libraries at INFO regardless of the bootstrap level
for _pkg in ("httpcore", "openai", "asyncio", "httpx"):
    logging.getLogger(_pkg).setLevel(logging.INFO)

from agents.settings import ContentSettings
from utils.errors import NotAvailableError
from workflows import ContentImprovementWorkflow

logger = logging.getLogger(__name__)

app = FastAPI(title="Content Improver")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Data models
class ApplyRequest(BaseModel):
    improvement_ids: Optional[List[str]] = None  # None applies every pending improvement


class RejectRequest(BaseModel):
    improvement_ids: List[str]


class RollbackRequest(BaseModel):
    backup_id: str


@lru_cache(maxsize=1)
def get_settings() -> ContentSettings:
    return ContentSettings.from_config()


def get_workflow() -> ContentImprovementWorkflow:
    """Workflow dependency (overridden in tests)."""
    return ContentImprovementWorkflow(get_settings())


def _not_installed(e: NotAvailableError) -> HTTPException:
    return HTTPException(status_code=503, detail=f"Content improvement system not available: {e}")


@app.get("/")
async def root():
    return {"service": "content-improver", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/health")
async def health(workflow: ContentImprovementWorkflow = Depends(get_workflow)):
    """Quick health check of the content system."""
    try:
        if not workflow.is_available():
            return {"healthy": False, "message": "Content system not found or not properly configured"}
        status = workflow.get_workflow_status()
        return {"healthy": True, "message": f"System healthy. Current stage: {status['current_stage']}"}
    except Exception as e:
        return {"healthy": False, "message": f"Health check failed: {e}"}


@app.post("/content/analyze")
async def analyze_content(workflow: ContentImprovementWorkflow = Depends(get_workflow)):
    """Analyze all tracked content files (read-only)."""
    try:
        result = await workflow.analyze_content()
        return {"success": result.success, "message": "Content analysis completed", "data": result.model_dump()}
    except NotAvailableError as e:
        raise _not_installed(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Content analysis error: %s", e)
        raise HTTPException(status_code=500, detail=f"Content analysis failed: {str(e)}")


@app.get("/content/analyze")
async def analysis_status(workflow: ContentImprovementWorkflow = Depends(get_workflow)):
    try:
        return {"success": True, "data": workflow.get_workflow_status()}
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get analysis status: {str(e)}")


@app.post("/content/improve")
async def improve_content(workflow: ContentImprovementWorkflow = Depends(get_workflow)):
    """Generate improvements for all tracked files and stage them for review."""
    try:
        result = await workflow.improve_content()
        return {
            "success": result.success,
            "message": f"Staged {result.improvements_created} improvements",
            "data": result.model_dump(),
        }
    except NotAvailableError as e:
        raise _not_installed(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Content improvement error: %s", e)
        raise HTTPException(status_code=500, detail=f"Content improvement failed: {str(e)}")


@app.get("/content/improve")
async def pending_improvements(workflow: ContentImprovementWorkflow = Depends(get_workflow)):
    try:
        pending = workflow.get_pending_improvements()
        return {"success": True, "count": len(pending), "data": [item.model_dump() for item in pending]}
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get pending improvements: {str(e)}")


@app.post("/content/apply")
async def apply_improvements(request: ApplyRequest, workflow: ContentImprovementWorkflow = Depends(get_workflow)):
    """Apply pending improvements (all when improvement_ids is null)."""
    try:
        result = await workflow.apply_improvements(request.improvement_ids)
        return {
            "success": result.success,
            "message": f"Applied {result.applied} improvements",
            "applied": result.applied,
            "remaining": result.remaining,
            "failed": result.failed,
            "data": result.model_dump(),
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Apply error: %s", e)
        raise HTTPException(status_code=500, detail=f"Failed to apply improvements: {str(e)}")


@app.get("/content/apply")
async def improvement_history(workflow: ContentImprovementWorkflow = Depends(get_workflow)):
    try:
        return {"success": True, "data": workflow.get_improvement_history()}
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get improvement history: {str(e)}")


@app.delete("/content/apply")
async def rollback(request: RollbackRequest, workflow: ContentImprovementWorkflow = Depends(get_workflow)):
    """Restore a content file from a backup."""
    try:
        restored = await workflow.rollback(request.backup_id)
        if not restored:
            raise HTTPException(status_code=404, detail=f"Backup not found: {request.backup_id}")
        return {"success": True, "message": f"Rolled back {request.backup_id}"}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Rollback error: %s", e)
        raise HTTPException(status_code=500, detail=f"Rollback failed: {str(e)}")


@app.post("/content/reject")
async def reject_improvements(request: RejectRequest, workflow: ContentImprovementWorkflow = Depends(get_workflow)):
    try:
        result = await workflow.reject_improvements(request.improvement_ids)
        return {"success": True, "rejected": result.rejected, "remaining": result.remaining, "data": result.model_dump()}
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to reject improvements: {str(e)}")


@app.get("/content/status")
async def workflow_status(workflow: ContentImprovementWorkflow = Depends(get_workflow)):
    try:
        return {"success": True, "data": workflow.get_workflow_status()}
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get workflow status: {str(e)}")


@app.get("/content/files")
async def content_files(workflow: ContentImprovementWorkflow = Depends(get_workflow)):
    try:
        files = workflow.get_content_files()
        return {"success": True, "count": len(files), "data": [f.model_dump() for f in files]}
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list content files: {str(e)}")


@app.get("/content/backups")
async def list_backups(path: Optional[str] = None, workflow: ContentImprovementWorkflow = Depends(get_workflow)):
    try:
        backups = workflow.get_backups(path)
        return {"success": True, "count": len(backups), "data": [b.model_dump() for b in backups]}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list backups: {str(e)}")


if __name__ == "__main__":
    import uvicorn
    # forward env LOG_LEVEL to uvicorn (expects lowercase level string)
    uv_log_level = os.getenv("LOG_LEVEL", "info").lower()
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")), log_level=uv_log_level)
