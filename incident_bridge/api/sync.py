"""Sync management endpoints"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel
from datetime import datetime

from incident_bridge.exceptions import SyncInProgress
from incident_bridge.models.base import get_db
from incident_bridge.models import ArtifactMapping, ArtifactType, ServiceReturnType, SyncRun
from incident_bridge.services.sync_service import run_sync

router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncRunResponse(BaseModel):
    id: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    last_sync_date: Optional[datetime] = None
    server_date_time: datetime
    result: Optional[ServiceReturnType] = None
    created: int
    updated: int
    skipped: int
    failed: int
    message: Optional[str] = None

    class Config:
        from_attributes = True


class ArtifactMappingResponse(BaseModel):
    id: int
    project_id: int
    artifact_type: ArtifactType
    internal_id: int
    external_key: str
    created_at: datetime

    class Config:
        from_attributes = True


@router.post("/trigger", response_model=SyncRunResponse)
def trigger_sync(db: Session = Depends(get_db)):
    """Run one data-sync now, the same way the scheduler does"""
    try:
        return run_sync(db)
    except SyncInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/runs", response_model=List[SyncRunResponse])
def list_sync_runs(limit: int = 50, db: Session = Depends(get_db)):
    """Most recent runs first"""
    return db.query(SyncRun).order_by(SyncRun.started_at.desc()).limit(limit).all()


@router.get("/artifact-mappings", response_model=List[ArtifactMappingResponse])
def list_artifact_mappings(
    project_id: Optional[int] = None,
    artifact_type: Optional[ArtifactType] = None,
    limit: int = 500,
    db: Session = Depends(get_db),
):
    """Persisted Spira <-> Redmine identities"""
    query = db.query(ArtifactMapping)
    if project_id is not None:
        query = query.filter(ArtifactMapping.project_id == project_id)
    if artifact_type is not None:
        query = query.filter(ArtifactMapping.artifact_type == artifact_type)
    return query.order_by(ArtifactMapping.id.desc()).limit(limit).all()
