"""Project mapping management endpoints"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from incident_bridge.models import ProjectMapping
from incident_bridge.models.base import get_db

router = APIRouter(prefix="/api/project-mappings", tags=["project-mappings"])


class ProjectMappingCreate(BaseModel):
    project_id: int
    # Redmine project identifier (not the display name)
    external_key: str
    sync_enabled: bool = True


class ProjectMappingUpdate(BaseModel):
    external_key: Optional[str] = None
    sync_enabled: Optional[bool] = None


class ProjectMappingResponse(BaseModel):
    id: int
    project_id: int
    external_key: str
    sync_enabled: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


def _get_or_404(db: Session, mapping_id: int) -> ProjectMapping:
    mapping = db.query(ProjectMapping).filter(ProjectMapping.id == mapping_id).first()
    if not mapping:
        raise HTTPException(status_code=404, detail="Project mapping not found")
    return mapping


@router.get("/", response_model=List[ProjectMappingResponse])
def list_project_mappings(db: Session = Depends(get_db)):
    """List all project mappings"""
    return db.query(ProjectMapping).order_by(ProjectMapping.project_id).all()


@router.post("/", response_model=ProjectMappingResponse)
def create_project_mapping(mapping: ProjectMappingCreate, db: Session = Depends(get_db)):
    """Map a Spira project to a Redmine project"""
    key = mapping.external_key.strip()
    if not key:
        raise HTTPException(status_code=400, detail="external_key must be the Redmine project identifier")

    existing = db.query(ProjectMapping).filter(ProjectMapping.project_id == mapping.project_id).first()
    if existing:
        raise HTTPException(status_code=400, detail=f"Project PR{mapping.project_id} is already mapped")

    db_mapping = ProjectMapping(project_id=mapping.project_id, external_key=key, sync_enabled=mapping.sync_enabled)
    db.add(db_mapping)
    db.commit()
    db.refresh(db_mapping)
    return db_mapping


@router.get("/{mapping_id}", response_model=ProjectMappingResponse)
def get_project_mapping(mapping_id: int, db: Session = Depends(get_db)):
    """Get a specific project mapping"""
    return _get_or_404(db, mapping_id)


@router.put("/{mapping_id}", response_model=ProjectMappingResponse)
def update_project_mapping(mapping_id: int, update: ProjectMappingUpdate, db: Session = Depends(get_db)):
    """Change the Redmine project or pause syncing"""
    mapping = _get_or_404(db, mapping_id)
    if update.external_key is not None:
        key = update.external_key.strip()
        if not key:
            raise HTTPException(status_code=400, detail="external_key must not be empty")
        mapping.external_key = key
    if update.sync_enabled is not None:
        mapping.sync_enabled = update.sync_enabled
    db.commit()
    db.refresh(mapping)
    return mapping


@router.delete("/{mapping_id}")
def delete_project_mapping(mapping_id: int, db: Session = Depends(get_db)):
    """Delete a project mapping"""
    mapping = _get_or_404(db, mapping_id)
    db.delete(mapping)
    db.commit()
    return {"message": "Project mapping deleted successfully"}
