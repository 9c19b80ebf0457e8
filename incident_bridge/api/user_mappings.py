"""User mapping management endpoints"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session
from typing import List
from pydantic import BaseModel
from datetime import datetime

from incident_bridge.models.base import get_db
from incident_bridge.models import UserMapping

router = APIRouter(prefix="/api/user-mappings", tags=["user-mappings"])


class UserMappingCreate(BaseModel):
    internal_user_id: int
    # Redmine user id
    external_key: str


class UserMappingResponse(BaseModel):
    id: int
    internal_user_id: int
    external_key: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


@router.get("/", response_model=List[UserMappingResponse])
def list_user_mappings(db: Session = Depends(get_db)):
    """List all user mappings (ignored when users are auto-mapped)"""
    return db.query(UserMapping).all()


@router.post("/", response_model=UserMappingResponse)
def create_user_mapping(mapping: UserMappingCreate, db: Session = Depends(get_db)):
    """Create a new user mapping"""
    key = mapping.external_key.strip()
    if not key:
        raise HTTPException(status_code=400, detail="external_key must be a Redmine user id")

    existing = db.query(UserMapping).filter(
        or_(UserMapping.internal_user_id == mapping.internal_user_id, UserMapping.external_key == key)
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="User mapping already exists")

    db_mapping = UserMapping(internal_user_id=mapping.internal_user_id, external_key=key)
    db.add(db_mapping)
    db.commit()
    db.refresh(db_mapping)
    return db_mapping


@router.get("/{mapping_id}", response_model=UserMappingResponse)
def get_user_mapping(mapping_id: int, db: Session = Depends(get_db)):
    """Get a specific user mapping"""
    mapping = db.query(UserMapping).filter(UserMapping.id == mapping_id).first()
    if not mapping:
        raise HTTPException(status_code=404, detail="User mapping not found")
    return mapping


@router.delete("/{mapping_id}")
def delete_user_mapping(mapping_id: int, db: Session = Depends(get_db)):
    """Delete a user mapping"""
    mapping = db.query(UserMapping).filter(UserMapping.id == mapping_id).first()
    if not mapping:
        raise HTTPException(status_code=404, detail="User mapping not found")

    db.delete(mapping)
    db.commit()
    return {"message": "User mapping deleted successfully"}
