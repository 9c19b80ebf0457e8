"""Field value and custom property mapping endpoints"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from incident_bridge.models import (
    ArtifactType,
    CustomPropertyMapping,
    CustomPropertyValueMapping,
    FieldKind,
    FieldValueMapping,
)
from incident_bridge.models.base import get_db

router = APIRouter(prefix="/api/field-mappings", tags=["field-mappings"])


class FieldValueMappingCreate(BaseModel):
    project_id: int
    field: FieldKind
    internal_id: int
    external_key: str
    is_primary: bool = True


class FieldValueMappingResponse(FieldValueMappingCreate):
    id: int

    class Config:
        from_attributes = True


class CustomPropertyMappingCreate(BaseModel):
    project_id: int
    custom_property_id: int
    # Redmine custom field id
    external_key: str
    artifact_type: ArtifactType = ArtifactType.INCIDENT


class CustomPropertyMappingResponse(CustomPropertyMappingCreate):
    id: int

    class Config:
        from_attributes = True


class CustomPropertyValueMappingCreate(BaseModel):
    project_id: int
    custom_property_id: int
    internal_id: int
    external_key: str


class CustomPropertyValueMappingResponse(CustomPropertyValueMappingCreate):
    id: int

    class Config:
        from_attributes = True


def _save(db: Session, row, what: str):
    try:
        db.add(row)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"{what} already exists")
    db.refresh(row)
    return row


def _delete(db: Session, model, mapping_id: int, what: str):
    row = db.query(model).filter(model.id == mapping_id).first()
    if not row:
        raise HTTPException(status_code=404, detail=f"{what} not found")
    db.delete(row)
    db.commit()
    return {"message": f"{what} deleted successfully"}


# Field values (status / type / priority / severity)

@router.get("/", response_model=List[FieldValueMappingResponse])
def list_field_value_mappings(
    project_id: Optional[int] = None,
    field: Optional[FieldKind] = None,
    db: Session = Depends(get_db),
):
    """List field value mappings, optionally for one project and field"""
    query = db.query(FieldValueMapping)
    if project_id is not None:
        query = query.filter(FieldValueMapping.project_id == project_id)
    if field is not None:
        query = query.filter(FieldValueMapping.field == field)
    return query.all()


@router.post("/", response_model=FieldValueMappingResponse)
def create_field_value_mapping(mapping: FieldValueMappingCreate, db: Session = Depends(get_db)):
    """Map a Spira field value to a Redmine value id"""
    # Redmine has no severity, so only the other fields point at Redmine ids
    if mapping.field != FieldKind.SEVERITY and not mapping.external_key.strip().isdigit():
        raise HTTPException(status_code=400, detail=f"external_key must be a numeric Redmine {mapping.field.value} id")
    return _save(db, FieldValueMapping(**mapping.model_dump()), "Field value mapping")


@router.delete("/{mapping_id}")
def delete_field_value_mapping(mapping_id: int, db: Session = Depends(get_db)):
    return _delete(db, FieldValueMapping, mapping_id, "Field value mapping")


# Custom properties

@router.get("/custom-properties", response_model=List[CustomPropertyMappingResponse])
def list_custom_property_mappings(project_id: Optional[int] = None, db: Session = Depends(get_db)):
    query = db.query(CustomPropertyMapping)
    if project_id is not None:
        query = query.filter(CustomPropertyMapping.project_id == project_id)
    return query.all()


@router.post("/custom-properties", response_model=CustomPropertyMappingResponse)
def create_custom_property_mapping(mapping: CustomPropertyMappingCreate, db: Session = Depends(get_db)):
    """Map a Spira custom property to a Redmine custom field"""
    if not mapping.external_key.strip().isdigit():
        raise HTTPException(status_code=400, detail="external_key must be a numeric Redmine custom field id")
    return _save(db, CustomPropertyMapping(**mapping.model_dump()), "Custom property mapping")


@router.delete("/custom-properties/{mapping_id}")
def delete_custom_property_mapping(mapping_id: int, db: Session = Depends(get_db)):
    return _delete(db, CustomPropertyMapping, mapping_id, "Custom property mapping")


@router.get("/custom-property-values", response_model=List[CustomPropertyValueMappingResponse])
def list_custom_property_value_mappings(
    project_id: Optional[int] = None,
    custom_property_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    query = db.query(CustomPropertyValueMapping)
    if project_id is not None:
        query = query.filter(CustomPropertyValueMapping.project_id == project_id)
    if custom_property_id is not None:
        query = query.filter(CustomPropertyValueMapping.custom_property_id == custom_property_id)
    return query.all()


@router.post("/custom-property-values", response_model=CustomPropertyValueMappingResponse)
def create_custom_property_value_mapping(mapping: CustomPropertyValueMappingCreate, db: Session = Depends(get_db)):
    """Map a list value of a custom property to a Redmine field value"""
    return _save(db, CustomPropertyValueMapping(**mapping.model_dump()), "Custom property value mapping")


@router.delete("/custom-property-values/{mapping_id}")
def delete_custom_property_value_mapping(mapping_id: int, db: Session = Depends(get_db)):
    return _delete(db, CustomPropertyValueMapping, mapping_id, "Custom property value mapping")
