from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from combattracker.api.schemas import (
    CombatantTemplateCreate,
    CombatantTemplateOut,
    CombatantTemplateUpdate,
)
from combattracker.core.engine.templates import parse_template_data
from combattracker.db.deps import get_db
from combattracker.db.models import CombatantTemplate

logger = logging.getLogger(__name__)

# библиотека заготовок участников
router = APIRouter(prefix="/combatants", tags=["combatants"])


def _out(obj: CombatantTemplate) -> CombatantTemplateOut:
    data = parse_template_data(obj.data_json)
    if data is None:
        raise HTTPException(status_code=404, detail="Combatant template data corrupted")
    return CombatantTemplateOut(
        id=obj.id,
        name=obj.name,
        data=data,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


def get_template_or_404(db: Session, template_id: str) -> CombatantTemplate:
    obj = db.get(CombatantTemplate, template_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Combatant template not found")
    return obj


@router.get("", response_model=list[CombatantTemplateOut])
def list_templates(db: Session = Depends(get_db)):
    items = db.query(CombatantTemplate).order_by(CombatantTemplate.name.asc()).all()
    out = []
    for obj in items:
        data = parse_template_data(obj.data_json)
        if data is None:
            # битые записи не роняют весь список
            logger.warning("Skipping corrupted combatant template %s", obj.id)
            continue
        out.append(
            CombatantTemplateOut(
                id=obj.id,
                name=obj.name,
                data=data,
                created_at=obj.created_at,
                updated_at=obj.updated_at,
            )
        )
    return out


@router.post("", response_model=CombatantTemplateOut, status_code=201)
def create_template(payload: CombatantTemplateCreate, db: Session = Depends(get_db)):
    obj = CombatantTemplate(name=payload.name, data_json=payload.data.model_dump())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    logger.info("Created combatant template %s", obj.id)
    return _out(obj)


@router.get("/{template_id}", response_model=CombatantTemplateOut)
def get_template(template_id: str, db: Session = Depends(get_db)):
    return _out(get_template_or_404(db, template_id))


@router.patch("/{template_id}", response_model=CombatantTemplateOut)
def patch_template(
    template_id: str, payload: CombatantTemplateUpdate, db: Session = Depends(get_db)
):
    obj = get_template_or_404(db, template_id)

    if payload.name is not None:
        obj.name = payload.name
    if payload.data is not None:
        obj.data_json = payload.data.model_dump()

    db.add(obj)
    db.commit()
    db.refresh(obj)
    return _out(obj)


@router.delete("/{template_id}", status_code=204)
def delete_template(template_id: str, db: Session = Depends(get_db)):
    obj = get_template_or_404(db, template_id)
    db.delete(obj)
    db.commit()
    return Response(status_code=204)
