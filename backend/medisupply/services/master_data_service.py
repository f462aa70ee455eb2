# Overview: Service-layer operations for master data (products, warehouses, principals).

"""
Master data is referenced by id everywhere else; this module only creates,
lists and deactivates it. Codes are unique and stored upper-case.
"""

from __future__ import annotations

from ..errors import Conflict, NotFound, ValidationError
from ..extensions import db
from ..models import Principal, Product, Warehouse

MODELS = {
    "product": Product,
    "warehouse": Warehouse,
    "principal": Principal,
}


def _model(kind: str):
    model = MODELS.get(kind)
    if model is None:
        raise ValidationError(f"Unknown master data type: {kind}")
    return model


def _clean(value, field: str, max_len: int) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    value = str(value).strip()
    if len(value) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters")
    return value


def create_record(kind: str, *, code: str, name: str, unit: str | None = None):
    model = _model(kind)
    code = _clean(code, "code", 32).upper()
    name = _clean(name, "name", 255)

    if db.session.query(model.id).filter_by(code=code).first():
        raise Conflict(f"{kind.capitalize()} code {code} already exists", code=code)

    record = model(code=code, name=name)
    if kind == "product":
        record.unit = (unit or "unit").strip()
    db.session.add(record)
    db.session.flush()
    return record


def get_record(kind: str, record_id: int):
    record = db.session.get(_model(kind), record_id)
    if record is None:
        raise NotFound(f"{kind.capitalize()} {record_id} not found")
    return record


def list_records(kind: str, *, include_inactive: bool = False, search: str | None = None):
    model = _model(kind)
    query = db.session.query(model)
    if not include_inactive:
        query = query.filter(model.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(model.code.ilike(like), model.name.ilike(like)))
    return query.order_by(model.code).all()


def set_active(kind: str, record_id: int, active: bool):
    record = get_record(kind, record_id)
    record.is_active = active
    db.session.flush()
    return record
