import uuid
from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

def _new_id():
    return str(uuid.uuid4())

def _utcnow():
    return datetime.now(timezone.utc)

def _money(value):
    return float(value) if value is not None else None

# Custom exceptions
class AutoCostError(Exception):
    """Base class for errors reported back to the API caller"""
    status_code = 500

    def __init__(self, message, field=None):
        super().__init__(message)
        self.field = field

class ValidationError(AutoCostError):
    """Raised when request input is malformed"""
    status_code = 400

class NotFoundError(AutoCostError):
    """Raised when a record does not exist or belongs to another tenant"""
    status_code = 404

class ConflictError(AutoCostError):
    """Raised on duplicate names and on deleting a material that is still in use"""
    status_code = 409

class CostIntegrityError(AutoCostError):
    """Raised when a recalculation or cascading delete fails and was rolled back"""
    status_code = 500


class RawMaterial(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    cost = db.Column(db.Numeric(12, 2), nullable=False)  # Per quintal
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (db.UniqueConstraint('tenant_id', 'name', name='uq_raw_material_tenant_name'),)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'cost': _money(self.cost),
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None
        }


class PriceHistory(db.Model):
    __tablename__ = 'price_history'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    raw_material_id = db.Column(db.String(36), db.ForeignKey('raw_material.id', ondelete='CASCADE'), nullable=False, index=True)
    old_cost = db.Column(db.Numeric(12, 2), nullable=False)
    new_cost = db.Column(db.Numeric(12, 2), nullable=False)
    changed_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    raw_material = db.relationship('RawMaterial', backref=db.backref('price_history', lazy=True, cascade='all, delete-orphan'))

    def to_dict(self):
        return {
            'id': self.id,
            'rawMaterialId': self.raw_material_id,
            'oldCost': _money(self.old_cost),
            'newCost': _money(self.new_cost),
            'changedAt': self.changed_at.isoformat() if self.changed_at else None
        }


class Product(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    additional_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)  # Derived, kept current by recalculation
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    ingredients = db.relationship('ProductIngredient', backref='product', lazy=True, cascade='all, delete-orphan')

    __table_args__ = (db.UniqueConstraint('tenant_id', 'name', name='uq_product_tenant_name'),)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'additionalCost': _money(self.additional_cost),
            'totalCost': _money(self.total_cost),
            'ingredients': [i.to_dict() for i in self.ingredients],
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None
        }


class ProductIngredient(db.Model):
    __tablename__ = 'product_ingredient'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    product_id = db.Column(db.String(36), db.ForeignKey('product.id', ondelete='CASCADE'), nullable=False, index=True)
    raw_material_id = db.Column(db.String(36), db.ForeignKey('raw_material.id', ondelete='RESTRICT'), nullable=False, index=True)
    percentage = db.Column(db.Numeric(7, 4), nullable=False)

    raw_material = db.relationship('RawMaterial', backref=db.backref('ingredient_links', lazy=True, passive_deletes='all'))

    __table_args__ = (db.UniqueConstraint('product_id', 'raw_material_id', name='uq_ingredient_product_material'),)

    def to_dict(self):
        return {
            'id': self.id,
            'rawMaterialId': self.raw_material_id,
            'percentage': float(self.percentage),
            'rawMaterial': self.raw_material.to_dict() if self.raw_material else None
        }


class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    timestamp = db.Column(db.DateTime, default=_utcnow, nullable=False)
    action = db.Column(db.String(50), nullable=False)
    target_type = db.Column(db.String(50), nullable=False)
    target_id = db.Column(db.String(36), nullable=True)
    details = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'action': self.action,
            'targetType': self.target_type,
            'targetId': self.target_id,
            'details': self.details
        }
