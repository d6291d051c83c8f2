import math
from contextlib import contextmanager
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from functools import wraps
from flask import current_app, g, jsonify, request, session
from flask_babel import gettext as _
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload
from ..models import (
    db, AuditLog, Product, ProductIngredient,
    AutoCostError, ValidationError, ConflictError, CostIntegrityError
)

CENT = Decimal('0.01')
PERCENT_QUANTUM = Decimal('0.0001')
HUNDRED = Decimal('100')
PERCENTAGE_SUM_TOLERANCE = Decimal('0.01')
MAX_AMOUNT = Decimal(10) ** 10  # Numeric(12, 2) holds 10 integer digits

# ----------------------------
# Tenant identity
# ----------------------------
def login_required(view):
    """Resolve the tenant from the session; the identity layer stores it as user_id"""
    @wraps(view)
    def wrapped(*args, **kwargs):
        tenant_id = session.get('user_id')
        if not tenant_id:
            return jsonify({'success': False, 'error': _('Unauthorized. Please log in.')}), 401
        g.tenant_id = str(tenant_id)
        return view(*args, **kwargs)
    return wrapped

def log_audit(tenant_id, action, target_type, target_id=None, details=None):
    log = AuditLog(
        tenant_id=tenant_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        details=details
    )
    db.session.add(log)

@contextmanager
def transaction(description):
    """
    Run a block of session work as one all-or-nothing commit.

    Caller errors (validation, not found, conflict) roll back and propagate as they are.
    A unique-constraint race at flush time becomes a ConflictError. Anything else is
    rolled back and surfaced as CostIntegrityError so nothing is left half-applied.
    """
    try:
        yield db.session
        db.session.commit()
    except AutoCostError:
        db.session.rollback()
        raise
    except IntegrityError as e:
        db.session.rollback()
        current_app.logger.warning(f"{description}: constraint violation: {e.orig}")
        raise ConflictError(_('A record with this name already exists')) from e
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"{description} failed, transaction rolled back")
        raise CostIntegrityError(_('Could not complete {}').format(description)) from e

# ----------------------------
# Input parsing
# ----------------------------
def get_json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError(_('Request body must be a JSON object'))
    return data

def parse_name(value, field='name'):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(_('{} is required').format(field), field=field)
    name = value.strip()
    if len(name) > 100:
        raise ValidationError(_('{} cannot exceed 100 characters').format(field), field=field)
    return name

def _to_decimal(value, field):
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValidationError(_('{} must be a number').format(field), field=field)
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(_('{} must be a finite number').format(field), field=field)
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(_('{} must be a number').format(field), field=field)

def parse_cost(value, field='cost', allow_zero=False):
    """Parse a currency amount, rounded to cents. Costs must be positive unless allow_zero."""
    amount = _to_decimal(value, field)
    if amount < 0 or (amount == 0 and not allow_zero):
        if allow_zero:
            raise ValidationError(_('{} cannot be negative').format(field), field=field)
        raise ValidationError(_('{} must be a positive number').format(field), field=field)
    if amount < MAX_AMOUNT:
        amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount >= MAX_AMOUNT:
        raise ValidationError(_('{} must be less than {}').format(field, MAX_AMOUNT), field=field)
    return amount

def parse_percentage(value, field='percentage'):
    percentage = _to_decimal(value, field)
    if percentage <= 0:
        raise ValidationError(_('{} must be a positive number').format(field), field=field)
    if percentage > HUNDRED:
        raise ValidationError(_('{} cannot exceed 100').format(field), field=field)
    try:
        percentage = percentage.quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(_('{} must be a number').format(field), field=field)
    if percentage == 0:
        raise ValidationError(_('{} must be at least 0.0001').format(field), field=field)
    return percentage

# ----------------------------
# Cost calculation
# ----------------------------
def validate_percentage_sum(percentages, field='ingredients'):
    total = sum((p if isinstance(p, Decimal) else Decimal(str(p)) for p in percentages), Decimal('0'))
    if abs(total - HUNDRED) > PERCENTAGE_SUM_TOLERANCE:
        raise ValidationError(
            _('Ingredient percentages must add up to 100 (got {})').format(total.normalize()),
            field=field
        )
    return total

def calculate_total_cost(components, additional_cost):
    """
    Total cost of a mixture: additional cost plus each material's cost weighted by
    its percentage. components is an iterable of (raw_material_cost, percentage).
    Pure and deterministic; the result is rounded to cents.
    """
    total = Decimal(str(additional_cost)) if not isinstance(additional_cost, Decimal) else additional_cost
    for material_cost, percentage in components:
        cost = material_cost if isinstance(material_cost, Decimal) else Decimal(str(material_cost))
        weight = percentage if isinstance(percentage, Decimal) else Decimal(str(percentage))
        total += weight / HUNDRED * cost
    return total.quantize(CENT, rounding=ROUND_HALF_UP)

def calculate_product_cost(product, ingredients=None):
    """Cost of a product from its ingredient links and the live material costs"""
    if ingredients is None:
        ingredients = product.ingredients
    return calculate_total_cost(
        ((ing.raw_material.cost, ing.percentage) for ing in ingredients if ing.raw_material is not None),
        product.additional_cost or 0
    )

def check_total_cost(product, field):
    if product.total_cost >= MAX_AMOUNT:
        raise ValidationError(
            _('Total cost of product {} would exceed {}').format(product.name, MAX_AMOUNT), field=field
        )

def recalculate_product_costs_for_material(raw_material_id, tenant_id, product_ids=None):
    """
    Recompute total_cost of every tenant product that uses the raw material.

    Pass product_ids when the links were already removed (cascading delete) so the
    affected products are still found. Does not commit: the caller's transaction
    commits all products together. Returns the number of products updated.
    """
    if product_ids is None:
        product_ids = [
            row.product_id for row in db.session.query(ProductIngredient.product_id)
            .join(Product, Product.id == ProductIngredient.product_id)
            .filter(ProductIngredient.raw_material_id == raw_material_id, Product.tenant_id == tenant_id)
            .distinct()
        ]

    if not product_ids:
        return 0

    # Lock affected rows so concurrent updates of different materials serialize
    products = Product.query.filter(
        Product.id.in_(product_ids),
        Product.tenant_id == tenant_id
    ).order_by(Product.id).with_for_update().all()

    for product in products:
        ingredients = ProductIngredient.query.options(
            joinedload(ProductIngredient.raw_material)
        ).filter_by(product_id=product.id).all()
        product.total_cost = calculate_product_cost(product, ingredients)
        check_total_cost(product, field='cost')

    current_app.logger.info(
        f"Recalculated {len(products)} product(s) for raw material {raw_material_id} (tenant {tenant_id})"
    )
    return len(products)
