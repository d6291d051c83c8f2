from flask import Blueprint, current_app, g, jsonify
from flask_babel import gettext as _
from ..models import db, RawMaterial, PriceHistory, ProductIngredient, ConflictError, NotFoundError
from .utils import (
    login_required, log_audit, transaction, get_json_body, parse_name, parse_cost,
    recalculate_product_costs_for_material
)

raw_materials_blueprint = Blueprint('raw_materials', __name__)

# ----------------------------
# Raw Material Store
# ----------------------------
def get_raw_material(tenant_id, material_id):
    """Fetch a tenant's material. Foreign materials are reported exactly like missing ones."""
    material = RawMaterial.query.filter_by(id=material_id, tenant_id=tenant_id).first()
    if not material:
        raise NotFoundError(_("Raw material not found or you don't have permission to access it."))
    return material

def list_raw_materials(tenant_id):
    return RawMaterial.query.filter_by(tenant_id=tenant_id).order_by(RawMaterial.name.asc()).all()

def create_raw_material(tenant_id, name, cost):
    name = parse_name(name)
    cost = parse_cost(cost)

    with transaction('create raw material'):
        if RawMaterial.query.filter_by(tenant_id=tenant_id, name=name).first():
            raise ConflictError(_("Material with name '{}' already exists.").format(name), field='name')

        material = RawMaterial(tenant_id=tenant_id, name=name, cost=cost)
        db.session.add(material)
        db.session.flush()
        log_audit(tenant_id, "CREATE", "RawMaterial", material.id, f"Created raw material {name} at {cost}")

    current_app.logger.info(f"Raw material {material.id} ({name}) created for tenant {tenant_id}")
    return material

def reprice_raw_material(material, new_cost):
    """
    Set a material's cost, record the change and recalculate dependent products.
    Runs inside the caller's transaction; returns the number of products recalculated.
    """
    old_cost = material.cost
    if old_cost != new_cost:
        db.session.add(PriceHistory(raw_material=material, old_cost=old_cost, new_cost=new_cost))
        material.cost = new_cost
        log_audit(material.tenant_id, "UPDATE_COST", "RawMaterial", material.id,
                  f"{material.name}: {old_cost} -> {new_cost}")
    db.session.flush()
    return recalculate_product_costs_for_material(material.id, material.tenant_id)

def update_raw_material_cost(tenant_id, material_id, cost):
    """Update the cost and commit it together with every dependent product's new total"""
    cost = parse_cost(cost)

    with transaction('update raw material cost'):
        material = get_raw_material(tenant_id, material_id)
        updated_products = reprice_raw_material(material, cost)

    current_app.logger.info(
        f"Raw material {material_id} cost set to {cost}, {updated_products} product(s) recalculated"
    )
    return material, updated_products

def delete_raw_material(tenant_id, material_id, policy=None):
    """
    Delete a material under the configured policy.

    restrict: refuse while any product ingredient references it.
    cascade: drop the referencing ingredient links and recalculate those products
    in the same transaction; the removed material contributes nothing.
    """
    policy = policy or current_app.config['RAW_MATERIAL_DELETE_POLICY']

    with transaction('delete raw material'):
        material = get_raw_material(tenant_id, material_id)
        material_name = material.name
        affected_product_ids = [
            row.product_id for row in db.session.query(ProductIngredient.product_id)
            .filter(ProductIngredient.raw_material_id == material.id)
            .distinct()
        ]

        if affected_product_ids and policy == 'restrict':
            current_app.logger.warning(
                f"Refused to delete raw material {material.id}: used by {len(affected_product_ids)} product(s)"
            )
            raise ConflictError(
                _("Raw material '{}' is used by {} product(s) and cannot be deleted").format(
                    material_name, len(affected_product_ids)
                )
            )

        ProductIngredient.query.filter_by(raw_material_id=material.id).delete(synchronize_session='fetch')
        db.session.delete(material)
        db.session.flush()

        updated_products = 0
        if affected_product_ids:
            updated_products = recalculate_product_costs_for_material(
                material_id, tenant_id, product_ids=affected_product_ids
            )
        log_audit(tenant_id, "DELETE", "RawMaterial", material_id,
                  f"Deleted raw material {material_name} ({updated_products} product(s) recalculated)")

    current_app.logger.info(f"Raw material {material_id} deleted for tenant {tenant_id}")
    return 1

def list_price_history(tenant_id, material_id):
    material = get_raw_material(tenant_id, material_id)
    return PriceHistory.query.filter_by(raw_material_id=material.id) \
        .order_by(PriceHistory.changed_at.desc()).all()

# ----------------------------
# Routes
# ----------------------------
@raw_materials_blueprint.route('/api/raw-materials', methods=['GET'])
@login_required
def raw_materials():
    return jsonify([m.to_dict() for m in list_raw_materials(g.tenant_id)])

@raw_materials_blueprint.route('/api/raw-materials', methods=['POST'])
@login_required
def add_raw_material():
    data = get_json_body()
    material = create_raw_material(g.tenant_id, data.get('name'), data.get('cost'))
    return jsonify(material.to_dict()), 201

@raw_materials_blueprint.route('/api/raw-materials/<material_id>', methods=['GET'])
@login_required
def raw_material_detail(material_id):
    return jsonify(get_raw_material(g.tenant_id, material_id).to_dict())

@raw_materials_blueprint.route('/api/raw-materials/<material_id>', methods=['PUT'])
@login_required
def edit_raw_material(material_id):
    data = get_json_body()
    material, updated_products = update_raw_material_cost(g.tenant_id, material_id, data.get('cost'))
    result = material.to_dict()
    result['recalculatedProducts'] = updated_products
    return jsonify(result)

@raw_materials_blueprint.route('/api/raw-materials/<material_id>', methods=['DELETE'])
@login_required
def remove_raw_material(material_id):
    return jsonify({'deleted': delete_raw_material(g.tenant_id, material_id)})

@raw_materials_blueprint.route('/api/raw-materials/<material_id>/price-history', methods=['GET'])
@login_required
def raw_material_price_history(material_id):
    return jsonify([h.to_dict() for h in list_price_history(g.tenant_id, material_id)])
