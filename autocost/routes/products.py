from flask import Blueprint, current_app, g, jsonify
from flask_babel import gettext as _
from sqlalchemy.orm import joinedload, selectinload
from ..models import db, Product, ProductIngredient, RawMaterial, ValidationError, NotFoundError, ConflictError
from .utils import (
    login_required, log_audit, transaction, get_json_body, parse_name, parse_cost, parse_percentage,
    validate_percentage_sum, calculate_total_cost, check_total_cost
)

products_blueprint = Blueprint('products', __name__)

# ----------------------------
# Product Composer
# ----------------------------
def parse_ingredients(ingredients):
    """Validate an ingredient list into [(raw_material_id, percentage)]"""
    if not isinstance(ingredients, list) or not ingredients:
        raise ValidationError(_('At least one ingredient is required'), field='ingredients')

    parsed = []
    seen = set()
    for index, item in enumerate(ingredients):
        prefix = f'ingredients[{index}]'
        if not isinstance(item, dict):
            raise ValidationError(_('Each ingredient must be an object'), field=prefix)

        raw_material_id = item.get('rawMaterialId')
        if not isinstance(raw_material_id, str) or not raw_material_id:
            raise ValidationError(_('Raw material ID is required'), field=f'{prefix}.rawMaterialId')
        if raw_material_id in seen:
            raise ValidationError(
                _('Raw material {} is listed more than once').format(raw_material_id),
                field=f'{prefix}.rawMaterialId'
            )
        seen.add(raw_material_id)

        percentage = parse_percentage(item.get('percentage'), field=f'{prefix}.percentage')
        parsed.append((raw_material_id, percentage))

    validate_percentage_sum(p for _id, p in parsed)
    return parsed

def load_tenant_materials(tenant_id, parsed_ingredients):
    """Map raw material id -> RawMaterial, rejecting ids that are missing or owned by another tenant"""
    ids = [raw_material_id for raw_material_id, _p in parsed_ingredients]
    materials = {
        m.id: m for m in RawMaterial.query.filter(RawMaterial.id.in_(ids), RawMaterial.tenant_id == tenant_id)
    }
    for index, raw_material_id in enumerate(ids):
        if raw_material_id not in materials:
            raise NotFoundError(
                _('Raw material {} not found or access denied').format(raw_material_id),
                field=f'ingredients[{index}].rawMaterialId'
            )
    return materials

def _check_name_available(tenant_id, name, product_id=None):
    query = Product.query.filter_by(tenant_id=tenant_id, name=name)
    if product_id:
        query = query.filter(Product.id != product_id)
    if query.first():
        raise ConflictError(_("Product with name '{}' already exists.").format(name), field='name')

def _build_ingredients(product, parsed_ingredients, materials):
    for raw_material_id, percentage in parsed_ingredients:
        product.ingredients.append(ProductIngredient(
            raw_material=materials[raw_material_id],
            percentage=percentage
        ))
    product.total_cost = calculate_total_cost(
        ((materials[raw_material_id].cost, percentage) for raw_material_id, percentage in parsed_ingredients),
        product.additional_cost
    )
    check_total_cost(product, field='additionalCost')

def get_product(tenant_id, product_id):
    product = Product.query.options(
        selectinload(Product.ingredients).joinedload(ProductIngredient.raw_material)
    ).filter_by(id=product_id, tenant_id=tenant_id).first()
    if not product:
        raise NotFoundError(_("Product not found or you don't have permission to access it."))
    return product

def list_products(tenant_id):
    return Product.query.options(
        selectinload(Product.ingredients).joinedload(ProductIngredient.raw_material)
    ).filter_by(tenant_id=tenant_id).order_by(Product.name.asc()).all()

def create_product(tenant_id, name, additional_cost, ingredients):
    name = parse_name(name)
    additional_cost = parse_cost(0 if additional_cost is None else additional_cost,
                                 field='additionalCost', allow_zero=True)
    parsed = parse_ingredients(ingredients)

    with transaction('create product'):
        materials = load_tenant_materials(tenant_id, parsed)
        _check_name_available(tenant_id, name)

        product = Product(tenant_id=tenant_id, name=name, additional_cost=additional_cost)
        _build_ingredients(product, parsed, materials)
        db.session.add(product)
        db.session.flush()
        log_audit(tenant_id, "CREATE", "Product", product.id,
                  f"Created product {name} with {len(parsed)} ingredient(s), total cost {product.total_cost}")

    current_app.logger.info(f"Product {product.id} ({name}) created for tenant {tenant_id}")
    return get_product(tenant_id, product.id)

def update_product(tenant_id, product_id, name, additional_cost, ingredients):
    """Replace a product's name, additional cost and ingredient set; total cost is recomputed"""
    name = parse_name(name)
    additional_cost = parse_cost(0 if additional_cost is None else additional_cost,
                                 field='additionalCost', allow_zero=True)
    parsed = parse_ingredients(ingredients)

    with transaction('update product'):
        product = get_product(tenant_id, product_id)
        materials = load_tenant_materials(tenant_id, parsed)
        _check_name_available(tenant_id, name, product_id=product.id)

        # Flush removals first so re-added materials don't hit the (product, material) unique key
        product.ingredients.clear()
        db.session.flush()

        product.name = name
        product.additional_cost = additional_cost
        _build_ingredients(product, parsed, materials)
        log_audit(tenant_id, "UPDATE", "Product", product.id,
                  f"Updated product {name}, total cost {product.total_cost}")

    current_app.logger.info(f"Product {product_id} updated for tenant {tenant_id}")
    return get_product(tenant_id, product_id)

def delete_product(tenant_id, product_id):
    with transaction('delete product'):
        product = get_product(tenant_id, product_id)
        product_name = product.name
        db.session.delete(product)
        log_audit(tenant_id, "DELETE", "Product", product_id, f"Deleted product: {product_name}")

    current_app.logger.info(f"Product {product_id} deleted for tenant {tenant_id}")
    return 1

# ----------------------------
# Routes
# ----------------------------
@products_blueprint.route('/api/products', methods=['GET'])
@login_required
def products():
    return jsonify([p.to_dict() for p in list_products(g.tenant_id)])

@products_blueprint.route('/api/products', methods=['POST'])
@login_required
def add_product():
    data = get_json_body()
    product = create_product(g.tenant_id, data.get('name'), data.get('additionalCost'), data.get('ingredients'))
    return jsonify(product.to_dict()), 201

@products_blueprint.route('/api/products/<product_id>', methods=['GET'])
@login_required
def product_detail(product_id):
    return jsonify(get_product(g.tenant_id, product_id).to_dict())

@products_blueprint.route('/api/products/<product_id>', methods=['PUT'])
@login_required
def edit_product(product_id):
    data = get_json_body()
    product = update_product(g.tenant_id, product_id, data.get('name'), data.get('additionalCost'),
                             data.get('ingredients'))
    return jsonify(product.to_dict())

@products_blueprint.route('/api/products/<product_id>', methods=['DELETE'])
@login_required
def remove_product(product_id):
    return jsonify({'deleted': delete_product(g.tenant_id, product_id)})
