import json
import io
from datetime import datetime, timezone
from flask import Blueprint, current_app, g, jsonify, send_file
from ..models import RawMaterial, PriceHistory, AuditLog
from .utils import login_required, log_audit, transaction
from .products import list_products
from .raw_materials import list_raw_materials

admin_blueprint = Blueprint('admin', __name__)

@admin_blueprint.route('/api/admin/backup', methods=['GET'])
@login_required
def backup_db():
    """Download every record the tenant owns as a JSON backup"""
    tenant_id = g.tenant_id

    materials = list_raw_materials(tenant_id)
    products = list_products(tenant_id)
    price_history = PriceHistory.query.join(RawMaterial) \
        .filter(RawMaterial.tenant_id == tenant_id) \
        .order_by(PriceHistory.changed_at.asc()).all()
    audit_logs = AuditLog.query.filter_by(tenant_id=tenant_id).order_by(AuditLog.timestamp.asc()).all()

    data = {
        'version': '1.0',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'raw_materials': [m.to_dict() for m in materials],
        'products': [p.to_dict() for p in products],
        'price_history': [h.to_dict() for h in price_history],
        'audit_logs': [a.to_dict() for a in audit_logs],
        'statistics': {
            'model_counts': {
                'raw_materials': len(materials),
                'products': len(products),
                'price_history': len(price_history),
                'audit_logs': len(audit_logs)
            }
        }
    }

    json_str = json.dumps(data, indent=4, ensure_ascii=False)
    mem = io.BytesIO()
    mem.write(json_str.encode('utf-8'))
    mem.seek(0)

    filename = f"autocost_backup_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}.json"

    with transaction('record backup'):
        log_audit(tenant_id, "BACKUP", "System",
                  details=f"Backup created with {len(materials)} materials and {len(products)} products")
    current_app.logger.info(f"Backup created for tenant {tenant_id}")

    return send_file(
        mem,
        as_attachment=True,
        download_name=filename,
        mimetype='application/json'
    )

@admin_blueprint.route('/api/admin/audit-logs', methods=['GET'])
@login_required
def audit_logs():
    logs = AuditLog.query.filter_by(tenant_id=g.tenant_id) \
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).all()
    return jsonify([log.to_dict() for log in logs])
