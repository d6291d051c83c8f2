from flask import Blueprint, jsonify
from flask_babel import gettext as _

main_blueprint = Blueprint('main', __name__)

@main_blueprint.route('/api/health')
def health():
    return jsonify({'status': 'UP', 'message': _('AutoCost API is healthy')})
