import os
from flask import Flask, request, session, jsonify, has_request_context
from flask_babel import Babel, gettext as _
from .models import db, AutoCostError, CostIntegrityError

DELETE_POLICIES = ('restrict', 'cascade')

def get_locale():
    if not has_request_context():
        return 'en'
    selected_locale = request.args.get('lang', session.get('lang', 'en'))
    return selected_locale

def create_app(test_config=None):
    app = Flask(__name__)

    @app.before_request
    def before_request():
        """Capture language parameter and save to session for persistence across requests"""
        if 'lang' in request.args:
            session['lang'] = request.args.get('lang')

    # Load configurations
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///autocost.db")
    app.config['SQLALCHEMY_DATABASE_URI'] = DATABASE_URL
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # Secret key for session management (the identity layer stores user_id in the session)
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')

    # 'restrict' refuses to delete referenced materials, 'cascade' unlinks and recalculates
    app.config['RAW_MATERIAL_DELETE_POLICY'] = os.getenv('RAW_MATERIAL_DELETE_POLICY', 'restrict')
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    app.config['BABEL_DEFAULT_LOCALE'] = 'en'
    app.config['BABEL_SUPPORTED_LOCALES'] = ['en', 'he']

    app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16MB max upload size

    if test_config is not None:
        app.config.update(test_config)

    if app.config['RAW_MATERIAL_DELETE_POLICY'] not in DELETE_POLICIES:
        raise ValueError(
            f"RAW_MATERIAL_DELETE_POLICY must be one of {DELETE_POLICIES}, "
            f"got {app.config['RAW_MATERIAL_DELETE_POLICY']!r}"
        )

    app.logger.setLevel(app.config['LOG_LEVEL'])

    Babel(app, locale_selector=get_locale)

    # Initialize database
    db.init_app(app)

    @app.errorhandler(AutoCostError)
    def handle_autocost_error(error):
        if isinstance(error, CostIntegrityError):
            app.logger.error(f"Internal cost error: {error}")
            return jsonify({'success': False, 'error': _('Internal server error')}), error.status_code

        payload = {'success': False, 'error': str(error)}
        if getattr(error, 'field', None):
            payload['field'] = error.field
        return jsonify(payload), error.status_code

    # Register blueprints
    from .routes import main_blueprint, raw_materials_blueprint, products_blueprint, inventory_blueprint, admin_blueprint
    app.register_blueprint(main_blueprint)
    app.register_blueprint(raw_materials_blueprint)
    app.register_blueprint(products_blueprint)
    app.register_blueprint(inventory_blueprint)
    app.register_blueprint(admin_blueprint)

    with app.app_context():
        db.create_all()

    return app
