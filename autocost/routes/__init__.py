from .main import main_blueprint
from .raw_materials import raw_materials_blueprint
from .products import products_blueprint
from .inventory import inventory_blueprint
from .admin import admin_blueprint
