from quart import Blueprint
from . import payouts_routes
from . import cpm_routes
from . import users_routes
from . import links_routes
from . import sponsors_routes

bp = Blueprint('admin', __name__, url_prefix='/admin')

bp.register_blueprint(payouts_routes.bp)
bp.register_blueprint(cpm_routes.bp)
bp.register_blueprint(users_routes.bp)
bp.register_blueprint(links_routes.bp)
bp.register_blueprint(sponsors_routes.bp)
