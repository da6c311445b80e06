from quart import Blueprint
from . import dashboard
from . import links_routes
from . import payout_routes

bp = Blueprint('publisher', __name__, url_prefix='/publisher')

bp.register_blueprint(dashboard.bp)
bp.register_blueprint(links_routes.bp)
bp.register_blueprint(payout_routes.bp)
