from quart import Blueprint, jsonify
from locker.server.rates import cpm_history, open_cpm_period, parse_rate, current_global_rate
from locker.server.serializers import cpm_period_dict
from locker.server.security import csrf_protect, request_data
from .utils import require_admin, current_admin_id

bp = Blueprint('admin_cpm', __name__)

@bp.route('/cpm')
@require_admin
async def history():
    periods = await cpm_history()
    active_rate = await current_global_rate()
    return jsonify({
        'status': 'success',
        'active_rate': f'{active_rate:.4f}',
        'periods': [cpm_period_dict(p) for p in periods]
    })

@bp.route('/cpm', methods=['POST'])
@require_admin
@csrf_protect
async def update_rate():
    data = await request_data()
    rate = parse_rate(data.get('rate'))
    if rate is None:
        return jsonify({'status': 'error', 'message': 'CPM rate is required'}), 400

    period = await open_cpm_period(rate, current_admin_id())
    return jsonify({'status': 'success', 'period': cpm_period_dict(period)}), 201
