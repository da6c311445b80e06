from quart import Blueprint, jsonify
from locker.server.accounts import list_profiles, toggle_account_status
from locker.server.balance import add_balance, get_balance_summary
from locker.server.rates import set_custom_cpm, parse_rate
from locker.server.serializers import profile_dict, money
from locker.server.security import csrf_protect, request_data
from .utils import require_admin, current_admin_id

bp = Blueprint('admin_users', __name__)

@bp.route('/users')
@require_admin
async def users():
    profiles = await list_profiles()
    return jsonify({'status': 'success', 'users': [profile_dict(p) for p in profiles]})

@bp.route('/users/<user_id>/balance')
@require_admin
async def user_balance(user_id):
    summary = await get_balance_summary(user_id)
    return jsonify({'status': 'success', 'balance': summary.to_dict()})

@bp.route('/users/<user_id>/custom-cpm', methods=['POST'])
@require_admin
@csrf_protect
async def custom_cpm(user_id):
    data = await request_data()
    # Empty or zero clears the override
    rate = parse_rate(data.get('custom_cpm'), allow_zero=False)
    profile = await set_custom_cpm(user_id, rate, current_admin_id())
    return jsonify({'status': 'success', 'user': profile_dict(profile)})

@bp.route('/users/<user_id>/add-balance', methods=['POST'])
@require_admin
@csrf_protect
async def user_add_balance(user_id):
    data = await request_data()
    adjustment = await add_balance(user_id, data.get('amount'), current_admin_id(), data.get('note'))
    summary = await get_balance_summary(user_id)
    return jsonify({
        'status': 'success',
        'adjustment': money(adjustment.amount),
        'balance': summary.to_dict()
    })

@bp.route('/users/<user_id>/toggle-status', methods=['POST'])
@require_admin
@csrf_protect
async def toggle_status(user_id):
    profile = await toggle_account_status(user_id, current_admin_id())
    return jsonify({'status': 'success', 'user': profile_dict(profile)})
