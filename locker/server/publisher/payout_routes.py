from quart import Blueprint, session, jsonify
from locker.server.balance import request_payout, list_payouts, get_balance_summary, payout_settings
from locker.server.serializers import payout_dict
from locker.server.security import csrf_protect, request_data
from .utils import require_publisher

bp = Blueprint('publisher_payouts', __name__)

@bp.route('/payouts')
@require_publisher
async def payouts():
    user_id = session['user_id']
    items = await list_payouts(user_id=user_id)
    summary = await get_balance_summary(user_id)
    settings = await payout_settings()

    return jsonify({
        'status': 'success',
        'payouts': [payout_dict(p) for p in items],
        'available_balance': f'{summary.available:.2f}',
        'minimum_payout': f'{settings.minimum_payout:.2f}',
        'payouts_enabled': settings.payouts_enabled
    })

@bp.route('/payouts', methods=['POST'])
@require_publisher
@csrf_protect
async def new_payout():
    data = await request_data()
    payout = await request_payout(
        session['user_id'],
        data.get('amount'),
        data.get('method'),
        data.get('details')
    )
    return jsonify({'status': 'success', 'payout': payout_dict(payout)}), 201
