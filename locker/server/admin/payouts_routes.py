from quart import Blueprint, request, jsonify
from locker.server.balance import (
    list_payouts, approve_payout, reject_payout, payout_settings, update_minimum_payout, toggle_payouts
)
from locker.server.serializers import payout_dict
from locker.server.security import csrf_protect, request_data
from .utils import require_admin, current_admin_id

bp = Blueprint('admin_payouts', __name__)

@bp.route('/payouts')
@require_admin
async def payouts():
    status_filter = request.args.get('status', 'all')
    items = await list_payouts(status=status_filter)
    settings = await payout_settings()

    return jsonify({
        'status': 'success',
        'payouts': [payout_dict(p) for p in items],
        'total_pending': sum(1 for p in items if p.status == 'pending'),
        'minimum_payout': f'{settings.minimum_payout:.2f}',
        'payouts_enabled': settings.payouts_enabled
    })

@bp.route('/payouts/<int:payout_id>/approve', methods=['POST'])
@require_admin
@csrf_protect
async def approve(payout_id):
    payout = await approve_payout(payout_id, current_admin_id())
    return jsonify({'status': 'success', 'payout': payout_dict(payout)})

@bp.route('/payouts/<int:payout_id>/reject', methods=['POST'])
@require_admin
@csrf_protect
async def reject(payout_id):
    payout = await reject_payout(payout_id, current_admin_id())
    return jsonify({'status': 'success', 'payout': payout_dict(payout)})

@bp.route('/payouts/toggle-requests', methods=['POST'])
@require_admin
@csrf_protect
async def toggle_requests():
    settings = await toggle_payouts(current_admin_id())
    return jsonify({'status': 'success', 'payouts_enabled': settings.payouts_enabled})

@bp.route('/payouts/minimum', methods=['POST'])
@require_admin
@csrf_protect
async def update_minimum():
    data = await request_data()
    settings = await update_minimum_payout(data.get('minimum_payout'), current_admin_id())
    return jsonify({'status': 'success', 'minimum_payout': f'{settings.minimum_payout:.2f}'})
