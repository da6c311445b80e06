from quart import Blueprint, request, session, jsonify
from locker.server.balance import get_balance_summary
from locker.server.notifications import list_notifications, mark_read
from locker.server.serializers import notification_dict
from locker.server.security import csrf_protect, request_data
from .utils import require_publisher

bp = Blueprint('publisher_dashboard', __name__)

@bp.route('/balance')
@require_publisher
async def balance():
    summary = await get_balance_summary(session['user_id'])
    return jsonify({'status': 'success', 'balance': summary.to_dict()})

@bp.route('/notifications')
@require_publisher
async def notifications():
    unread_only = request.args.get('unread') in ('1', 'true')
    items = await list_notifications(session['user_id'], unread_only=unread_only)
    return jsonify({'status': 'success', 'notifications': [notification_dict(n) for n in items]})

@bp.route('/notifications/read', methods=['POST'])
@require_publisher
@csrf_protect
async def notifications_read():
    data = await request_data()
    ids = data.get('ids')
    if ids is not None:
        try:
            ids = [int(i) for i in ids]
        except (TypeError, ValueError):
            return jsonify({'status': 'error', 'message': 'Invalid notification ids'}), 400

    updated = await mark_read(session['user_id'], ids)
    return jsonify({'status': 'success', 'updated': updated})
