from quart import Blueprint, jsonify
from locker.server.links import list_links, toggle_link_monetization, delete_link
from locker.server.balance import audit_link_earnings
from locker.server.serializers import link_dict, money
from locker.server.security import csrf_protect
from .utils import require_admin, current_admin_id

bp = Blueprint('admin_links', __name__)

@bp.route('/links')
@require_admin
async def links():
    items = await list_links()
    return jsonify({'status': 'success', 'links': [link_dict(link) for link in items]})

@bp.route('/links/<int:link_id>/toggle-monetization', methods=['POST'])
@require_admin
@csrf_protect
async def toggle_monetization(link_id):
    link = await toggle_link_monetization(link_id, current_admin_id())
    return jsonify({'status': 'success', 'link': link_dict(link)})

@bp.route('/links/<int:link_id>/delete', methods=['POST'])
@require_admin
@csrf_protect
async def remove(link_id):
    await delete_link(link_id, current_admin_id())
    return jsonify({'status': 'success'})

@bp.route('/links/<int:link_id>/audit')
@require_admin
async def audit(link_id):
    report = await audit_link_earnings(link_id)
    return jsonify({
        'status': 'success',
        'link_id': report.link_id,
        'generated_earnings': money(report.accumulated),
        'earnings_from_events': money(report.from_events),
        'drift': money(report.drift),
        'clicks': report.clicks,
        'click_events': report.events,
        'consistent': report.consistent
    })
