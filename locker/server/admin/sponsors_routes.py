from quart import Blueprint, request, jsonify
from locker.server.sponsors import list_sponsors, create_sponsor, set_sponsor_active, can_add_sponsor
from locker.server.serializers import sponsor_dict
from locker.server.security import csrf_protect, request_data
from .utils import require_admin, current_admin_id

bp = Blueprint('admin_sponsors', __name__)

@bp.route('/sponsors')
@require_admin
async def sponsors():
    link_id = request.args.get('link_id', type=int)
    items = await list_sponsors(link_id)
    payload = {'status': 'success', 'sponsors': [sponsor_dict(s) for s in items]}
    if link_id is not None:
        payload['can_add_sponsor'] = await can_add_sponsor(link_id)
    return jsonify(payload)

@bp.route('/links/<int:link_id>/sponsors', methods=['POST'])
@require_admin
@csrf_protect
async def add_sponsor(link_id):
    data = await request_data()
    sponsor = await create_sponsor(
        link_id,
        data.get('title'),
        data.get('sponsor_url'),
        expires_at=data.get('expires_at'),
        admin_id=current_admin_id()
    )
    return jsonify({'status': 'success', 'sponsor': sponsor_dict(sponsor)}), 201

@bp.route('/sponsors/<int:sponsor_id>/toggle', methods=['POST'])
@require_admin
@csrf_protect
async def toggle_sponsor(sponsor_id):
    data = await request_data()
    active = str(data.get('active', '')).lower() in ('1', 'true', 'yes', 'on')
    sponsor = await set_sponsor_active(sponsor_id, active)
    return jsonify({'status': 'success', 'sponsor': sponsor_dict(sponsor)})
