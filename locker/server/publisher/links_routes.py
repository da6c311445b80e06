from quart import Blueprint, session, jsonify
from locker.config import Server
from locker.server.links import create_link, list_links, update_link_rules
from locker.server.serializers import link_dict
from locker.server.security import csrf_protect, request_data
from .utils import require_publisher

bp = Blueprint('publisher_links', __name__)

@bp.route('/links')
@require_publisher
async def links():
    items = await list_links(owner_id=session['user_id'])
    return jsonify({'status': 'success', 'links': [link_dict(link) for link in items]})

@bp.route('/links', methods=['POST'])
@require_publisher
@csrf_protect
async def new_link():
    data = await request_data()
    link = await create_link(
        session['user_id'],
        data.get('destination_url'),
        data.get('title'),
        description=data.get('description'),
        rules=data.get('rules')
    )
    payload = link_dict(link)
    payload['short_url'] = f"{Server.BASE_URL.rstrip('/')}/{link.short_code}"
    return jsonify({'status': 'success', 'link': payload}), 201

@bp.route('/links/<int:link_id>/rules', methods=['POST'])
@require_publisher
@csrf_protect
async def edit_rules(link_id):
    data = await request_data()
    link = await update_link_rules(link_id, session['user_id'], data.get('rules'))
    return jsonify({'status': 'success', 'link': link_dict(link)})
