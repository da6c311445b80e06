from quart import Blueprint, request, redirect, jsonify
from locker.config import Monetization
from locker.modules.clock import now_ms
from locker.modules.ip_lookup import get_client_ip, get_country_code
from locker.server.error import abort
from locker.server.links import get_link_by_short_code
from locker.server.gate import (
    start_gate, gate_status, open_gate_item, complete_gate, evaluate, rule_keys, sponsor_key,
    GateTimings, GateItemError, RECORD, NOT_READY
)
from locker.server.abuse_guard import parse_cookie_timestamp
from locker.server.click_recorder import record_click
from locker.server.security import request_data, get_csrf_token
from os import environ
from typing import Optional
import asyncio
import logging

bp = Blueprint('main', __name__)
logger = logging.getLogger('locker.server')

SECURE_COOKIES = environ.get('ENVIRONMENT', 'production') != 'development'

def _visitor_ip() -> Optional[str]:
    return get_client_ip(request.headers, request.remote_addr)

def _timings_payload(timings: GateTimings) -> dict:
    return {
        'item_dwell_seconds': timings.dwell_ms // 1000,
        'countdown_seconds': timings.countdown_ms // 1000,
        'min_gate_seconds': timings.min_gate_ms // 1000
    }

async def count_and_redirect(link_id: int, destination_url: str, visitor_ip: Optional[str],
                             gate_session_id: Optional[int] = None):
    """
    Record the visit and redirect. Any accounting failure is logged; the
    redirect is returned regardless.
    """
    response = redirect(destination_url)
    try:
        cookie_ms = parse_cookie_timestamp(request.cookies.get(Monetization.VISIT_COOKIE_NAME))
        country_code = await get_country_code(visitor_ip)
        now = now_ms()

        # Let the write finish even if the visitor disconnects
        outcome = await asyncio.shield(record_click(
            link_id,
            visitor_ip,
            request.headers.get('User-Agent'),
            cookie_ms=cookie_ms,
            country_code=country_code,
            now=now,
            gate_session_id=gate_session_id
        ))

        if outcome is not None and outcome.monetized:
            response.set_cookie(
                Monetization.VISIT_COOKIE_NAME,
                str(now),
                max_age=Monetization.VISIT_COOKIE_MAX_AGE,
                httponly=True,
                secure=SECURE_COOKIES,
                samesite='Lax'
            )
    except Exception as e:
        logger.error(f"Click accounting failed for link {link_id}: {e}")

    return response

@bp.route('/session/csrf-token')
async def csrf_token():
    """Token for the X-CSRF-Token header of admin and publisher POSTs"""
    return jsonify({'status': 'success', 'csrf_token': get_csrf_token()})

@bp.route('/<short_code>')
async def resolve_link(short_code):
    link = await get_link_by_short_code(short_code)
    if not link:
        abort(404, 'Link not found.')

    visitor_ip = _visitor_ip()

    # No rules: the gate is skipped entirely
    if not link.rules:
        return await count_and_redirect(link.id, link.destination_url, visitor_ip)

    timings = GateTimings.from_config()
    gate_session, sponsors = await start_gate(link, visitor_ip)
    required = rule_keys(link) + [sponsor_key(s.id) for s in sponsors]
    snapshot = evaluate(required, {}, gate_session.started_at_ms, gate_session.started_at_ms, timings)

    return jsonify({
        'status': 'success',
        'token': gate_session.token,
        'link': {
            'title': link.title,
            'description': link.description
        },
        'rules': [
            {'key': key, 'type': rule['type'], 'url': rule['url']}
            for key, rule in zip(rule_keys(link), link.rules)
        ],
        'sponsors': [
            {'key': sponsor_key(s.id), 'id': s.id, 'title': s.title, 'url': s.sponsor_url}
            for s in sponsors
        ],
        'timings': _timings_payload(timings),
        'gate': snapshot.to_dict()
    })

@bp.route('/gate/<token>')
async def gate_state(token):
    gate_session, link, snapshot = await gate_status(token)
    if not gate_session:
        abort(404, 'Gate not found.')

    return jsonify({
        'status': 'success',
        'token': token,
        'completed': gate_session.consumed_at_ms is not None,
        'gate': snapshot.to_dict()
    })

@bp.route('/gate/<token>/open', methods=['POST'])
async def gate_open_item(token):
    data = await request_data()
    item = str(data.get('item') or '').strip()
    if not item:
        return jsonify({'status': 'error', 'message': 'Missing gate item'}), 400

    try:
        snapshot = await open_gate_item(token, item)
    except GateItemError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    if snapshot is None:
        abort(404, 'Gate not found.')

    return jsonify({'status': 'success', 'gate': snapshot.to_dict()})

@bp.route('/gate/<token>/continue', methods=['POST'])
async def gate_continue(token):
    completion = await complete_gate(token)
    if completion is None:
        abort(404, 'Gate not found.')

    if completion.decision == NOT_READY:
        return jsonify({'status': 'error', 'message': 'Complete all steps before continuing'}), 409

    if completion.decision == RECORD:
        return await count_and_redirect(
            completion.link_id,
            completion.destination_url,
            _visitor_ip(),
            gate_session_id=completion.gate_session_id
        )

    return redirect(completion.destination_url)
