import httpx
import logging
from locker.config import Server, Monetization
from locker.modules import ip_lookup
from locker.modules.ip_lookup import get_client_ip, get_country_code, is_public_ip
from locker.modules.log_sanitizer import SensitiveDataFilter

REAL_CLIENT = httpx.AsyncClient

def _patch_transport(monkeypatch, handler):
    def factory(**kwargs):
        return REAL_CLIENT(transport=httpx.MockTransport(handler), **kwargs)
    monkeypatch.setattr(Monetization, 'GEOIP_ENABLED', True)
    monkeypatch.setattr(ip_lookup.httpx, 'AsyncClient', factory)

def test_client_ip_header_priority():
    headers = {
        'CF-Connecting-IP': '203.0.113.1',
        'X-Real-IP': '203.0.113.2',
        'X-Forwarded-For': '203.0.113.3, 10.0.0.1'
    }
    assert get_client_ip(headers, '10.0.0.9', trust_proxy_headers=True) == '203.0.113.1'

    del headers['CF-Connecting-IP']
    assert get_client_ip(headers, '10.0.0.9', trust_proxy_headers=True) == '203.0.113.2'

    del headers['X-Real-IP']
    assert get_client_ip(headers, '10.0.0.9', trust_proxy_headers=True) == '203.0.113.3'

    assert get_client_ip({}, '10.0.0.9', trust_proxy_headers=True) == '10.0.0.9'

def test_malformed_values_are_skipped():
    assert get_client_ip({'X-Real-IP': 'not-an-ip'}, '198.51.100.4', trust_proxy_headers=True) == '198.51.100.4'
    assert get_client_ip({'X-Forwarded-For': 'garbage'}, None, trust_proxy_headers=True) is None

def test_untrusted_proxy_headers_are_ignored(monkeypatch):
    headers = {'CF-Connecting-IP': '203.0.113.1', 'X-Forwarded-For': '203.0.113.3'}

    assert get_client_ip(headers, '198.51.100.20', trust_proxy_headers=False) == '198.51.100.20'
    assert get_client_ip(headers, None, trust_proxy_headers=False) is None

    monkeypatch.setattr(Server, 'TRUST_PROXY_HEADERS', False)
    assert get_client_ip(headers, '198.51.100.20') == '198.51.100.20'

def test_public_ip_detection():
    assert is_public_ip('8.8.8.8')
    assert not is_public_ip('192.168.1.10')
    assert not is_public_ip('127.0.0.1')
    assert not is_public_ip(None)

async def test_lookup_disabled_returns_none(monkeypatch):
    monkeypatch.setattr(Monetization, 'GEOIP_ENABLED', False)
    assert await get_country_code('8.8.8.8') is None

async def test_lookup_returns_country_code(monkeypatch):
    def handler(request):
        assert request.url.path == '/8.8.8.8/json/'
        return httpx.Response(200, json={'country_code': 'US'})

    _patch_transport(monkeypatch, handler)
    assert await get_country_code('8.8.8.8') == 'US'

async def test_lookup_timeout_fails_open(monkeypatch):
    def handler(request):
        raise httpx.ReadTimeout('too slow', request=request)

    _patch_transport(monkeypatch, handler)
    assert await get_country_code('8.8.8.8') is None

async def test_lookup_error_payload_returns_none(monkeypatch):
    _patch_transport(monkeypatch, lambda request: httpx.Response(200, json={'error': True, 'reason': 'RateLimited'}))
    assert await get_country_code('8.8.8.8') is None

    _patch_transport(monkeypatch, lambda request: httpx.Response(503))
    assert await get_country_code('8.8.8.8') is None

async def test_private_ip_is_never_looked_up(monkeypatch):
    def handler(request):
        raise AssertionError('lookup should not happen')

    _patch_transport(monkeypatch, handler)
    assert await get_country_code('10.1.2.3') is None

def test_log_filter_redacts_credentials():
    record = logging.LogRecord('locker', logging.INFO, __file__, 1,
                               'connecting to %s', ('postgresql://app:hunter2@db/locker',), None)

    assert SensitiveDataFilter().filter(record)
    assert 'hunter2' not in record.getMessage()
    assert 'PASS_REDACTED' in record.getMessage()
