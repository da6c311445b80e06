import os
import tempfile

# Must be set before the package reads its configuration
os.environ['ENVIRONMENT'] = 'development'
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite://'
os.environ['GEOIP_ENABLED'] = 'false'
os.environ['TRUST_PROXY_HEADERS'] = 'true'
os.environ['LOG_FILENAME'] = os.path.join(tempfile.gettempdir(), 'locker-test.log')
os.environ.pop('ADMIN_UID', None)

import pytest
from decimal import Decimal
from locker.database import engine, Base, AsyncSessionLocal
from locker.models import UserProfile, Link, SponsorRule, CpmPeriod, Settings

CSRF_TOKEN = 'test-csrf-token'

THREE_RULES = [
    {'type': 'follow', 'url': 'https://social.example/a'},
    {'type': 'like', 'url': 'https://social.example/b'},
    {'type': 'subscribe', 'url': 'https://video.example/c'},
]

@pytest.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield AsyncSessionLocal
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Connections are bound to this test's event loop
    await engine.dispose()

async def add_user(user_id='owner-1', **kwargs):
    values = {'email': f'{user_id}@example.com', 'role': 'user', 'account_status': 'active',
              'paid_earnings': Decimal('0')}
    values.update(kwargs)
    async with AsyncSessionLocal() as session:
        async with session.begin():
            user = UserProfile(id=user_id, **values)
            session.add(user)
    return user

async def add_link(owner_id='owner-1', rules=None, short_code='abc1234', **kwargs):
    rules = THREE_RULES if rules is None else rules
    values = {
        'destination_url': 'https://destination.example/page',
        'title': 'My link',
        'rules': rules,
        'monetizable': len(rules) >= 3,
        'monetization_status': 'active',
        'clicks': 0,
        'generated_earnings': Decimal('0'),
    }
    values.update(kwargs)
    async with AsyncSessionLocal() as session:
        async with session.begin():
            link = Link(owner_id=owner_id, short_code=short_code, **values)
            session.add(link)
    return link

async def add_sponsor(link_id, title='Sponsor', **kwargs):
    values = {'sponsor_url': 'https://sponsor.example', 'is_active': True, 'views': 0, 'clicks': 0}
    values.update(kwargs)
    async with AsyncSessionLocal() as session:
        async with session.begin():
            sponsor = SponsorRule(link_id=link_id, title=title, **values)
            session.add(sponsor)
    return sponsor

async def add_period(rate, **kwargs):
    async with AsyncSessionLocal() as session:
        async with session.begin():
            period = CpmPeriod(rate=Decimal(rate), **kwargs)
            session.add(period)
    return period

async def add_settings(**kwargs):
    values = {'minimum_payout': Decimal('10'), 'payouts_enabled': True}
    values.update(kwargs)
    async with AsyncSessionLocal() as session:
        async with session.begin():
            settings = Settings(**values)
            session.add(settings)
    return settings

async def fetch(model, key):
    async with AsyncSessionLocal() as session:
        return await session.get(model, key)

@pytest.fixture
async def client(db):
    from locker.server import instance
    return instance.test_client()

async def login(client, user_id, role='user'):
    async with client.session_transaction() as sess:
        sess['user_id'] = user_id
        sess['role'] = role
        sess['csrf_token'] = CSRF_TOKEN

def csrf_headers():
    return {'X-CSRF-Token': CSRF_TOKEN}
