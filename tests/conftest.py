"""Shared pytest fixtures.

Provides:
- An app built on in-memory SQLite with a scripted fake model client
- A recording sleep so retry backoff is observable without waiting
- A signed-in user helper
"""
import json
import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

# Keep real credentials out of the test run (load_dotenv never overrides these)
os.environ['GEMINI_API_KEY'] = ''
os.environ['GOOGLE_API_KEY'] = ''
os.environ['GOOGLE_CLIENT_ID'] = ''
os.environ['INSIGHTS_ALLOW_PLACEHOLDER'] = ''

from app import create_app  # noqa: E402
from insight_service import InsightRefresher, InsightStore  # noqa: E402
from models import User, db  # noqa: E402


VALID_INSIGHTS = {
    'salaryRange': [
        {'role': 'Financial Analyst', 'min': 500000, 'max': 1200000, 'median': 800000, 'location': 'Mumbai'},
        {'role': 'Investment Banker', 'min': 1200000, 'max': 3500000, 'median': 2000000, 'location': 'Mumbai'},
        {'role': 'Risk Manager', 'min': 1000000, 'max': 2500000, 'median': 1600000, 'location': 'Bangalore'},
        {'role': 'Portfolio Manager', 'min': 1500000, 'max': 4000000, 'median': 2500000, 'location': 'Delhi'},
        {'role': 'Financial Advisor', 'min': 400000, 'max': 1000000, 'median': 650000, 'location': 'Pune'},
    ],
    'growthRate': 8.2,
    'demandLevel': 'MEDIUM',
    'topSkills': ['Financial Modeling', 'Excel', 'SQL', 'Risk Analysis', 'Valuation'],
    'marketOutlook': 'NEUTRAL',
    'keyTrends': ['Fintech', 'Digital Banking', 'UPI Growth', 'ESG Investing', 'Robo-Advisors'],
    'recommendedSkills': ['Python', 'Machine Learning', 'Blockchain', 'ESG Analysis', 'Data Science'],
}


def insights_json(**overrides) -> str:
    return json.dumps({**VALID_INSIGHTS, **overrides})


class FakeClient:
    """Stands in for GeminiClient: replays scripted responses or raises scripted errors."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def generate(self, prompt, system='', json_mode=False, **kwargs):
        self.calls.append({'prompt': prompt, 'system': system, 'json_mode': json_mode, **kwargs})
        if not self.responses:
            raise AssertionError('Unexpected generate() call')
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class SleepRecorder:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def refresher(fake_client, sleeper):
    return InsightRefresher(fake_client, InsightStore(), sleep=sleeper)


@pytest.fixture
def app(fake_client, refresher):
    """Create test application"""
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'ADMIN_TOKEN': 'admin-token',
        'LLM_CLIENT': fake_client,
        'INSIGHT_REFRESHER': refresher,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture
def user(app):
    user = User(google_id='google-123', email='asha@example.com', name='Asha Rao')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def onboarded_user(user):
    user.industry = 'finance'
    user.sub_industry = 'Banking'
    user.experience = 4
    user.set_skills(['Excel', 'SQL'])
    db.session.commit()
    return user


def sign_in(client, user):
    with client.session_transaction() as sess:
        sess['user_id'] = user.id
