"""Industry insight cache — serve, regenerate, and fall back.

Policy for one industry key:
  1. A stored record younger than the freshness window is served as-is.
  2. Otherwise the model is asked for a new one (with retry); success is
     written back and served.
  3. If generation is exhausted, a stale record is served rather than nothing.
     With no record at all, GenerationUnavailable propagates. Data for some
     other industry is never substituted.

The store is best-effort: read failures count as a miss, write failures are
logged and the freshly generated record is still returned.
"""

import json
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from llm_service import GenerationUnavailable, call_with_retry, parse_json_response
from models import IndustryInsight, db
from token_budget import TASK_BUDGETS, get_date_context

logger = logging.getLogger(__name__)

FRESHNESS_WINDOW = timedelta(days=7)
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_TIMEOUT = TASK_BUDGETS['insights']['timeout']
DEFAULT_BACKOFF_MS = 1000
DEFAULT_GROWTH_RATE = 15.0

DEMAND_LEVELS = ('HIGH', 'MEDIUM', 'LOW')
MARKET_OUTLOOKS = ('POSITIVE', 'NEUTRAL', 'NEGATIVE')
DEFAULT_DEMAND_LEVEL = 'MEDIUM'
DEFAULT_MARKET_OUTLOOK = 'NEUTRAL'

PLACEHOLDER_ITEM = 'Not available'
PLACEHOLDER_SALARY = {'role': PLACEHOLDER_ITEM, 'min': 0, 'max': 0, 'median': 0,
                      'location': 'Not specified'}

SOURCE_FRESH = 'fresh'
SOURCE_CACHED = 'cached'
SOURCE_EXPIRED = 'expired'
SOURCE_PLACEHOLDER = 'placeholder'

_LIST_FIELDS = ('top_skills', 'key_trends', 'recommended_skills')

__all__ = [
    'GenerationUnavailable', 'PersistenceUnavailable', 'InsightStore',
    'InsightRefresher', 'normalize_insights', 'placeholder_insights',
    'build_insights_prompt', 'clean_skills', 'serialize_result',
]


class PersistenceUnavailable(RuntimeError):
    """The insight store could not be reached."""


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class InsightStore:
    """IndustryInsight rows keyed by industry, behind a narrow interface."""

    def find(self, industry: str) -> dict | None:
        try:
            row = db.session.get(IndustryInsight, industry)
            return row.to_dict() if row else None
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceUnavailable(str(e)) from e

    def upsert(self, industry: str, payload: dict, last_updated: datetime,
               next_update: datetime) -> None:
        """Create or overwrite the row for industry in one statement."""
        values = {
            'industry': industry,
            'salary_ranges': json.dumps(payload['salary_ranges']),
            'growth_rate': payload['growth_rate'],
            'demand_level': payload['demand_level'],
            'top_skills': json.dumps(payload['top_skills']),
            'market_outlook': payload['market_outlook'],
            'key_trends': json.dumps(payload['key_trends']),
            'recommended_skills': json.dumps(payload['recommended_skills']),
            'last_updated': last_updated,
            'next_update': next_update,
        }
        try:
            dialect = db.session.get_bind().dialect.name
            if dialect in ('sqlite', 'postgresql'):
                insert = sqlite.insert if dialect == 'sqlite' else postgresql.insert
                stmt = insert(IndustryInsight).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=['industry'],
                    set_={k: stmt.excluded[k] for k in values if k != 'industry'},
                )
                db.session.execute(stmt)
            else:
                db.session.merge(IndustryInsight(**values))
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceUnavailable(str(e)) from e

    def delete(self, industry: str) -> int:
        try:
            count = IndustryInsight.query.filter_by(industry=industry).delete()
            db.session.commit()
            return count
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceUnavailable(str(e)) from e

    def delete_all(self) -> int:
        try:
            count = IndustryInsight.query.delete()
            db.session.commit()
            return count
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceUnavailable(str(e)) from e

    def list_keys(self) -> list:
        try:
            rows = db.session.query(IndustryInsight.industry).order_by(IndustryInsight.industry).all()
            return [r[0] for r in rows]
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceUnavailable(str(e)) from e


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

_INSIGHTS_SYSTEM = """You are a labour-market analyst JSON API. Return ONLY one valid JSON object.
{date_context}
json.loads() must succeed on your output. No markdown, no notes, no text outside the JSON."""

_INSIGHTS_SCHEMA = """{
    "salaryRange": [
        {"role": "string", "min": number, "max": number, "median": number, "location": "string"}
    ],
    "growthRate": number,
    "demandLevel": "HIGH" | "MEDIUM" | "LOW",
    "topSkills": ["skill1", "skill2"],
    "marketOutlook": "POSITIVE" | "NEUTRAL" | "NEGATIVE",
    "keyTrends": ["trend1", "trend2"],
    "recommendedSkills": ["skill1", "skill2"]
}"""


def clean_skills(skills) -> list:
    """Trim, drop empties, and de-duplicate (case-insensitive, first spelling wins)."""
    if not skills:
        return []
    if isinstance(skills, str):
        skills = skills.split(',')
    seen = set()
    result = []
    for s in skills:
        s = str(s or '').strip()
        if s and s.lower() not in seen:
            seen.add(s.lower())
            result.append(s)
    return result


def build_insights_prompt(industry: str, sub_industry: str = None,
                          user_skills: list = None) -> str:
    label = industry.replace('-', ' ')
    focus = f', with a focus on {sub_industry}' if sub_industry else ''
    skills_rule = ''
    if user_skills:
        skills_rule = (
            f'\n    - The professional already has these skills: {", ".join(user_skills)}. '
            'recommendedSkills must complement them, not repeat them.'
        )
    return f"""
    Analyze the current state of the {label} industry{focus} in India and provide insights in only the following JSON format without any additional notes or explanations:
    {_INSIGHTS_SCHEMA}
    IMPORTANT: Return ONLY the JSON object, no other text, notes, markdown comments, or formatting.
    - Include at least 5 common roles for salary ranges.
    - Salary amounts must be annual figures in Indian Rupees (INR), written as plain integers (e.g. 800000 for 8 Lakhs).
    - Growth rate should be a percentage number (e.g. 15 for 15%).
    - demandLevel must be exactly one of HIGH, MEDIUM, LOW. marketOutlook must be exactly one of POSITIVE, NEUTRAL, NEGATIVE.
    - Include at least 5 top skills, at least 5 key trends and at least 5 recommended skills.
    - Location should be Indian cities like "Bangalore", "Mumbai", "Delhi", "Hyderabad", "Pune", or "Remote".{skills_rule}
    """


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

def _to_int(val) -> int:
    if isinstance(val, bool):
        return 0
    if isinstance(val, str):
        val = val.replace(',', '').strip()
    try:
        return int(round(float(val)))
    except (TypeError, ValueError, OverflowError):
        return 0


def _to_growth_rate(val) -> float:
    if isinstance(val, bool):
        return DEFAULT_GROWTH_RATE
    if isinstance(val, str):
        val = val.strip().rstrip('%').strip()
    try:
        rate = float(val)
    except (TypeError, ValueError):
        return DEFAULT_GROWTH_RATE
    if rate != rate or rate in (float('inf'), float('-inf')):
        return DEFAULT_GROWTH_RATE
    return rate


def _to_enum(val, allowed: tuple, default: str) -> str:
    text = str(val or '').strip().upper()
    return text if text in allowed else default


def _to_str_list(val) -> list:
    if not isinstance(val, list):
        return []
    return [str(v).strip() for v in val if v and str(v).strip()]


def _to_salary_ranges(val) -> list:
    if not isinstance(val, list):
        return []
    ranges = []
    for entry in val:
        if not isinstance(entry, dict):
            continue
        role = str(entry.get('role') or '').strip()
        if not role:
            continue
        ranges.append({
            'role': role,
            'min': _to_int(entry.get('min')),
            'max': _to_int(entry.get('max')),
            'median': _to_int(entry.get('median')),
            'location': str(entry.get('location') or '').strip() or PLACEHOLDER_SALARY['location'],
        })
    return ranges


def normalize_insights(data: dict) -> dict:
    """Coerce a parsed model response into a storable insight payload.

    Every list comes back non-empty; enums outside the allowed set fall
    back to MEDIUM / NEUTRAL; a non-numeric growth rate becomes 15.0.
    """
    payload = {
        'salary_ranges': _to_salary_ranges(data.get('salaryRange')) or [dict(PLACEHOLDER_SALARY)],
        'growth_rate': _to_growth_rate(data.get('growthRate')),
        'demand_level': _to_enum(data.get('demandLevel'), DEMAND_LEVELS, DEFAULT_DEMAND_LEVEL),
        'top_skills': _to_str_list(data.get('topSkills')),
        'market_outlook': _to_enum(data.get('marketOutlook'), MARKET_OUTLOOKS, DEFAULT_MARKET_OUTLOOK),
        'key_trends': _to_str_list(data.get('keyTrends')),
        'recommended_skills': _to_str_list(data.get('recommendedSkills')),
    }
    for field in _LIST_FIELDS:
        if not payload[field]:
            payload[field] = [PLACEHOLDER_ITEM]
    return payload


# ---------------------------------------------------------------------------
# Placeholder (explicit opt-in only)
# ---------------------------------------------------------------------------

def placeholder_insights(industry_label: str = 'general') -> dict:
    """Generic, clearly-tagged record for debug paths. Never stored."""
    return {
        'insight': {
            'industry': industry_label,
            'salary_ranges': [
                {'role': 'Entry-level Professional', 'min': 300000, 'max': 800000,
                 'median': 500000, 'location': 'Remote'},
                {'role': 'Mid-level Professional', 'min': 800000, 'max': 1500000,
                 'median': 1100000, 'location': 'Remote'},
                {'role': 'Senior Professional', 'min': 1500000, 'max': 3000000,
                 'median': 2200000, 'location': 'Remote'},
            ],
            'growth_rate': DEFAULT_GROWTH_RATE,
            'demand_level': DEFAULT_DEMAND_LEVEL,
            'top_skills': ['Communication', 'Problem Solving', 'Teamwork',
                           'Data Literacy', 'Project Management'],
            'market_outlook': DEFAULT_MARKET_OUTLOOK,
            'key_trends': ['Remote Work', 'AI Adoption', 'Automation',
                           'Upskilling', 'Digital Transformation'],
            'recommended_skills': ['Data Analysis', 'AI Tools', 'Cloud Fundamentals',
                                   'Stakeholder Management', 'Technical Writing'],
            'last_updated': datetime.utcnow(),
            'next_update': None,
        },
        'source': SOURCE_PLACEHOLDER,
        'is_placeholder': True,
    }


def serialize_result(result: dict) -> dict:
    """JSON-ready copy of a get_insights result (datetimes as ISO strings)."""
    insight = dict(result['insight'])
    for key in ('last_updated', 'next_update'):
        if isinstance(insight.get(key), datetime):
            insight[key] = insight[key].isoformat()
    return {**result, 'insight': insight}


def _result(record: dict, source: str) -> dict:
    return {'insight': record, 'source': source, 'is_placeholder': False}


# ---------------------------------------------------------------------------
# Refresher
# ---------------------------------------------------------------------------

class InsightRefresher:
    """Serves industry insights from the store, regenerating when stale."""

    def __init__(self, client, store: InsightStore = None,
                 freshness_window: timedelta = FRESHNESS_WINDOW,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 timeout: float = DEFAULT_TIMEOUT,
                 backoff_ms: int = DEFAULT_BACKOFF_MS,
                 sleep=time.sleep, clock=datetime.utcnow):
        self.client = client
        self.store = store or InsightStore()
        self.freshness_window = freshness_window
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.backoff_ms = backoff_ms
        self._sleep = sleep
        self._clock = clock
        # industry -> [lock, holders]; an entry lives only while someone holds or waits on it
        self._locks = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _lock_for(self, industry: str):
        with self._locks_guard:
            entry = self._locks.setdefault(industry, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[industry]

    def is_fresh(self, record: dict) -> bool:
        last_updated = record.get('last_updated')
        if not last_updated:
            return False
        return self._clock() - last_updated < self.freshness_window

    def _read(self, industry: str) -> dict | None:
        try:
            return self.store.find(industry)
        except PersistenceUnavailable as e:
            logger.warning('Could not read cached insights for %s, treating as miss: %s',
                           industry, e)
            return None

    def _persist(self, industry: str, payload: dict) -> dict:
        now = self._clock()
        next_update = now + self.freshness_window
        record = {'industry': industry, **payload,
                  'last_updated': now, 'next_update': next_update}
        try:
            self.store.upsert(industry, payload, now, next_update)
        except PersistenceUnavailable as e:
            logger.warning('Saving insights for %s failed (non-critical): %s', industry, e)
        return record

    def generate(self, industry: str, sub_industry: str = None,
                 user_skills: list = None) -> dict:
        """Ask the model for a new payload; raises GenerationUnavailable."""
        if self.client is None:
            raise GenerationUnavailable('AI service is not configured. Please check your API keys.')

        budget = TASK_BUDGETS['insights']
        prompt = build_insights_prompt(industry, sub_industry, user_skills)
        system = _INSIGHTS_SYSTEM.format(date_context=get_date_context())

        def attempt(n):
            logger.info('Generating insights for %s (attempt %d/%d)',
                        industry, n, self.max_attempts)
            raw = self.client.generate(prompt, system=system, json_mode=True,
                                       max_tokens=budget['max_tokens'],
                                       temperature=budget['temperature'],
                                       timeout=self.timeout, task='insights')
            return normalize_insights(parse_json_response(raw))

        return call_with_retry(attempt, max_attempts=self.max_attempts,
                               backoff_ms=self.backoff_ms, sleep=self._sleep,
                               label=f'insights:{industry}')

    def get_insights(self, industry: str, sub_industry: str = None,
                     user_skills: list = None) -> dict:
        """Best-effort insight record for industry, tagged with its source."""
        industry = (industry or '').strip()
        if not industry:
            raise ValueError('industry is required')
        skills = clean_skills(user_skills)

        cached = self._read(industry)
        if cached and self.is_fresh(cached):
            logger.info('Using cached insights for %s (updated %s)',
                        industry, cached['last_updated'])
            return _result(cached, SOURCE_CACHED)

        with self._lock_for(industry):
            # A concurrent request may have refreshed the row while we waited.
            latest = self._read(industry)
            if latest and self.is_fresh(latest):
                return _result(latest, SOURCE_CACHED)
            cached = latest or cached

            if cached:
                logger.info('Cached insights for %s expired, regenerating', industry)
            else:
                logger.info('No cached insights for %s, generating', industry)

            try:
                payload = self.generate(industry, sub_industry, skills)
            except GenerationUnavailable as e:
                if cached:
                    logger.warning('Generation failed for %s, serving expired cache from %s: %s',
                                   industry, cached['last_updated'], e)
                    return _result(cached, SOURCE_EXPIRED)
                logger.error('Generation failed for %s and nothing is cached: %s', industry, e)
                raise

            return _result(self._persist(industry, payload), SOURCE_FRESH)

    def refresh(self, industry: str, sub_industry: str = None,
                user_skills: list = None) -> dict:
        """Regenerate and store regardless of freshness."""
        with self._lock_for(industry):
            payload = self.generate(industry, sub_industry, clean_skills(user_skills))
            return _result(self._persist(industry, payload), SOURCE_FRESH)

    def delete(self, industry: str) -> int:
        count = self.store.delete(industry)
        logger.info('Deleted %d insight record(s) for %s', count, industry)
        return count

    def clear_all(self) -> int:
        count = self.store.delete_all()
        logger.info('Cleared %d industry insight record(s)', count)
        return count
