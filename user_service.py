"""Onboarding form validation and the user → industry insights hand-off."""

import logging
import re

from insight_service import GenerationUnavailable, clean_skills
from models import User, db

logger = logging.getLogger(__name__)

MAX_BIO_CHARS = 500
MIN_EXPERIENCE = 0
MAX_EXPERIENCE = 50


class ValidationError(ValueError):
    """Bad user input; ``errors`` maps field name → message."""

    def __init__(self, errors: dict):
        super().__init__('; '.join(f'{k}: {v}' for k, v in errors.items()))
        self.errors = errors


class ProfileIncomplete(Exception):
    """The user has not chosen an industry yet (send them to onboarding)."""


def industry_key(industry: str, sub_industry: str = None) -> str:
    """'tech' + 'Software Development' → 'tech-software-development'."""
    industry = industry.strip()
    if not sub_industry:
        return industry
    slug = re.sub(r'\s+', '-', sub_industry.strip().lower())
    return f'{industry}-{slug}'


def parse_onboarding(data: dict) -> dict:
    """Validate onboarding form data. Raises ValidationError."""
    errors = {}

    industry = str(data.get('industry') or '').strip()
    if not industry:
        errors['industry'] = 'Please select an Industry'

    sub_industry = str(data.get('sub_industry') or data.get('subIndustry') or '').strip()
    if not sub_industry:
        errors['sub_industry'] = 'Please select a Sub-Industry'

    bio = str(data.get('bio') or '').strip()
    if len(bio) > MAX_BIO_CHARS:
        errors['bio'] = f'Bio must be at most {MAX_BIO_CHARS} characters'

    experience = None
    try:
        experience = int(str(data.get('experience', '')).strip())
    except (TypeError, ValueError):
        errors['experience'] = 'Experience must be a whole number of years'
    else:
        if experience < MIN_EXPERIENCE:
            errors['experience'] = f'Experience must be at least {MIN_EXPERIENCE} years'
        elif experience > MAX_EXPERIENCE:
            errors['experience'] = f'Experience cannot exceed {MAX_EXPERIENCE} years'

    if errors:
        raise ValidationError(errors)

    return {
        'industry': industry,
        'sub_industry': sub_industry,
        'bio': bio,
        'experience': experience,
        'skills': clean_skills(data.get('skills')),
    }


def update_user(user: User, data: dict, refresher) -> dict:
    """Save onboarding data and make sure insights exist for the new industry.

    A generation failure does not block the profile update; the dashboard
    will retry on its next load.
    """
    form = parse_onboarding(data)
    key = industry_key(form['industry'], form['sub_industry'])

    insight = None
    try:
        insight = refresher.get_insights(key, form['sub_industry'], form['skills'])
    except GenerationUnavailable as e:
        logger.warning('Insights for %s unavailable during onboarding: %s', key, e)

    user.industry = key
    user.sub_industry = form['sub_industry']
    user.experience = form['experience']
    user.bio = form['bio']
    user.set_skills(form['skills'])
    db.session.commit()
    logger.info('User %s onboarded into %s', user.id, key)

    return {'success': True, 'user': user.to_dict(), 'insight': insight}


def get_onboarding_status(user: User) -> dict:
    return {'is_onboarded': bool(user.industry)}


def get_dashboard_insights(user: User, refresher) -> dict:
    if not user.industry:
        raise ProfileIncomplete('Complete onboarding to see industry insights')
    return refresher.get_insights(user.industry, user.sub_industry, user.get_skills())
