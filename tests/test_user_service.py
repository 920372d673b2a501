"""Tests for onboarding validation and the profile → insights hand-off."""
import pytest

from conftest import insights_json
from models import db
from user_service import (ProfileIncomplete, ValidationError, get_dashboard_insights,
                          get_onboarding_status, industry_key, parse_onboarding, update_user)

VALID_FORM = {
    'industry': 'tech',
    'sub_industry': 'Software Development',
    'experience': '5',
    'bio': 'Backend engineer.',
    'skills': 'Python, SQL, python',
}


def test_industry_key_slugifies_sub_industry():
    assert industry_key('tech', 'Software Development') == 'tech-software-development'
    assert industry_key('finance', '  Investment   Banking ') == 'finance-investment-banking'
    assert industry_key('finance') == 'finance'


class TestParseOnboarding:

    def test_valid_form(self):
        form = parse_onboarding(VALID_FORM)
        assert form['experience'] == 5
        assert form['skills'] == ['Python', 'SQL']

    def test_camel_case_sub_industry_accepted(self):
        data = {**VALID_FORM, 'sub_industry': None, 'subIndustry': 'Data Science'}
        assert parse_onboarding(data)['sub_industry'] == 'Data Science'

    def test_missing_required_fields(self):
        with pytest.raises(ValidationError) as exc:
            parse_onboarding({'experience': 2})
        assert set(exc.value.errors) == {'industry', 'sub_industry'}

    @pytest.mark.parametrize('experience', ['-1', '51', 'lots', None])
    def test_experience_out_of_range(self, experience):
        with pytest.raises(ValidationError) as exc:
            parse_onboarding({**VALID_FORM, 'experience': experience})
        assert 'experience' in exc.value.errors

    def test_experience_bounds_inclusive(self):
        assert parse_onboarding({**VALID_FORM, 'experience': 0})['experience'] == 0
        assert parse_onboarding({**VALID_FORM, 'experience': 50})['experience'] == 50

    def test_bio_too_long(self):
        with pytest.raises(ValidationError) as exc:
            parse_onboarding({**VALID_FORM, 'bio': 'x' * 501})
        assert 'bio' in exc.value.errors


class TestUpdateUser:

    def test_onboarding_generates_insights_for_composite_key(self, user, fake_client, refresher):
        fake_client.queue(insights_json())

        result = update_user(user, VALID_FORM, refresher)

        assert result['success'] is True
        assert result['insight']['source'] == 'fresh'
        assert user.industry == 'tech-software-development'
        assert user.get_skills() == ['Python', 'SQL']
        assert refresher.store.find('tech-software-development') is not None
        assert 'focus on Software Development' in fake_client.calls[0]['prompt']

    def test_generation_failure_does_not_block_profile(self, user, fake_client, refresher):
        fake_client.queue(Exception('API key not valid'))

        result = update_user(user, VALID_FORM, refresher)

        assert result['success'] is True
        assert result['insight'] is None
        db.session.expire_all()
        assert user.industry == 'tech-software-development'
        assert user.experience == 5

    def test_invalid_form_changes_nothing(self, user, fake_client, refresher):
        with pytest.raises(ValidationError):
            update_user(user, {'industry': 'tech'}, refresher)
        assert user.industry is None
        assert fake_client.calls == []


def test_onboarding_status(user):
    assert get_onboarding_status(user) == {'is_onboarded': False}
    user.industry = 'finance'
    assert get_onboarding_status(user) == {'is_onboarded': True}


def test_dashboard_requires_industry(user, refresher):
    with pytest.raises(ProfileIncomplete):
        get_dashboard_insights(user, refresher)


def test_dashboard_reads_users_industry(onboarded_user, fake_client, refresher):
    fake_client.queue(insights_json())

    result = get_dashboard_insights(onboarded_user, refresher)

    assert result['insight']['industry'] == 'finance'
    assert 'Excel, SQL' in fake_client.calls[0]['prompt']
