"""HTTP routes — JSON endpoints for auth, onboarding, insights, resume, cover letters, quiz."""

import logging

from flask import Blueprint, current_app, jsonify, redirect, request, session, url_for

from auth import Unauthenticated, get_or_create_user, oauth, require_user
from cover_letter_service import (NotFound, delete_cover_letter, generate_cover_letter,
                                  get_cover_letter, list_cover_letters, save_cover_letter)
from insight_service import (GenerationUnavailable, placeholder_insights,
                             serialize_result)
from interview_service import (assessment_stats, generate_quiz, get_assessments,
                               save_quiz_result)
from resume_service import build_resume_markdown, get_resume, improve_with_ai, save_resume
from user_service import (ProfileIncomplete, ValidationError, get_dashboard_insights,
                          get_onboarding_status, update_user)

logger = logging.getLogger(__name__)

bp = Blueprint('main', __name__)


def _llm_client():
    return current_app.extensions.get('llm_client')


def _refresher():
    return current_app.extensions['insight_refresher']


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _check_admin():
    token = request.args.get('token', '')
    if token != current_app.config['ADMIN_TOKEN']:
        raise Unauthenticated('Unauthorized')


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@bp.app_errorhandler(Unauthenticated)
def _unauthenticated(e):
    return jsonify({'error': str(e) or 'Unauthorized', 'code': 'unauthenticated',
                    'redirect': url_for('main.login_page')}), 401


@bp.app_errorhandler(ProfileIncomplete)
def _profile_incomplete(e):
    return jsonify({'error': str(e), 'code': 'profile_incomplete',
                    'redirect': '/onboarding'}), 409


@bp.app_errorhandler(ValidationError)
def _validation_error(e):
    return jsonify({'error': 'Invalid input', 'code': 'validation_error',
                    'fields': e.errors}), 400


@bp.app_errorhandler(NotFound)
def _not_found(e):
    return jsonify({'error': str(e), 'code': 'not_found'}), 404


@bp.app_errorhandler(GenerationUnavailable)
def _generation_unavailable(e):
    logger.warning('Generation unavailable: %s', e)
    return jsonify({'error': 'Temporarily unable to generate this content. Please try again later.',
                    'detail': str(e)[:200], 'code': 'generation_unavailable'}), 503


# ---------------------------------------------------------------------------
# Basics & auth
# ---------------------------------------------------------------------------

@bp.route('/')
def index():
    return jsonify({'service': 'career-coach', 'signed_in': bool(session.get('user_id'))})


@bp.route('/health')
def health():
    return jsonify({'status': 'ok', 'llm_configured': _llm_client() is not None})


@bp.route('/login')
def login_page():
    if not current_app.config['OAUTH_ENABLED']:
        return jsonify({'error': 'Sign-in is not configured yet.'}), 503
    return redirect(url_for('main.google_login'))


@bp.route('/auth/google')
def google_login():
    if not current_app.config['OAUTH_ENABLED']:
        return redirect(url_for('main.index'))
    redirect_uri = url_for('main.google_callback', _external=True)
    logger.info('OAuth redirect_uri: %s', redirect_uri)
    return oauth.google.authorize_redirect(redirect_uri)


@bp.route('/auth/callback')
def google_callback():
    if not current_app.config['OAUTH_ENABLED']:
        return redirect(url_for('main.index'))
    try:
        token = oauth.google.authorize_access_token()
        userinfo = token.get('userinfo') or oauth.google.userinfo()
        logger.info('OAuth userinfo: email=%s', userinfo.get('email', 'unknown'))
        user = get_or_create_user(userinfo)
        session['user_id'] = user.id
    except Exception as e:
        logger.error('OAuth callback error: %s', e, exc_info=True)
        return jsonify({'error': 'Sign-in failed. Please try again.'}), 400
    # Onboarded users go to the dashboard, everyone else to onboarding.
    return redirect('/dashboard' if user.industry else '/onboarding')


@bp.route('/logout')
def logout():
    session.clear()
    return redirect(url_for('main.index'))


# ---------------------------------------------------------------------------
# Onboarding & insights
# ---------------------------------------------------------------------------

@bp.route('/api/onboarding-status')
def onboarding_status():
    return jsonify(get_onboarding_status(require_user()))


@bp.route('/api/onboarding', methods=['POST'])
def onboarding():
    user = require_user()
    result = update_user(user, _json_body(), _refresher())
    if result['insight'] is not None:
        result['insight'] = serialize_result(result['insight'])
    return jsonify(result)


@bp.route('/api/insights')
def insights():
    user = require_user()
    return jsonify(serialize_result(get_dashboard_insights(user, _refresher())))


@bp.route('/api/insights/placeholder')
def insights_placeholder():
    if not current_app.config['INSIGHTS_ALLOW_PLACEHOLDER']:
        return jsonify({'error': 'Not found', 'code': 'not_found'}), 404
    require_user()
    label = request.args.get('industry', 'general')
    return jsonify(serialize_result(placeholder_insights(label)))


# ---------------------------------------------------------------------------
# Resume
# ---------------------------------------------------------------------------

@bp.route('/api/resume', methods=['GET'])
def resume_get():
    resume = get_resume(require_user())
    return jsonify({'resume': resume.to_dict() if resume else None})


@bp.route('/api/resume', methods=['POST'])
def resume_save():
    user = require_user()
    resume = save_resume(user, _json_body().get('content'))
    return jsonify({'resume': resume.to_dict()})


@bp.route('/api/resume/markdown', methods=['POST'])
def resume_markdown():
    require_user()
    return jsonify({'markdown': build_resume_markdown(_json_body())})


@bp.route('/api/resume/improve', methods=['POST'])
def resume_improve():
    user = require_user()
    data = _json_body()
    improved = improve_with_ai(_llm_client(), user, data.get('current'), data.get('type'))
    return jsonify({'improved': improved})


# ---------------------------------------------------------------------------
# Cover letters
# ---------------------------------------------------------------------------

@bp.route('/api/cover-letters/generate', methods=['POST'])
def cover_letter_generate():
    user = require_user()
    data = _json_body()
    letter = generate_cover_letter(
        _llm_client(), user,
        data.get('company_name'), data.get('job_title'), data.get('job_description'),
        data.get('contact_info'),
    )
    return jsonify({'content': letter})


@bp.route('/api/cover-letters', methods=['GET'])
def cover_letters_list():
    letters = list_cover_letters(require_user())
    return jsonify({'cover_letters': [c.to_dict() for c in letters]})


@bp.route('/api/cover-letters', methods=['POST'])
def cover_letters_save():
    user = require_user()
    data = _json_body()
    letter = save_cover_letter(user, data.get('company_name'), data.get('job_title'),
                               data.get('job_description'), data.get('content'))
    return jsonify({'cover_letter': letter.to_dict()}), 201


@bp.route('/api/cover-letters/<int:letter_id>', methods=['GET'])
def cover_letter_get(letter_id):
    return jsonify({'cover_letter': get_cover_letter(require_user(), letter_id).to_dict()})


@bp.route('/api/cover-letters/<int:letter_id>', methods=['DELETE'])
def cover_letter_delete(letter_id):
    delete_cover_letter(require_user(), letter_id)
    return jsonify({'success': True})


# ---------------------------------------------------------------------------
# Interview quiz
# ---------------------------------------------------------------------------

@bp.route('/api/interview/quiz', methods=['POST'])
def interview_quiz():
    user = require_user()
    return jsonify({'questions': generate_quiz(_llm_client(), user)})


@bp.route('/api/interview/results', methods=['POST'])
def interview_results():
    user = require_user()
    data = _json_body()
    assessment = save_quiz_result(_llm_client(), user, data.get('questions'),
                                  data.get('answers'), data.get('score'))
    return jsonify({'assessment': assessment.to_dict()}), 201


@bp.route('/api/interview/assessments')
def interview_assessments():
    assessments = get_assessments(require_user())
    return jsonify({
        'assessments': [a.to_dict() for a in assessments],
        'stats': assessment_stats(assessments),
    })


# ---------------------------------------------------------------------------
# Admin (ADMIN_TOKEN)
# ---------------------------------------------------------------------------

@bp.route('/admin/insights/<industry>/refresh', methods=['POST'])
def admin_refresh_insight(industry):
    _check_admin()
    return jsonify(serialize_result(_refresher().refresh(industry)))


@bp.route('/admin/insights/<industry>', methods=['DELETE'])
def admin_delete_insight(industry):
    _check_admin()
    return jsonify({'deleted': _refresher().delete(industry)})


@bp.route('/admin/insights', methods=['DELETE'])
def admin_clear_insights():
    _check_admin()
    return jsonify({'deleted': _refresher().clear_all()})


@bp.route('/admin/usage')
def admin_usage():
    _check_admin()
    tracker = getattr(_llm_client(), 'tracker', None)
    return jsonify(tracker.summary() if tracker else {'total_calls': 0, 'total_cost_usd': 0.0,
                                                      'by_task': {}})
