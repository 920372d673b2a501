"""Resume builder: Markdown assembly, storage and AI rewrites of single entries."""

import logging
from datetime import datetime

from llm_service import GenerationUnavailable, friendly_error_message
from models import Resume, User, db
from token_budget import TASK_BUDGETS, truncate_input
from user_service import ValidationError

logger = logging.getLogger(__name__)

RESUME_SECTIONS = (
    ('experience', 'Work Experience'),
    ('education', 'Education'),
    ('projects', 'Projects'),
)


def save_resume(user: User, content: str) -> Resume:
    """Create or replace the user's resume."""
    if not isinstance(content, str) or not content.strip():
        raise ValidationError({'content': 'Resume content is required'})

    resume = Resume.query.filter_by(user_id=user.id).first()
    if resume is None:
        resume = Resume(user_id=user.id, content=content)
        db.session.add(resume)
    else:
        resume.content = content
        resume.updated_at = datetime.utcnow()
    db.session.commit()
    logger.info('Saved resume for user %s (%d chars)', user.id, len(content))
    return resume


def get_resume(user: User) -> Resume | None:
    return Resume.query.filter_by(user_id=user.id).first()


# ---------------------------------------------------------------------------
# Markdown assembly
# ---------------------------------------------------------------------------

def _validate_entry(entry: dict, section: str, index: int, errors: dict):
    for field in ('title', 'organization', 'start_date', 'description'):
        if not str(entry.get(field) or '').strip():
            errors[f'{section}[{index}].{field}'] = f'{field.replace("_", " ").capitalize()} is required'
    if not entry.get('current') and not str(entry.get('end_date') or '').strip():
        errors[f'{section}[{index}].end_date'] = 'End date is required if not currently working'


def _entries_to_markdown(entries: list, title: str) -> str:
    if not entries:
        return ''
    lines = []
    for item in entries:
        start = item.get('start_date', '')
        if item.get('current'):
            date_range = f'{start} - Present'
        else:
            date_range = f'{start} - {item["end_date"]}' if item.get('end_date') else start
        header = ' @ '.join(p for p in (item.get('title'), item.get('organization')) if p)
        description = f'\n\n{item["description"]}' if item.get('description') else ''
        lines.append(f'- {header}{f" ({date_range})" if date_range else ""}{description}')
    return '\n'.join([f'## {title}', '', *lines])


def _contact_markdown(contact: dict) -> str:
    parts = []
    if contact.get('email'):
        parts.append(f'✉️ {contact["email"]}')
    if contact.get('mobile'):
        parts.append(f'📱 {contact["mobile"]}')
    if contact.get('linkedin'):
        parts.append(f'💼 [LinkedIn]({contact["linkedin"]})')
    if contact.get('twitter'):
        parts.append(f'🐦 [Twitter]({contact["twitter"]})')
    name = contact.get('name') or (contact['email'].split('@')[0] if contact.get('email') else '')
    blocks = []
    if name:
        blocks.append(f'## <div align="center">{name}</div>')
    if parts:
        blocks.append(f'<div align="center">\n\n{" | ".join(parts)}\n\n</div>')
    return '\n\n'.join(blocks)


def build_resume_markdown(data: dict) -> str:
    """Assemble resume Markdown from structured form data.

    Expects ``contact``, ``summary``, ``skills`` and lists of entries under
    ``experience``, ``education`` and ``projects``. Raises ValidationError.
    """
    errors = {}
    contact = data.get('contact') or {}
    if not str(contact.get('email') or '').strip():
        errors['contact.email'] = 'Email is required'
    if not str(data.get('summary') or '').strip():
        errors['summary'] = 'Professional Summary is required'
    if not str(data.get('skills') or '').strip():
        errors['skills'] = 'Skills are required'
    for key, _ in RESUME_SECTIONS:
        for i, entry in enumerate(data.get(key) or []):
            _validate_entry(entry, key, i, errors)
    if errors:
        raise ValidationError(errors)

    blocks = [
        _contact_markdown(contact),
        f'## Professional Summary\n\n{data["summary"].strip()}',
        f'## Skills\n\n{data["skills"].strip()}',
    ]
    blocks += [_entries_to_markdown(data.get(key) or [], title) for key, title in RESUME_SECTIONS]
    return '\n\n'.join(b for b in blocks if b)


# ---------------------------------------------------------------------------
# AI improvement
# ---------------------------------------------------------------------------

def improve_with_ai(client, user: User, current: str, kind: str) -> str:
    """Rewrite one resume entry description for the user's industry."""
    if not str(current or '').strip():
        raise ValidationError({'current': 'Content to improve is required'})
    if client is None:
        raise GenerationUnavailable('AI service is not configured. Please check your API keys.')

    industry = (user.industry or 'professional').replace('-', ' ')
    prompt = f"""
    As an expert resume writer, improve the following {kind or 'experience'} description for a {industry} professional.
    Make it more impactful, quantifiable, and aligned with industry standards.
    Current content: "{truncate_input(current, 'resume_section')}"

    Requirements:
    1. Use action verbs
    2. Include metrics and results where possible
    3. Highlight relevant technical skills
    4. Keep it concise but detailed
    5. Focus on achievements over responsibilities
    6. Use industry-specific keywords

    Format the response as a single paragraph without any additional text or explanations.
    """
    budget = TASK_BUDGETS['resume_improve']
    try:
        improved = client.generate(prompt, max_tokens=budget['max_tokens'],
                                   temperature=budget['temperature'],
                                   timeout=budget['timeout'], task='resume_improve')
    except Exception as e:
        logger.error('Error improving resume content: %s', e)
        raise GenerationUnavailable(friendly_error_message(e)) from e

    improved = (improved or '').strip()
    if not improved:
        raise GenerationUnavailable('AI service returned an empty response. Please try again.')
    return improved
