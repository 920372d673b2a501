"""Cover letter generation and storage."""

import logging
from datetime import datetime

from llm_service import GenerationUnavailable, friendly_error_message
from models import CoverLetter, User, db
from token_budget import TASK_BUDGETS, truncate_input
from user_service import ValidationError

logger = logging.getLogger(__name__)

_CONTACT_FIELDS = ('full_name', 'location', 'phone', 'email', 'linkedin')


class NotFound(Exception):
    """No such record for this user."""


def _contact_lines(contact_info: dict) -> list:
    return [str(contact_info[f]).strip() for f in _CONTACT_FIELDS
            if str(contact_info.get(f) or '').strip()]


def _applicant_background(user: User, contact_info: dict) -> str:
    lines = [
        f'Applicant Name: {contact_info.get("full_name") or user.name or "Professional"}',
        f'Industry: {(user.industry or "Professional").replace("-", " ")}',
    ]
    if user.experience is not None:
        lines.append(f'Experience: {user.experience} years')
    skills = user.get_skills()
    if skills:
        lines.append(f'Key Skills: {", ".join(skills)}')
    if user.bio:
        lines.append(f'Professional Summary: {user.bio}')
    if user.resume and user.resume.content:
        lines.append(f'Resume:\n{truncate_input(user.resume.content, "resume_summary")}')
    return '\n'.join(lines)


def build_cover_letter_prompt(user: User, company_name: str, job_title: str,
                              job_description: str, contact_info: dict,
                              today: str) -> str:
    contact = _contact_lines(contact_info)
    contact_header = ''
    if contact:
        contact_header = ('Contact Information (include these at the top, each on a separate line):\n'
                          + '\n'.join(contact))

    return f"""
Write a professional, compelling cover letter for the following job application:

Company Name: {company_name}
Job Title: {job_title}
Job Description:
{truncate_input(job_description, 'job_description')}

{contact_header}

Applicant Background:
{_applicant_background(user, contact_info)}

Requirements:
1. Start with the sender's contact information at the top, each piece on its own line. Do NOT combine them on one line.
2. Add the current date below the contact information, on its own line. Use this exact date: {today}
3. Add the recipient block below the date: "Hiring Manager" on one line, then "{company_name}" on the next. Do NOT include a company address or any placeholder about one.
4. Address the letter with "Dear Hiring Manager,"
5. Open with a strong hook that demonstrates enthusiasm for the role
6. Show how the candidate's skills and experience align with the job requirements
7. Highlight 2-3 key qualifications that match the job description
8. Express genuine interest in the company and position
9. Close professionally with a call to action
10. Keep it between 250-400 words
11. Use professional, confident language and format it as a proper business letter

Do NOT use any placeholders like [Your Name], [Current Date] or [Company Address]. Use only the information provided.

Generate the cover letter now:
""".strip()


def generate_cover_letter(client, user: User, company_name: str, job_title: str,
                          job_description: str, contact_info: dict = None) -> str:
    """Return the generated letter text. Raises GenerationUnavailable."""
    errors = {}
    if not str(company_name or '').strip():
        errors['company_name'] = 'Company name is required'
    if not str(job_title or '').strip():
        errors['job_title'] = 'Job title is required'
    if not str(job_description or '').strip():
        errors['job_description'] = 'Job description is required'
    if contact_info is not None and not isinstance(contact_info, dict):
        errors['contact_info'] = 'Contact information must be an object'
    if errors:
        raise ValidationError(errors)
    if client is None:
        raise GenerationUnavailable('AI service is not configured. Please contact support.')

    today = datetime.utcnow().strftime('%B %d, %Y').replace(' 0', ' ')
    prompt = build_cover_letter_prompt(user, company_name.strip(), job_title.strip(),
                                       job_description, contact_info or {}, today)
    budget = TASK_BUDGETS['cover_letter']
    try:
        letter = client.generate(prompt, max_tokens=budget['max_tokens'],
                                 temperature=budget['temperature'],
                                 timeout=budget['timeout'], task='cover_letter')
    except Exception as e:
        logger.error('Error generating cover letter: %s', e)
        raise GenerationUnavailable(friendly_error_message(e)) from e

    letter = (letter or '').strip()
    if not letter:
        raise GenerationUnavailable('AI service returned an empty response. Please try again.')
    return letter


def save_cover_letter(user: User, company_name: str, job_title: str,
                      job_description: str, content: str) -> CoverLetter:
    errors = {}
    if not str(company_name or '').strip():
        errors['company_name'] = 'Company name is required'
    if not str(job_title or '').strip():
        errors['job_title'] = 'Job title is required'
    if not str(content or '').strip():
        errors['content'] = 'Cover letter content is required'
    if errors:
        raise ValidationError(errors)

    letter = CoverLetter(user_id=user.id, company_name=company_name.strip(),
                         job_title=job_title.strip(), job_description=job_description or '',
                         content=content)
    db.session.add(letter)
    db.session.commit()
    logger.info('Saved cover letter %s for user %s', letter.id, user.id)
    return letter


def list_cover_letters(user: User) -> list:
    return (CoverLetter.query
            .filter_by(user_id=user.id)
            .order_by(CoverLetter.created_at.desc(), CoverLetter.id.desc())
            .all())


def get_cover_letter(user: User, letter_id: int) -> CoverLetter:
    letter = CoverLetter.query.filter_by(id=letter_id, user_id=user.id).first()
    if letter is None:
        raise NotFound('Cover letter not found')
    return letter


def delete_cover_letter(user: User, letter_id: int) -> None:
    letter = get_cover_letter(user, letter_id)
    db.session.delete(letter)
    db.session.commit()
    logger.info('Deleted cover letter %s for user %s', letter_id, user.id)
