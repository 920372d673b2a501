"""AI Mock Interview Quiz — question generation, scoring, and improvement tips.

Uses Gemini 2.5 Flash to write multiple-choice questions tailored to the
user's industry and skills, then asks for one short coaching tip based on
the questions the user got wrong.
"""

import json
import logging
import time

from llm_service import (GenerationUnavailable, MalformedResponse, call_with_retry,
                         parse_json_response)
from models import Assessment, User, db
from token_budget import TASK_BUDGETS
from user_service import ProfileIncomplete, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_QUESTION_COUNT = 10
OPTIONS_PER_QUESTION = 4


# ---------------------------------------------------------------------------
# Quiz generation
# ---------------------------------------------------------------------------

def build_quiz_prompt(industry: str, skills: list, count: int = DEFAULT_QUESTION_COUNT) -> str:
    expertise = f' with expertise in {", ".join(skills)}' if skills else ''
    return f"""
Generate a list of {count} interview questions for the following job title: {industry.replace('-', ' ')} professionals{expertise}.

Each question should be multiple choice with {OPTIONS_PER_QUESTION} options.
Return the response in the JSON format only without any additional notes or text:
{{
  "questions": [
    {{
      "question": "string",
      "options": ["string", "string", "string", "string"],
      "correctAnswer": "string",
      "explanation": "string"
    }}
  ]
}}
"""


def _normalise_questions(raw) -> list:
    """Keep only well-formed questions whose correct answer is one of the options."""
    if not isinstance(raw, list):
        return []
    questions = []
    for q in raw:
        if not isinstance(q, dict):
            continue
        text = str(q.get('question') or '').strip()
        options = [str(o).strip() for o in q.get('options') or [] if str(o).strip()]
        answer = str(q.get('correctAnswer') or '').strip()
        if not text or len(options) < 2 or answer not in options:
            continue
        questions.append({
            'question': text,
            'options': options,
            'correct_answer': answer,
            'explanation': str(q.get('explanation') or '').strip(),
        })
    return questions


def generate_quiz(client, user: User, count: int = DEFAULT_QUESTION_COUNT,
                  max_attempts: int = 3, sleep=time.sleep) -> list:
    """Generate multiple-choice questions for the user's industry.

    Raises GenerationUnavailable when the model fails or returns no usable
    questions after retries.
    """
    if not user.industry:
        raise ProfileIncomplete('Complete onboarding before taking a quiz')
    if client is None:
        raise GenerationUnavailable('AI service is not configured. Please check your API keys.')

    budget = TASK_BUDGETS['quiz']
    prompt = build_quiz_prompt(user.industry, user.get_skills(), count)

    def attempt(n):
        raw = client.generate(prompt, json_mode=True,
                              max_tokens=budget['max_tokens'],
                              temperature=budget['temperature'],
                              timeout=budget['timeout'], task='quiz')
        questions = _normalise_questions(parse_json_response(raw).get('questions'))
        if not questions:
            raise MalformedResponse('Quiz response contained no usable questions')
        return questions[:count]

    questions = call_with_retry(attempt, max_attempts=max_attempts,
                                sleep=sleep, label='quiz')
    logger.info('Generated %d quiz questions for user %s (%s)',
                len(questions), user.id, user.industry)
    return questions


# ---------------------------------------------------------------------------
# Scoring & persistence
# ---------------------------------------------------------------------------

def score_answers(questions: list, answers: list) -> list:
    """Pair each question with the user's answer."""
    if not isinstance(questions, list) or not questions:
        raise ValidationError({'questions': 'At least one question is required'})
    if not isinstance(answers, list) or len(answers) != len(questions):
        raise ValidationError({'answers': 'Provide exactly one answer per question'})

    results = []
    for q, user_answer in zip(questions, answers):
        correct = q.get('correct_answer', q.get('correctAnswer'))
        results.append({
            'question': q.get('question', ''),
            'answer': correct,
            'user_answer': user_answer,
            'is_correct': user_answer is not None and user_answer == correct,
            'explanation': q.get('explanation', ''),
        })
    return results


def _improvement_tip(client, industry: str, wrong: list) -> str | None:
    """One or two encouraging sentences; None on any failure."""
    if client is None:
        return None

    wrong_text = '\n\n'.join(
        f'Question: "{r["question"]}"\nCorrect Answer: "{r["answer"]}"\nUser Answer: "{r["user_answer"]}"'
        for r in wrong
    )
    prompt = f"""
    The user got the following {industry.replace('-', ' ')} interview questions wrong:

    {wrong_text}

    Based on these mistakes, provide a concise, specific improvement tip.
    Focus on the knowledge gaps revealed by these wrong answers and skills the user needs to improve.
    Keep the response under 2 sentences and make it encouraging.
    Don't explicitly mention the mistakes, just focus on the improvement, learning and practice.
    """
    budget = TASK_BUDGETS['improvement_tip']
    try:
        tip = client.generate(prompt, max_tokens=budget['max_tokens'],
                              temperature=budget['temperature'],
                              timeout=budget['timeout'], task='improvement_tip')
        return tip.strip() or None
    except Exception as e:
        logger.error('Improvement tip generation failed: %s', e)
        return None


def save_quiz_result(client, user: User, questions: list, answers: list,
                     score: float = None) -> Assessment:
    """Score and store a finished quiz.

    ``score`` defaults to the percentage of correct answers.
    """
    results = score_answers(questions, answers)
    if score is None:
        score = round(100.0 * sum(r['is_correct'] for r in results) / len(results), 1)
    try:
        score = float(score)
    except (TypeError, ValueError):
        raise ValidationError({'score': 'Score must be a number'})

    wrong = [r for r in results if not r['is_correct']]
    tip = _improvement_tip(client, user.industry or 'professional', wrong) if wrong else None

    assessment = Assessment(
        user_id=user.id,
        quiz_score=score,
        questions=json.dumps(results),
        category='Technical',
        improvement_tip=tip,
    )
    db.session.add(assessment)
    db.session.commit()
    logger.info('Saved assessment %s for user %s (score=%.1f)', assessment.id, user.id, score)
    return assessment


def get_assessments(user: User) -> list:
    return (Assessment.query
            .filter_by(user_id=user.id)
            .order_by(Assessment.created_at.desc(), Assessment.id.desc())
            .all())


def assessment_stats(assessments: list) -> dict:
    """Figures for the interview dashboard stat cards."""
    if not assessments:
        return {'average_score': 0.0, 'latest_score': None,
                'questions_practiced': 0, 'correct_answers': 0, 'total_quizzes': 0}

    per_quiz = [a.get_questions() for a in assessments]
    latest = max(assessments, key=lambda a: (a.created_at, a.id))
    return {
        'average_score': round(sum(a.quiz_score or 0 for a in assessments) / len(assessments), 1),
        'latest_score': latest.quiz_score,
        'questions_practiced': sum(len(q) for q in per_quiz),
        'correct_answers': sum(1 for q in per_quiz for r in q if r.get('is_correct')),
        'total_quizzes': len(assessments),
    }
