"""Per-task generation settings, prompt input limits, and usage accounting."""

import logging
import threading
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

# Gemini 2.5 Flash list prices, USD per 1M tokens
INPUT_PRICE_PER_M = 0.30
OUTPUT_PRICE_PER_M = 2.50
CHARS_PER_TOKEN = 4

# Thinking tokens count against max_tokens, so these sit well above the
# expected visible output.
TASK_BUDGETS = {
    'insights':        {'max_tokens': 6000, 'temperature': 0.4, 'timeout': 15.0},
    'quiz':            {'max_tokens': 8000, 'temperature': 0.6, 'timeout': 60.0},
    'improvement_tip': {'max_tokens': 800,  'temperature': 0.5, 'timeout': 20.0},
    'resume_improve':  {'max_tokens': 2000, 'temperature': 0.4, 'timeout': 30.0},
    'cover_letter':    {'max_tokens': 3000, 'temperature': 0.6, 'timeout': 60.0},
}

# chars
INPUT_LIMITS = {
    'job_description': 4000,
    'resume_summary': 1500,
    'resume_section': 3000,
}
DEFAULT_INPUT_LIMIT = 3000
MAX_PAYLOAD_CHARS = 25000


def get_date_context() -> str:
    now = datetime.now(timezone.utc)
    return f"Today's date is {now.strftime('%B %d, %Y')}. The current year is {now.year}."


def truncate_input(text: str, kind: str) -> str:
    """Cut user-supplied text to the limit for its kind, logging when it bites."""
    if not text:
        return ''
    limit = INPUT_LIMITS.get(kind, DEFAULT_INPUT_LIMIT)
    if len(text) > limit:
        logger.info('Truncated %s from %d to %d chars', kind, len(text), limit)
        return text[:limit]
    return text


def check_payload_size(system: str, prompt: str, task: str) -> None:
    total = len(system) + len(prompt)
    if total > MAX_PAYLOAD_CHARS:
        logger.warning('Payload size for %s: %d chars (threshold: %d)',
                       task, total, MAX_PAYLOAD_CHARS)


def estimate_cost(input_chars: int, output_chars: int) -> float:
    input_tokens = input_chars // CHARS_PER_TOKEN
    output_tokens = output_chars // CHARS_PER_TOKEN
    return (input_tokens * INPUT_PRICE_PER_M + output_tokens * OUTPUT_PRICE_PER_M) / 1_000_000


class TokenTracker:
    """Running per-task totals of model calls, for logs and the admin usage view."""

    def __init__(self):
        self._totals = {}
        self._lock = threading.Lock()

    def log_call(self, task: str, input_chars: int, output_chars: int,
                 elapsed_secs: float, model: str = '') -> None:
        cost = estimate_cost(input_chars, output_chars)
        with self._lock:
            totals = self._totals.setdefault(task, {'calls': 0, 'input_chars': 0,
                                                    'output_chars': 0, 'cost_usd': 0.0,
                                                    'elapsed_secs': 0.0})
            totals['calls'] += 1
            totals['input_chars'] += input_chars
            totals['output_chars'] += output_chars
            totals['cost_usd'] += cost
            totals['elapsed_secs'] += elapsed_secs

        logger.info('TOKEN_USAGE | task=%s | model=%s | input=%d chars | output=%d chars | '
                    'cost=$%.6f | %.1fs',
                    task, model, input_chars, output_chars, cost, elapsed_secs)

    def summary(self) -> dict:
        with self._lock:
            by_task = {task: {**t, 'cost_usd': round(t['cost_usd'], 6),
                              'elapsed_secs': round(t['elapsed_secs'], 2)}
                       for task, t in self._totals.items()}
        return {
            'total_calls': sum(t['calls'] for t in by_task.values()),
            'total_cost_usd': round(sum(t['cost_usd'] for t in by_task.values()), 4),
            'by_task': by_task,
        }
