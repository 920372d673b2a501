"""Generation service client — Google Gemini via the OpenAI-compatible endpoint.

The client is an explicit object built once by the app factory and handed to
the services that need it, so tests can substitute a fake with the same
``generate()`` signature.

Also home to the pieces every model-backed feature shares:
  - Markdown fence stripping + JSON parsing of model output
  - Transient / permanent error classification
  - Linear-backoff retry loop
"""

import json
import logging
import re
import time

import openai

from token_budget import TokenTracker, check_payload_size

logger = logging.getLogger(__name__)

DEFAULT_MODEL = 'gemini-2.5-flash'
DEFAULT_BASE_URL = 'https://generativelanguage.googleapis.com/v1beta/openai/'

TRANSIENT = 'transient'
PERMANENT = 'permanent'


class GenerationUnavailable(RuntimeError):
    """Generation failed permanently or every retry was used up."""


class MalformedResponse(ValueError):
    """The model answered, but not with the JSON object we asked for."""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class GeminiClient:
    """Thin wrapper over an OpenAI-compatible chat completions client."""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL,
                 base_url: str = DEFAULT_BASE_URL, tracker: TokenTracker = None,
                 http_client=None):
        self.model = model
        self.base_url = base_url
        self.tracker = tracker or TokenTracker()
        self._api_key = api_key
        self._client = None
        self._http_client = http_client

    def _get_client(self):
        """Lazy-initialise the underlying OpenAI client."""
        if self._client is None:
            # call_with_retry owns retries; the SDK must make one request per attempt
            self._client = openai.OpenAI(base_url=self.base_url, api_key=self._api_key,
                                         max_retries=0, http_client=self._http_client)
            logger.info('Initialised Gemini client (%s)', self.model)
        return self._client

    def generate(self, prompt: str, system: str = '', json_mode: bool = False,
                 max_tokens: int = 3000, temperature: float = 0.3,
                 timeout: float = 60.0, task: str = 'unknown') -> str:
        """Send one prompt and return the raw completion text."""
        check_payload_size(system, prompt, task)
        messages = []
        if system:
            messages.append({'role': 'system', 'content': system})
        messages.append({'role': 'user', 'content': prompt})

        kwargs = {}
        if json_mode:
            kwargs['response_format'] = {'type': 'json_object'}

        t0 = time.time()
        response = self._get_client().chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            **kwargs,
        )
        elapsed = time.time() - t0
        raw = response.choices[0].message.content or ''

        self.tracker.log_call(task, len(system) + len(prompt), len(raw),
                              elapsed, model=self.model)
        return raw


def build_client(api_key: str, model: str = DEFAULT_MODEL,
                 base_url: str = DEFAULT_BASE_URL) -> GeminiClient | None:
    """Build the process-wide client, or None when no key is configured."""
    if not api_key:
        logger.warning('No LLM backend configured, set GEMINI_API_KEY')
        return None
    logger.info('LLM backend: Gemini (%s)', model)
    return GeminiClient(api_key, model=model, base_url=base_url or DEFAULT_BASE_URL)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

_LEADING_FENCE = re.compile(r'^```[A-Za-z0-9_-]*[ \t]*\n?')
_TRAILING_FENCE = re.compile(r'\n?[ \t]*```$')


def strip_code_fences(raw: str) -> str:
    """Remove a leading ```lang fence and a trailing ``` fence, if present."""
    text = (raw or '').strip()
    text = _LEADING_FENCE.sub('', text, count=1)
    text = _TRAILING_FENCE.sub('', text, count=1)
    return text.strip()


def parse_json_response(raw: str) -> dict:
    """Strip markdown fences, then parse a JSON object."""
    text = strip_code_fences(raw)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f'Model returned invalid JSON: {e}') from e
    if not isinstance(data, dict):
        raise MalformedResponse(f'Expected a JSON object, got {type(data).__name__}')
    return data


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

_TRANSIENT_STATUS = {408, 409, 429, 500, 502, 503, 504}

_TRANSIENT_KEYWORDS = (
    '429', 'rate limit', 'rate_limit', 'too many requests', 'quota',
    'resource_exhausted', '503', '502', '504', 'overloaded', 'unavailable',
    'timeout', 'timed out',
)


def classify_error(error: Exception) -> str:
    """Map a generation failure to TRANSIENT or PERMANENT.

    Structured status codes from the openai client win; otherwise the
    message text is matched against known rate-limit/overload phrases.
    """
    if isinstance(error, MalformedResponse):
        return TRANSIENT
    if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError)):
        return TRANSIENT
    if isinstance(error, openai.APIStatusError):
        return TRANSIENT if error.status_code in _TRANSIENT_STATUS else PERMANENT
    if isinstance(error, TimeoutError):
        return TRANSIENT

    err_str = str(error).lower()
    if any(keyword in err_str for keyword in _TRANSIENT_KEYWORDS):
        return TRANSIENT
    return PERMANENT


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

def call_with_retry(fn, max_attempts: int = 3, backoff_ms: int = 1000,
                    sleep=time.sleep, label: str = 'generation'):
    """Call fn(attempt) until it succeeds, retrying transient failures.

    Waits ``attempt * backoff_ms`` between attempts. A permanent failure
    aborts at once; both that and exhaustion raise GenerationUnavailable.
    """
    last_error = None
    for attempt in range(1, max_attempts + 1):
        try:
            return fn(attempt)
        except Exception as e:
            last_error = e
            kind = classify_error(e)
            if kind == PERMANENT:
                logger.error('[%s] permanent error (attempt %d/%d): %s',
                             label, attempt, max_attempts, str(e)[:200])
                raise GenerationUnavailable(str(e)) from e

            if attempt < max_attempts:
                wait_ms = attempt * backoff_ms
                logger.warning('[%s] transient error (attempt %d/%d), retrying in %dms: %s',
                               label, attempt, max_attempts, wait_ms, str(e)[:200])
                sleep(wait_ms / 1000.0)
            else:
                logger.error('[%s] giving up after %d attempts: %s',
                             label, max_attempts, str(e)[:200])

    raise GenerationUnavailable(str(last_error)) from last_error


def friendly_error_message(error: Exception) -> str:
    """Turn a raw generation failure into a sentence fit for the user."""
    msg = str(error)
    lowered = msg.lower()
    if isinstance(error, openai.AuthenticationError) or 'api key not valid' in lowered \
            or 'api_key_invalid' in lowered:
        return ('Invalid AI API key configured. Please check your GEMINI_API_KEY '
                'environment variable.')
    if isinstance(error, openai.APIConnectionError) or 'network' in lowered \
            or 'econnrefused' in lowered:
        return 'Unable to reach AI service. Please check your internet connection and try again.'
    if 'quota' in lowered or 'rate limit' in lowered or '429' in lowered:
        return 'AI service quota exceeded. Please try again later.'
    if 'not configured' in lowered:
        return 'AI service is not configured. Please contact support.'
    return 'Failed to generate content. Please try again.'
