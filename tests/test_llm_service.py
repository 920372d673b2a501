"""Tests for response parsing, error classification and the retry loop."""
import httpx
import openai
import pytest

from conftest import SleepRecorder
from llm_service import (PERMANENT, TRANSIENT, GeminiClient, GenerationUnavailable, MalformedResponse,
                         build_client, call_with_retry, classify_error,
                         friendly_error_message, parse_json_response, strip_code_fences)

_REQUEST = httpx.Request('POST', 'https://example.test/v1/chat/completions')


def _status_error(cls, status):
    return cls(f'Error code: {status}', response=httpx.Response(status, request=_REQUEST), body=None)


class TestParsing:

    def test_plain_json(self):
        assert parse_json_response('{"a": 1}') == {'a': 1}

    def test_fenced_json_with_language_tag(self):
        raw = '```json\n{"growthRate": 8.2}\n```'
        assert parse_json_response(raw) == {'growthRate': 8.2}

    def test_fenced_json_without_language_tag(self):
        raw = '  ```\n{"demandLevel": "HIGH"}\n```  '
        assert parse_json_response(raw) == {'demandLevel': 'HIGH'}

    def test_fence_on_same_line(self):
        assert strip_code_fences('```json {"a": 1}```') == '{"a": 1}'

    def test_invalid_json_raises_malformed(self):
        with pytest.raises(MalformedResponse):
            parse_json_response('Sure! Here are your insights.')

    def test_non_object_json_raises_malformed(self):
        with pytest.raises(MalformedResponse):
            parse_json_response('["a", "b"]')


class TestClassifyError:

    @pytest.mark.parametrize('message', [
        '503 Service Unavailable',
        'The model is overloaded. Please try again later.',
        'Error code: 429 - Resource has been exhausted',
        'Request timed out.',
        'RESOURCE_EXHAUSTED: quota exceeded',
    ])
    def test_transient_messages(self, message):
        assert classify_error(Exception(message)) == TRANSIENT

    @pytest.mark.parametrize('message', [
        'API key not valid. Please pass a valid API key.',
        'Invalid argument: model not found',
    ])
    def test_permanent_messages(self, message):
        assert classify_error(Exception(message)) == PERMANENT

    def test_malformed_response_is_transient(self):
        assert classify_error(MalformedResponse('bad json')) == TRANSIENT

    def test_structured_timeout_is_transient(self):
        assert classify_error(openai.APITimeoutError(request=_REQUEST)) == TRANSIENT

    def test_structured_rate_limit_is_transient(self):
        assert classify_error(_status_error(openai.RateLimitError, 429)) == TRANSIENT

    def test_structured_auth_failure_is_permanent(self):
        assert classify_error(_status_error(openai.AuthenticationError, 401)) == PERMANENT


class TestCallWithRetry:

    def test_returns_first_success(self):
        sleep = SleepRecorder()
        assert call_with_retry(lambda n: 'ok', sleep=sleep) == 'ok'
        assert sleep.delays == []

    def test_transient_then_success_backs_off_linearly(self):
        sleep = SleepRecorder()
        attempts = []

        def fn(n):
            attempts.append(n)
            if n < 3:
                raise Exception('503 overloaded')
            return 'done'

        assert call_with_retry(fn, max_attempts=3, backoff_ms=1000, sleep=sleep) == 'done'
        assert attempts == [1, 2, 3]
        assert sleep.delays == [1.0, 2.0]

    def test_permanent_error_aborts_immediately(self):
        sleep = SleepRecorder()
        attempts = []

        def fn(n):
            attempts.append(n)
            raise Exception('API key not valid')

        with pytest.raises(GenerationUnavailable, match='API key not valid'):
            call_with_retry(fn, max_attempts=3, sleep=sleep)
        assert attempts == [1]
        assert sleep.delays == []

    def test_exhaustion_carries_last_message(self):
        sleep = SleepRecorder()

        def fn(n):
            raise Exception(f'429 rate limit (attempt {n})')

        with pytest.raises(GenerationUnavailable, match=r'attempt 3'):
            call_with_retry(fn, max_attempts=3, sleep=sleep)
        assert sleep.delays == [1.0, 2.0]


def test_build_client_without_key_returns_none():
    assert build_client('') is None


def test_build_client_with_key():
    client = build_client('test-key', model='gemini-2.5-flash')
    assert client.model == 'gemini-2.5-flash'


def test_friendly_error_messages_are_distinct():
    assert 'API key' in friendly_error_message(Exception('API key not valid'))
    assert 'quota' in friendly_error_message(Exception('429 quota exceeded'))
    assert friendly_error_message(Exception('boom')) == 'Failed to generate content. Please try again.'


class TestGeminiClientTransport:

    @staticmethod
    def _client(handler):
        requests = []

        def record(request):
            requests.append(request)
            return handler(request)

        http_client = httpx.Client(transport=httpx.MockTransport(record))
        return GeminiClient('test-key', http_client=http_client), requests

    def test_rate_limit_makes_a_single_request(self):
        client, requests = self._client(
            lambda request: httpx.Response(429, json={'error': {'message': 'Resource has been exhausted'}}))

        with pytest.raises(openai.RateLimitError) as exc:
            client.generate('hi', timeout=15)

        assert len(requests) == 1
        assert classify_error(exc.value) == TRANSIENT

    def test_server_error_makes_a_single_request(self):
        client, requests = self._client(
            lambda request: httpx.Response(503, json={'error': {'message': 'overloaded'}}))

        with pytest.raises(openai.InternalServerError):
            client.generate('hi')

        assert len(requests) == 1

    def test_retry_loop_bounds_total_requests(self):
        client, requests = self._client(
            lambda request: httpx.Response(429, json={'error': {'message': 'quota'}}))
        sleep = SleepRecorder()

        with pytest.raises(GenerationUnavailable):
            call_with_retry(lambda n: client.generate('hi'), max_attempts=3, sleep=sleep)

        assert len(requests) == 3
        assert sleep.delays == [1.0, 2.0]

    def test_success_returns_completion_text(self):
        body = {
            'id': 'chatcmpl-1', 'object': 'chat.completion', 'created': 0,
            'model': 'gemini-2.5-flash',
            'choices': [{'index': 0, 'finish_reason': 'stop',
                         'message': {'role': 'assistant', 'content': '{"ok": true}'}}],
        }
        client, requests = self._client(lambda request: httpx.Response(200, json=body))

        assert client.generate('hi', json_mode=True, task='insights') == '{"ok": true}'
        assert len(requests) == 1
        assert client.tracker.summary()['by_task']['insights']['calls'] == 1

    def test_sdk_retries_disabled(self):
        assert GeminiClient('test-key')._get_client().max_retries == 0
