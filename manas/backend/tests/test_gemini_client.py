import unittest
from unittest import mock

import requests

from manas.backend.app import gemini_client
from manas.backend.app.gemini_client import (
    GeminiAuthError,
    GeminiClient,
    GeminiError,
    GeminiQuotaError,
    GeminiResponseError,
    parse_json_lenient,
)


def fake_response(status_code=200, payload=None, text=""):
    resp = mock.Mock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.text = text
    resp.json.return_value = payload
    return resp


def candidate(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class ParseJsonTests(unittest.TestCase):
    def test_plain_json(self):
        self.assertEqual(parse_json_lenient('{"stress": 40}'), {"stress": 40})

    def test_code_fenced_json(self):
        raw = '```json\n{"question": "How are you?"}\n```'
        self.assertEqual(parse_json_lenient(raw)["question"], "How are you?")

    def test_json_embedded_in_prose(self):
        raw = 'Sure! Here it is: {"sleep": 70} Hope that helps.'
        self.assertEqual(parse_json_lenient(raw), {"sleep": 70})

    def test_rejects_non_object(self):
        with self.assertRaises(ValueError):
            parse_json_lenient("[1, 2, 3]")

    def test_rejects_empty(self):
        with self.assertRaises(ValueError):
            parse_json_lenient("   ")


class GeminiClientTests(unittest.TestCase):
    def setUp(self):
        self.client = GeminiClient(api_key="test-key", model="main-model", fallback_model="lite-model")

    def test_requires_api_key(self):
        with self.assertRaises(ValueError):
            GeminiClient(api_key="")

    def test_generate_returns_text(self):
        with mock.patch.object(gemini_client.requests, "post", return_value=fake_response(payload=candidate("Hello"))) as post:
            self.assertEqual(self.client.generate("hi"), "Hello")
        args, kwargs = post.call_args
        self.assertIn("main-model", args[0])
        self.assertEqual(kwargs["params"], {"key": "test-key"})
        self.assertEqual(kwargs["json"]["contents"][0]["parts"][0]["text"], "hi")

    def test_quota_falls_back_to_lite_model(self):
        responses = [fake_response(status_code=429), fake_response(payload=candidate("From lite"))]
        with mock.patch.object(gemini_client.requests, "post", side_effect=responses) as post:
            self.assertEqual(self.client.generate("hi"), "From lite")
        self.assertIn("lite-model", post.call_args_list[1][0][0])

    def test_quota_on_both_models_raises(self):
        responses = [fake_response(status_code=429), fake_response(status_code=429)]
        with mock.patch.object(gemini_client.requests, "post", side_effect=responses):
            with self.assertRaises(GeminiQuotaError):
                self.client.generate("hi")

    def test_quota_message_counts_as_quota(self):
        responses = [
            fake_response(status_code=503, text="Resource has been exhausted (e.g. check quota)."),
            fake_response(payload=candidate("ok")),
        ]
        with mock.patch.object(gemini_client.requests, "post", side_effect=responses):
            self.assertEqual(self.client.generate("hi"), "ok")

    def test_auth_error(self):
        with mock.patch.object(gemini_client.requests, "post", return_value=fake_response(status_code=403)):
            with self.assertRaises(GeminiAuthError):
                self.client.generate("hi")

    def test_bad_api_key_message_is_auth_error(self):
        resp = fake_response(status_code=400, text="API key not valid. Please pass a valid API key.")
        with mock.patch.object(gemini_client.requests, "post", return_value=resp):
            with self.assertRaises(GeminiAuthError):
                self.client.generate("hi")

    def test_network_error(self):
        with mock.patch.object(gemini_client.requests, "post", side_effect=requests.ConnectionError("down")):
            with self.assertRaises(GeminiError) as ctx:
                self.client.generate("hi")
        self.assertIn("network", str(ctx.exception))

    def test_unexpected_shape(self):
        with mock.patch.object(gemini_client.requests, "post", return_value=fake_response(payload={"candidates": []})):
            with self.assertRaises(GeminiResponseError):
                self.client.generate("hi")

    def test_generate_json_wraps_parse_errors(self):
        with mock.patch.object(gemini_client.requests, "post", return_value=fake_response(payload=candidate("not json"))):
            with self.assertRaises(GeminiResponseError):
                self.client.generate_json("hi")


def test_get_gemini_client_without_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_FALLBACK_API_KEY", raising=False)
    assert gemini_client.get_gemini_client() is None


def test_get_gemini_client_reads_env(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "abc")
    monkeypatch.setenv("GEMINI_MODEL", "custom-model")
    monkeypatch.setenv("GEMINI_TIMEOUT", "not-a-number")
    client = gemini_client.get_gemini_client()
    assert client.api_key == "abc"
    assert client.model == "custom-model"
    assert client.timeout == gemini_client.DEFAULT_TIMEOUT


if __name__ == "__main__":
    unittest.main()
