#!/usr/bin/env python3
"""
Unit tests for the analysis providers.
HTTP is faked at requests.request; ffmpeg is replaced by a stub extractor.
"""

import sys
import json
import subprocess
import tempfile
import threading
from datetime import datetime, timedelta
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

import requests

from dayflow.core.constants import (
    Category, ErrorCode, ProviderName, GEMINI_UPLOAD_URL, FRAME_SAMPLE_COUNT,
)
from dayflow.core.error_codes import ProviderError, ConfigurationError, ValidationError
from dayflow.core.analyze_local import LocalFrameAnalyzer
from dayflow.core.analyze_gemini import CloudVideoAnalyzer
from dayflow.core.analysis_provider import build_provider
from dayflow.core.frames_extract import sample_timestamps, get_video_duration
from dayflow.core.security_utils import StaticCredentialStore

START = datetime(2024, 1, 1, 10, 0, 0)
END = START + timedelta(seconds=15)


def fake_response(status: int = 200, payload=None, text: str | None = None):
    resp = mock.Mock()
    resp.status_code = status
    if payload is not None:
        resp.json.return_value = payload
        resp.text = json.dumps(payload)
    else:
        resp.json.side_effect = ValueError("No JSON")
        resp.text = text or ""
    return resp


def stub_extractor(video_path, output_dir, duration, count):
    frames = []
    for i in range(count):
        frame = output_dir / f"frame_{i:03d}.jpg"
        frame.write_bytes(b"\xff\xd8jpeg")
        frames.append(frame)
    return frames


class LocalModelServer:
    """Answers /api/generate by prompt type and records every call."""

    def __init__(self, category: str = "Coding", distraction: str = "no"):
        self.category = category
        self.distraction = distraction
        self.calls = []

    def __call__(self, method, url, timeout=None, json=None, **kwargs):
        self.calls.append(json)
        prompt = json['prompt']
        if 'images' in json:
            answer = "A code editor showing Python."
        elif prompt.startswith("Merge these"):
            answer = "The user is writing Python in an editor."
        elif prompt.startswith("Create a brief"):
            answer = '"Writing Python code"'
        elif prompt.startswith("Categorize"):
            answer = self.category
        elif prompt.startswith("Is this activity"):
            answer = self.distraction
        else:
            raise AssertionError(f"unexpected prompt: {prompt[:40]}")
        return fake_response(200, {"model": "llava", "response": answer, "done": True})

    def count(self, predicate) -> int:
        return sum(1 for body in self.calls if predicate(body))


class TestFrameSampling(unittest.TestCase):

    def test_thirty_even_samples(self):
        stamps = sample_timestamps(15.0)
        self.assertEqual(len(stamps), FRAME_SAMPLE_COUNT)
        self.assertAlmostEqual(stamps[0], 0.25)
        self.assertAlmostEqual(stamps[-1], 14.75)
        gaps = {round(b - a, 6) for a, b in zip(stamps, stamps[1:])}
        self.assertEqual(gaps, {0.5})

    def test_empty_duration(self):
        self.assertEqual(sample_timestamps(0), [])


class TestLocalFrameAnalyzer(unittest.TestCase):
    """Test the per-frame local pipeline."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.video = Path(self.tmp.name) / "chunk_100000.mp4"
        self.video.write_bytes(b"video")
        self.analyzer = LocalFrameAnalyzer(frame_extractor=stub_extractor)

    def tearDown(self):
        self.tmp.cleanup()

    def analyze(self, server):
        with mock.patch('dayflow.core.http_request.requests.request', side_effect=server):
            return self.analyzer.analyze_video(self.video, START, END)

    def test_call_counts_with_distraction_check(self):
        server = LocalModelServer(category="Coding", distraction="No.")
        result = self.analyze(server)

        self.assertEqual(len(server.calls), 34)
        self.assertEqual(server.count(lambda b: 'images' in b), 30)
        self.assertEqual(server.count(lambda b: b['prompt'].startswith("Merge these")), 1)
        self.assertEqual(server.count(lambda b: b['prompt'].startswith("Create a brief")), 1)
        self.assertEqual(server.count(lambda b: b['prompt'].startswith("Categorize")), 1)
        self.assertEqual(server.count(lambda b: b['prompt'].startswith("Is this activity")), 1)

        self.assertEqual(result.title, "Writing Python code")
        self.assertEqual(result.summary, "The user is writing Python in an editor.")
        self.assertEqual(result.category, Category.CODING)
        self.assertFalse(result.is_distraction)
        self.assertEqual((result.start_time, result.end_time), (START, END))

    def test_distraction_category_skips_call(self):
        for category in ("Social Media", "Entertainment"):
            server = LocalModelServer(category=category)
            result = self.analyze(server)
            self.assertEqual(len(server.calls), 33)
            self.assertEqual(server.count(lambda b: b['prompt'].startswith("Is this activity")), 0)
            self.assertTrue(result.is_distraction)
            self.assertEqual(result.category, category)

    def test_yes_answer_is_distraction(self):
        result = self.analyze(LocalModelServer(category="Research", distraction="Yes, likely."))
        self.assertTrue(result.is_distraction)

    def test_unknown_category_becomes_other(self):
        result = self.analyze(LocalModelServer(category="Gaming"))
        self.assertEqual(result.category, Category.OTHER)

    def test_request_body_shape(self):
        server = LocalModelServer()
        self.analyze(server)
        first = server.calls[0]
        self.assertEqual(first['model'], "llava")
        self.assertFalse(first['stream'])
        self.assertEqual(len(first['images']), 1)
        self.assertNotIn('images', server.calls[-1])

    def test_single_failure_aborts(self):
        server = LocalModelServer()
        calls = []

        def flaky(method, url, **kwargs):
            calls.append(url)
            if len(calls) == 12:
                raise requests.exceptions.ConnectionError("refused")
            return server(method, url, **kwargs)

        with mock.patch('dayflow.core.http_request.requests.request', side_effect=flaky):
            with self.assertRaises(ProviderError) as ctx:
                self.analyzer.analyze_video(self.video, START, END)
        self.assertEqual(ctx.exception.code, ErrorCode.NETWORK_TRANSIENT)
        self.assertEqual(len(calls), 12)

    def test_non_2xx_is_provider_error(self):
        with mock.patch('dayflow.core.http_request.requests.request',
                        return_value=fake_response(500, text="model not loaded")):
            with self.assertRaises(ProviderError) as ctx:
                self.analyzer.analyze_video(self.video, START, END)
        self.assertIn("500", ctx.exception.message)

    def test_missing_response_field_is_validation_error(self):
        with mock.patch('dayflow.core.http_request.requests.request',
                        return_value=fake_response(200, {"done": True})):
            with self.assertRaises(ValidationError):
                self.analyzer.analyze_video(self.video, START, END)

    def test_stop_event_cancels_between_calls(self):
        stop = threading.Event()
        stop.set()
        server = LocalModelServer()
        with mock.patch('dayflow.core.http_request.requests.request', side_effect=server):
            with self.assertRaises(ProviderError) as ctx:
                self.analyzer.analyze_video(self.video, START, END, stop_event=stop)
        self.assertEqual(ctx.exception.code, ErrorCode.CANCELLED)
        self.assertEqual(server.calls, [])

    def test_missing_video(self):
        with self.assertRaises(ProviderError):
            self.analyzer.analyze_video(self.video.with_name("gone.mp4"), START, END)

    def test_unreadable_frame_is_extraction_error(self):
        def vanishing_extractor(video_path, output_dir, duration, count):
            return [output_dir / f"missing_{i}.jpg" for i in range(count)]

        analyzer = LocalFrameAnalyzer(frame_extractor=vanishing_extractor)
        server = LocalModelServer()
        with mock.patch('dayflow.core.http_request.requests.request', side_effect=server):
            with self.assertRaises(ProviderError) as ctx:
                analyzer.analyze_video(self.video, START, END)
        self.assertEqual(ctx.exception.code, ErrorCode.FRAME_EXTRACTION)
        self.assertEqual(server.calls, [])

    def test_ffmpeg_timeout_is_extraction_error(self):
        timeout = subprocess.TimeoutExpired(cmd=["ffprobe"], timeout=30)
        analyzer = LocalFrameAnalyzer()
        with mock.patch('dayflow.core.frames_extract.run_subprocess_capture',
                        side_effect=timeout):
            with self.assertRaises(ProviderError) as ctx:
                analyzer.analyze_video(self.video, START, END)
        self.assertEqual(ctx.exception.code, ErrorCode.FRAME_EXTRACTION)

    def test_ffprobe_timeout_falls_back_to_zero(self):
        timeout = subprocess.TimeoutExpired(cmd=["ffprobe"], timeout=30)
        with mock.patch('dayflow.core.frames_extract.run_subprocess_capture',
                        side_effect=timeout):
            self.assertEqual(get_video_duration(self.video), 0.0)


class GeminiServer:
    """Fake Files + generateContent endpoints."""

    def __init__(self, model_text: str, upload_state: str = "ACTIVE", polls_until_active: int = 0):
        self.model_text = model_text
        self.upload_state = upload_state
        self.polls_until_active = polls_until_active
        self.requests = []

    def __call__(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url, kwargs))
        if url == GEMINI_UPLOAD_URL:
            return fake_response(200, {"file": {
                "name": "files/abc123",
                "uri": "https://generativelanguage.googleapis.com/v1beta/files/abc123",
                "mimeType": "video/mp4",
                "state": self.upload_state,
            }})
        if method == 'GET' and url.endswith("/files/abc123"):
            self.polls_until_active -= 1
            state = "ACTIVE" if self.polls_until_active <= 0 else "PROCESSING"
            return fake_response(200, {
                "name": "files/abc123",
                "uri": "https://generativelanguage.googleapis.com/v1beta/files/abc123",
                "state": state,
            })
        if url.endswith(":generateContent"):
            return fake_response(200, {
                "candidates": [{"content": {"parts": [{"text": self.model_text}],
                                            "role": "model"}}],
                "usageMetadata": {"totalTokenCount": 42},
            })
        raise AssertionError(f"unexpected request {method} {url}")


ANALYSIS = {
    "title": "Debugging the sync service",
    "summary": "The user steps through failing tests in an IDE.",
    "category": "Coding",
    "isDistraction": False,
}


class TestCloudVideoAnalyzer(unittest.TestCase):
    """Test the single-call Gemini pipeline."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.video = Path(self.tmp.name) / "chunk_100000.mp4"
        self.video.write_bytes(b"video")
        self.credentials = StaticCredentialStore({"Gemini": "test-key"})
        self.analyzer = CloudVideoAnalyzer(self.credentials, poll_delay=0)

    def tearDown(self):
        self.tmp.cleanup()

    def analyze(self, server):
        with mock.patch('dayflow.core.http_request.requests.request', side_effect=server):
            return self.analyzer.analyze_video(self.video, START, END)

    def test_fenced_json_parses(self):
        server = GeminiServer("```json\n" + json.dumps(ANALYSIS, indent=2) + "\n```")
        result = self.analyze(server)
        self.assertEqual(result.title, ANALYSIS["title"])
        self.assertEqual(result.category, Category.CODING)
        self.assertFalse(result.is_distraction)
        self.assertEqual((result.start_time, result.end_time), (START, END))

    def test_one_upload_one_generate(self):
        server = GeminiServer(json.dumps(ANALYSIS))
        self.analyze(server)
        self.assertEqual(len(server.requests), 2)
        upload, generate = server.requests
        self.assertEqual(upload[1], GEMINI_UPLOAD_URL)
        self.assertIn('file', upload[2]['files'])
        body = generate[2]['json']
        parts = body['contents'][0]['parts']
        self.assertEqual(parts[1]['fileData']['fileUri'],
                         "https://generativelanguage.googleapis.com/v1beta/files/abc123")
        self.assertEqual(generate[2]['headers']['x-goog-api-key'], "test-key")
        self.assertNotIn("test-key", generate[1])

    def test_missing_key_fails_before_network(self):
        analyzer = CloudVideoAnalyzer(StaticCredentialStore())
        with mock.patch('dayflow.core.http_request.requests.request') as request:
            with self.assertRaises(ConfigurationError):
                analyzer.analyze_video(self.video, START, END)
        request.assert_not_called()

    def test_malformed_json_is_validation_error(self):
        server = GeminiServer("Here is the entry: {title: nope")
        with self.assertRaises(ValidationError) as ctx:
            self.analyze(server)
        self.assertEqual(ctx.exception.code, ErrorCode.PROVIDER_RESPONSE_INVALID)

    def test_missing_candidates_is_validation_error(self):
        def server(method, url, **kwargs):
            if url == GEMINI_UPLOAD_URL:
                return fake_response(200, {"file": {"uri": "u"}})
            return fake_response(200, {"promptFeedback": {"blockReason": "SAFETY"}})

        with self.assertRaises(ValidationError):
            self.analyze(server)

    def test_upload_error_is_provider_error(self):
        with mock.patch('dayflow.core.http_request.requests.request',
                        return_value=fake_response(403, text="API key invalid")):
            with self.assertRaises(ProviderError) as ctx:
                self.analyzer.analyze_video(self.video, START, END)
        self.assertNotIsInstance(ctx.exception, ValidationError)

    def test_timeout_is_retryable_provider_error(self):
        with mock.patch('dayflow.core.http_request.requests.request',
                        side_effect=requests.exceptions.ReadTimeout()):
            with self.assertRaises(ProviderError) as ctx:
                self.analyzer.analyze_video(self.video, START, END)
        self.assertEqual(ctx.exception.code, ErrorCode.PROVIDER_TIMEOUT)
        self.assertTrue(ctx.exception.retryable)

    def test_waits_for_processing_upload(self):
        server = GeminiServer(json.dumps(ANALYSIS), upload_state="PROCESSING",
                              polls_until_active=2)
        result = self.analyze(server)
        methods = [m for m, _, _ in server.requests]
        self.assertEqual(methods, ['POST', 'GET', 'GET', 'POST'])
        self.assertEqual(result.title, ANALYSIS["title"])

    def test_rate_limit_backoff(self):
        server = GeminiServer(json.dumps(ANALYSIS))
        responses = [fake_response(429, text="slow down")]

        def limited(method, url, **kwargs):
            if responses:
                return responses.pop()
            return server(method, url, **kwargs)

        with mock.patch('dayflow.core.http_request.time.sleep') as sleep, \
                mock.patch('dayflow.core.http_request.requests.request', side_effect=limited):
            result = self.analyzer.analyze_video(self.video, START, END)
        sleep.assert_called_once()
        self.assertEqual(result.category, Category.CODING)


class TestProviderSelection(unittest.TestCase):

    def test_local(self):
        provider = build_provider({'provider': ProviderName.LOCAL,
                                   'local_endpoint': 'http://127.0.0.1:1234/'},
                                  StaticCredentialStore())
        self.assertIsInstance(provider, LocalFrameAnalyzer)
        self.assertEqual(provider.generate_url, "http://127.0.0.1:1234/api/generate")

    def test_gemini(self):
        provider = build_provider({'provider': ProviderName.GEMINI}, StaticCredentialStore())
        self.assertIsInstance(provider, CloudVideoAnalyzer)

    def test_unknown(self):
        with self.assertRaises(ConfigurationError):
            build_provider({'provider': 'openai'}, StaticCredentialStore())


if __name__ == "__main__":
    unittest.main()
