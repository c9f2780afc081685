"""Tests for the rate-limited document-creation client."""

import threading
import time
import unittest
from concurrent.futures import CancelledError
from unittest.mock import Mock

import pytest
import requests

from crpt import (
    CRPT,
    AcquisitionCancelledError,
    CancellationToken,
    CrptApi,
    Description,
    Document,
    HttpClient,
    Product,
    RateGate,
    SubmissionEventListener,
    SubmissionRequest,
    SubmissionStatus,
    TimeUnit,
    TokenAcquisitionTimeoutError,
)

# ======================
# Helper functions
# ======================

def make_response(json_data=None, status_code=200, reason="OK"):
    """Creates a mock that behaves like requests.Response"""
    resp = Mock(spec=requests.Response)
    resp.status_code = status_code
    resp.reason = reason
    resp.content = b"{}" if json_data is not None else b""
    resp.json.return_value = json_data
    resp.text = str(json_data)
    return resp


def make_request(doc_id="doc-1"):
    document = Document(
        description=Description(participant_inn="7700000000"),
        doc_id=doc_id,
        doc_type="LP_INTRODUCE_GOODS",
        products=[Product(tnved_code="6401", uit_code="0104")],
    )
    return SubmissionRequest(document=document, signature="c2lnbmF0dXJl", id=f"req-{doc_id}")


class RecordingListener(SubmissionEventListener):
    """Records events, and the gate state observed when each response is reported."""

    def __init__(self, gate=None):
        self.gate = gate
        self.events = []
        self.responses = []
        self.in_flight_on_after = []
        self.available_on_after = []

    def on_before_submit(self, request, context):
        self.events.append(("before", request.id))

    def on_dispatch(self, request, context):
        self.events.append(("dispatch", request.id))

    def on_after_submit(self, request, response, context):
        self.events.append(("after", request.id))
        self.responses.append(response)
        if self.gate is not None:
            self.in_flight_on_after.append(self.gate.in_flight)
            self.available_on_after.append(self.gate.available_permits)


class TestCrptApiSubmit(unittest.TestCase):

    def setUp(self):
        CRPT.reset()
        self.http_client = Mock(spec=HttpClient)
        self.gate = RateGate(request_limit=2, time_window=60.0, autostart=False)
        self.listener = RecordingListener(gate=self.gate)
        self.api = CrptApi(
            rate_gate=self.gate,
            http_client=self.http_client,
            base_url="https://crpt.example.com/",
            request_timeout=5,
            max_workers=2,
            listeners=[self.listener],
        )

    def tearDown(self):
        self.api.close()
        self.gate.close()
        CRPT.reset()

    # ---------------------------------------------------------
    # Scenario: 2xx answer
    # ---------------------------------------------------------
    def test_submit_when_server_accepts_document(self):
        self.http_client.post.return_value = make_response({"value": "doc-1"}, status_code=200)
        request = make_request()

        response = self.api.submit(request).result(timeout=2)

        self.assertEqual(response.status, SubmissionStatus.SUCCESS)
        self.assertTrue(response.is_success())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.raw_response, {"value": "doc-1"})
        self.assertIs(response.request, request)
        self.assertEqual(self.gate.in_flight, 0)
        self.assertEqual(self.gate.available_permits, 2)

    def test_submit_posts_body_to_document_endpoint(self):
        self.http_client.post.return_value = make_response({}, status_code=201)
        request = make_request()

        self.api.submit(request).result(timeout=2)

        self.http_client.post.assert_called_once_with(
            "https://crpt.example.com/api/v3/lk/documents/create",
            data=request.to_request_body(),
            headers={"Content-Type": "application/json"},
            timeout=5,
        )
        body = self.http_client.post.call_args.kwargs["data"]
        self.assertEqual(body["signature"], "c2lnbmF0dXJl")
        self.assertEqual(body["description"]["doc_id"], "doc-1")
        self.assertEqual(body["description"]["description"], {"participantInn": "7700000000"})

    def test_create_document_builds_request(self):
        self.http_client.post.return_value = make_response({}, status_code=200)
        document = Document(doc_id="42")

        response = self.api.create_document(document, "sig").result(timeout=2)

        self.assertTrue(response.is_success())
        self.assertIs(response.request.document, document)
        self.assertEqual(response.request.signature, "sig")

    # ---------------------------------------------------------
    # Scenario: non-2xx answer
    # ---------------------------------------------------------
    def test_submit_when_server_rejects_document(self):
        self.http_client.post.return_value = make_response(
            {"error_message": "invalid signature"}, status_code=400, reason="Bad Request"
        )

        response = self.api.submit(make_request()).result(timeout=2)

        self.assertEqual(response.status, SubmissionStatus.FAILURE)
        self.assertEqual(response.status_code, 400)
        self.assertIn("400", response.error)
        self.assertEqual(response.raw_response, {"error_message": "invalid signature"})
        self.assertEqual(self.gate.in_flight, 0)

    def test_submit_when_body_is_not_json(self):
        resp = make_response(status_code=502, reason="Bad Gateway")
        resp.content = b"<html>gateway</html>"
        resp.text = "<html>gateway</html>"
        resp.json.side_effect = ValueError("not json")
        self.http_client.post.return_value = resp

        response = self.api.submit(make_request()).result(timeout=2)

        self.assertTrue(response.is_failure())
        self.assertEqual(response.raw_response, "<html>gateway</html>")

    # ---------------------------------------------------------
    # Scenario: transport errors
    # ---------------------------------------------------------
    def test_submit_when_connection_fails(self):
        self.http_client.post.side_effect = requests.ConnectionError("connection refused")

        response = self.api.submit(make_request()).result(timeout=2)

        self.assertEqual(response.status, SubmissionStatus.ERROR)
        self.assertIsNone(response.status_code)
        self.assertIn("connection refused", response.error)
        self.assertEqual(self.gate.in_flight, 0)

    def test_submit_when_http_call_times_out(self):
        self.http_client.post.side_effect = requests.Timeout("read timed out")

        response = self.api.submit(make_request()).result(timeout=2)

        self.assertEqual(response.status, SubmissionStatus.TIMEOUT)
        self.assertEqual(self.gate.in_flight, 0)

    def test_submit_when_http_client_raises_unexpected_error(self):
        self.http_client.post.side_effect = RuntimeError("boom")

        response = self.api.submit(make_request()).result(timeout=2)

        self.assertEqual(response.status, SubmissionStatus.ERROR)
        self.assertEqual(self.gate.in_flight, 0)

    def test_client_stays_usable_after_failures(self):
        self.http_client.post.side_effect = [
            requests.ConnectionError("down"),
            make_response({}, status_code=500, reason="Server Error"),
            make_response({}, status_code=200),
        ]

        statuses = [self.api.execute(make_request(f"doc-{i}")).status for i in range(3)]

        self.assertEqual(statuses, [SubmissionStatus.ERROR, SubmissionStatus.FAILURE, SubmissionStatus.SUCCESS])
        self.assertEqual(self.http_client.post.call_count, 3)
        self.assertEqual(self.gate.in_flight, 0)

    # ---------------------------------------------------------
    # Scenario: listeners
    # ---------------------------------------------------------
    def test_listeners_are_notified_after_permit_release(self):
        self.http_client.post.side_effect = [
            make_response({}, status_code=200),
            make_response({}, status_code=404, reason="Not Found"),
            requests.ConnectionError("down"),
        ]

        for i in range(3):
            self.api.execute(make_request(f"doc-{i}"))

        self.assertEqual(self.listener.in_flight_on_after, [0, 0, 0])
        self.assertEqual(self.listener.available_on_after, [2, 2, 2])

    def test_listener_events_order(self):
        self.http_client.post.return_value = make_response({}, status_code=200)

        self.api.execute(make_request())

        self.assertEqual(
            self.listener.events,
            [("before", "req-doc-1"), ("dispatch", "req-doc-1"), ("after", "req-doc-1")],
        )

    def test_listener_exception_does_not_break_submission(self):
        failing = Mock(spec=SubmissionEventListener)
        failing.on_before_submit.side_effect = RuntimeError("listener down")
        failing.on_dispatch.side_effect = RuntimeError("listener down")
        failing.on_after_submit.side_effect = RuntimeError("listener down")
        self.api.listeners.insert(0, failing)
        self.http_client.post.return_value = make_response({}, status_code=200)

        response = self.api.execute(make_request())

        self.assertTrue(response.is_success())
        self.assertEqual(len(self.listener.responses), 1)
        self.assertEqual(self.gate.in_flight, 0)

    # ---------------------------------------------------------
    # Scenario: rate limiting
    # ---------------------------------------------------------
    def test_submit_blocks_when_limit_reached(self):
        release_http = threading.Event()

        def slow_post(*args, **kwargs):
            release_http.wait(timeout=5)
            return make_response({}, status_code=200)

        self.http_client.post.side_effect = slow_post
        first = self.api.submit(make_request("doc-1"))
        second = self.api.submit(make_request("doc-2"))

        third_futures = []
        submitter = threading.Thread(
            target=lambda: third_futures.append(self.api.submit(make_request("doc-3"))),
            daemon=True,
        )
        submitter.start()
        time.sleep(0.1)
        self.assertTrue(submitter.is_alive(), "3rd submit should wait for a permit")

        release_http.set()
        submitter.join(timeout=2)

        self.assertFalse(submitter.is_alive())
        for future in [first, second, *third_futures]:
            self.assertTrue(future.result(timeout=2).is_success())

    def test_submit_cancelled_while_waiting_for_permit(self):
        self.gate.acquire()
        self.gate.acquire()
        token = CancellationToken()
        errors = []

        def submit():
            try:
                self.api.submit(make_request(), cancel_token=token)
            except AcquisitionCancelledError as e:
                errors.append(e)

        submitter = threading.Thread(target=submit, daemon=True)
        submitter.start()
        time.sleep(0.1)
        token.cancel()
        submitter.join(timeout=2)

        self.assertEqual(len(errors), 1)
        self.http_client.post.assert_not_called()
        self.assertEqual(self.gate.in_flight, 2)

    def test_execute_reports_cancelled_token_as_cancelled_response(self):
        token = CancellationToken()
        token.cancel()
        request = make_request()

        response = self.api.execute(request, cancel_token=token)

        self.assertEqual(response.status, SubmissionStatus.CANCELLED)
        self.assertIs(response.request, request)
        self.http_client.post.assert_not_called()

    def test_cancelled_future_releases_permit(self):
        release_http = threading.Event()

        def slow_post(*args, **kwargs):
            release_http.wait(timeout=5)
            return make_response({}, status_code=200)

        self.http_client.post.side_effect = slow_post
        api = CrptApi(
            rate_gate=self.gate,
            http_client=self.http_client,
            max_workers=1,
            listeners=[self.listener],
        )
        try:
            running = api.submit(make_request("doc-1"))
            queued = api.submit(make_request("doc-2"))
            self.assertEqual(self.gate.in_flight, 2)

            self.assertTrue(queued.cancel())

            self.assertEqual(self.gate.in_flight, 1)
            with self.assertRaises(CancelledError):
                queued.result()
            cancelled = [r for r in self.listener.responses if r.request.id == "req-doc-2"]
            self.assertEqual(cancelled[0].status, SubmissionStatus.CANCELLED)

            release_http.set()
            self.assertTrue(running.result(timeout=2).is_success())
            self.assertEqual(self.gate.in_flight, 0)
        finally:
            release_http.set()
            api.close()

    # ---------------------------------------------------------
    # Scenario: batch
    # ---------------------------------------------------------
    def test_execute_many_preserves_request_order(self):
        def post(url, data=None, headers=None, timeout=30):
            doc_id = data["description"]["doc_id"]
            if doc_id == "doc-2":
                return make_response({"doc": doc_id}, status_code=409, reason="Conflict")
            return make_response({"doc": doc_id}, status_code=200)

        self.http_client.post.side_effect = post
        request_list = [make_request(f"doc-{i}") for i in range(5)]

        responses = self.api.execute_many(request_list)

        self.assertEqual(len(responses), 5)
        for request, response in zip(request_list, responses, strict=True):
            self.assertIs(response.request, request)
        self.assertEqual(
            [r.status for r in responses],
            [SubmissionStatus.SUCCESS, SubmissionStatus.SUCCESS, SubmissionStatus.FAILURE,
             SubmissionStatus.SUCCESS, SubmissionStatus.SUCCESS],
        )
        self.assertEqual(self.gate.in_flight, 0)

    def test_execute_many_with_empty_list(self):
        self.assertEqual(self.api.execute_many([]), [])

    def test_execute_many_with_cancelled_token(self):
        token = CancellationToken()
        token.cancel()

        responses = self.api.execute_many([make_request("doc-1"), make_request("doc-2")], cancel_token=token)

        self.assertTrue(all(r.is_cancelled() for r in responses))
        self.http_client.post.assert_not_called()


class TestCrptApiTimeout(unittest.TestCase):

    def setUp(self):
        self.http_client = Mock(spec=HttpClient)
        self.gate = RateGate(request_limit=1, time_window=60.0, max_wait_time=0.05, autostart=False)
        self.listener = RecordingListener(gate=self.gate)
        self.api = CrptApi(rate_gate=self.gate, http_client=self.http_client, listeners=[self.listener])

    def tearDown(self):
        self.api.close()
        self.gate.close()

    def test_execute_reports_permit_wait_timeout(self):
        self.gate.acquire()

        response = self.api.execute(make_request())

        self.assertEqual(response.status, SubmissionStatus.TIMEOUT)
        self.http_client.post.assert_not_called()
        self.assertEqual(self.gate.in_flight, 1)

    def test_permit_wait_timeout_is_reported_to_listeners(self):
        self.gate.acquire()

        self.api.execute(make_request())

        self.assertEqual(self.listener.events, [("before", "req-doc-1"), ("after", "req-doc-1")])
        self.assertEqual(self.listener.responses[0].status, SubmissionStatus.TIMEOUT)
        self.assertEqual(self.listener.in_flight_on_after, [1])

    def test_submit_reports_timeout_to_listeners_before_raising(self):
        self.gate.acquire()

        with pytest.raises(TokenAcquisitionTimeoutError):
            self.api.submit(make_request())

        self.assertEqual([e[0] for e in self.listener.events], ["before", "after"])
        self.assertTrue(self.listener.responses[0].is_timeout())

    def test_closed_gate_is_reported_to_listeners(self):
        self.gate.close()

        response = self.api.execute(make_request())

        self.assertTrue(response.is_error())
        self.assertEqual(len(self.listener.responses), 1)
        self.assertTrue(self.listener.responses[0].is_error())

    def test_execute_many_reports_every_cancelled_request_to_listeners(self):
        token = CancellationToken()
        token.cancel()

        self.api.execute_many([make_request("doc-1"), make_request("doc-2")], cancel_token=token)

        self.assertEqual(
            self.listener.events,
            [("before", "req-doc-1"), ("after", "req-doc-1"), ("before", "req-doc-2"), ("after", "req-doc-2")],
        )
        self.assertTrue(all(r.is_cancelled() for r in self.listener.responses))


class TestCrptApiLifecycle:
    """Tests for construction from configuration and close()."""

    def setup_method(self):
        CRPT.reset()

    def teardown_method(self):
        CRPT.reset()

    def test_defaults_come_from_global_config(self):
        CRPT.configure(
            api={"base_url": "http://localhost:8080", "request_timeout": 12, "max_workers": 3},
            rate_limit={"request_limit": 7, "time_window": 2.0},
        )

        with CrptApi(http_client=Mock(spec=HttpClient)) as api:
            assert api.url == "http://localhost:8080/api/v3/lk/documents/create"
            assert api.request_timeout == 12
            assert api.max_workers == 3
            assert api.rate_gate.request_limit == 7
            assert api.rate_gate.time_window == 2.0
            assert api.listeners == []

    def test_time_unit_and_request_limit_arguments(self):
        with CrptApi(TimeUnit.MINUTES, 100, http_client=Mock(spec=HttpClient)) as api:
            assert api.rate_gate.time_window == 60.0
            assert api.rate_gate.request_limit == 100

    def test_close_closes_owned_gate(self):
        api = CrptApi(TimeUnit.SECONDS, 1, http_client=Mock(spec=HttpClient))

        api.close()
        api.close()

        assert api.rate_gate.closed is True

    @pytest.mark.parametrize("kwargs", [
        {"max_workers": 0},
        {"request_timeout": 0},
    ])
    def test_invalid_arguments_do_not_start_replenisher(self, kwargs):
        def replenishers():
            return {t for t in threading.enumerate() if t.name.startswith("rate-gate-replenisher")}

        before = replenishers()

        with pytest.raises(AssertionError):
            CrptApi(TimeUnit.SECONDS, 1, http_client=Mock(spec=HttpClient), **kwargs)

        assert replenishers() == before

    def test_concurrent_close_shuts_down_once(self):
        api = CrptApi(TimeUnit.SECONDS, 1, http_client=Mock(spec=HttpClient))
        shutdown = Mock(wraps=api.executor.shutdown)
        api.executor.shutdown = shutdown
        barrier = threading.Barrier(5)

        def close():
            barrier.wait()
            api.close()

        threads = [threading.Thread(target=close) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert shutdown.call_count == 1
        assert api.rate_gate.closed is True

    def test_close_keeps_shared_gate_open(self):
        gate = RateGate(request_limit=1, time_window=60.0, autostart=False)

        CrptApi(rate_gate=gate, http_client=Mock(spec=HttpClient)).close()

        assert gate.closed is False
        gate.close()

    def test_submit_after_close_raises(self):
        api = CrptApi(TimeUnit.SECONDS, 1, http_client=Mock(spec=HttpClient))
        api.close()

        with pytest.raises(RuntimeError, match="closed"):
            api.submit(make_request())

    def test_close_closes_owned_http_client_only(self):
        http_client = Mock(spec=HttpClient)

        CrptApi(TimeUnit.SECONDS, 1, http_client=http_client).close()

        http_client.close.assert_not_called()

    def test_rate_gate_can_not_be_combined_with_limits(self):
        gate = RateGate(request_limit=1, time_window=60.0, autostart=False)
        with pytest.raises(AssertionError, match="can not be combined with rate_gate"):
            CrptApi(TimeUnit.SECONDS, 5, rate_gate=gate, http_client=Mock(spec=HttpClient))
        gate.close()

    def test_shared_gate_limits_all_clients(self):
        gate = RateGate(request_limit=1, time_window=60.0, max_wait_time=0.05, autostart=False)
        http_client = Mock(spec=HttpClient)
        release_http = threading.Event()

        def slow_post(*args, **kwargs):
            release_http.wait(timeout=5)
            return make_response({}, status_code=200)

        http_client.post.side_effect = slow_post
        api_a = CrptApi(rate_gate=gate, http_client=http_client)
        api_b = CrptApi(rate_gate=gate, http_client=http_client)
        try:
            future = api_a.submit(make_request("doc-1"))

            response = api_b.execute(make_request("doc-2"))

            assert response.is_timeout()
            release_http.set()
            assert future.result(timeout=2).is_success()
        finally:
            release_http.set()
            api_a.close()
            api_b.close()
            gate.close()
