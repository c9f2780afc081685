"""
Document-creation client for the CRPT ("Chestny ZNAK") API.

This module provides a thread-safe client that submits documents to the
document-creation endpoint while keeping the number of initiated calls
under a client-side rate limit. Calls are dispatched asynchronously on a
thread-pool; callers beyond the limit block until a permit is available.
"""

import logging
import threading
from collections import Counter
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, wait
from functools import partial
from typing import Any, Self

import requests

from crpt._event_listeners import SubmissionEventListener
from crpt._http import HttpClient
from crpt._models import Document, SubmissionRequest, SubmissionResponse, SubmissionStatus
from crpt._rate_limit import (
    CancellationToken,
    ClientSideRateLimitError,
    Permit,
    RateGate,
    TimeUnit,
)

logger = logging.getLogger(__name__)


class CrptApi:
    """
    Thread-safe client for creating documents through the CRPT API.

    Every submission goes through the same steps:

    1. Wait for a permit from the rate gate (blocks the calling thread).
    2. Serialize `{"description": <document>, "signature": <signature>}`.
    3. Dispatch the HTTP POST on the internal thread-pool.
    4. When the call completes (success, non-2xx answer or transport error),
       release the permit exactly once, then log and notify listeners.

    Nothing is retried: each outcome is reported once as a SubmissionResponse
    and the client stays usable afterwards.

    Example:
        >>> api = CrptApi(TimeUnit.SECONDS, 5)
        >>> future = api.create_document(document, signature="MIIG...")
        >>> response = future.result()
        >>> if response.is_success():
        ...     print(response.raw_response)
        >>> api.close()

    Args:
        time_unit: Length of the rate limit window (a TimeUnit, or seconds).
            If None, uses CRPT.config.rate_limit.time_window.
        request_limit: Maximum submissions initiated per window.
            If None, uses CRPT.config.rate_limit.request_limit.
        rate_gate: Gate to share with other clients. Mutually exclusive with
            time_unit/request_limit/max_wait_time. Not closed by `close()`.
        http_client: Transport. If None, uses EnvironmentAwareHttpClient.
        base_url: Base URL of the API. If None, uses CRPT.config.api.base_url.
        request_timeout: HTTP timeout in seconds. If None, uses CRPT.config.api.request_timeout.
        max_workers: Thread-pool size. If None, uses CRPT.config.api.max_workers.
        listeners: Event listeners. If None, no listeners are registered.
        max_wait_time: Maximum seconds to wait for a permit (None waits indefinitely).
            If not given, uses CRPT.config.rate_limit.max_wait_time.
    """

    def __init__(
        self,
        time_unit: TimeUnit | float | None = None,
        request_limit: int | None = None,
        *,
        rate_gate: RateGate | None = None,
        http_client: HttpClient | None = None,
        base_url: str | None = None,
        request_timeout: int | None = None,
        max_workers: int | None = None,
        listeners: list[SubmissionEventListener] | None = None,
        max_wait_time: float | None = None,
    ):
        from crpt._config import CRPT
        cfg = CRPT.config

        if rate_gate is not None:
            assert time_unit is None and request_limit is None and max_wait_time is None, \
                "time_unit, request_limit and max_wait_time can not be combined with rate_gate."

        if base_url is None:
            url = cfg.api.create_document_url
        else:
            url = f"{base_url.rstrip('/')}/{cfg.api.create_document_path.lstrip('/')}"

        if request_timeout is None:
            request_timeout = cfg.api.request_timeout
        if max_workers is None:
            max_workers = cfg.api.max_workers
        if listeners is None:
            listeners = []

        assert request_timeout > 0, "request_timeout must be greater than 0."
        assert max_workers, "Thread-pool max_workers can not be empty."
        assert max_workers > 0, "Thread-pool max_workers must be greater than 0."
        assert listeners is not None, "CRPT listeners can not be None."

        # Resources with threads are created only once every argument is valid
        self._owns_gate = rate_gate is None
        if rate_gate is None:
            if time_unit is None:
                time_window = cfg.rate_limit.time_window
            elif isinstance(time_unit, TimeUnit):
                time_window = time_unit.seconds
            else:
                time_window = float(time_unit)

            rate_gate = RateGate(
                request_limit=request_limit if request_limit is not None else cfg.rate_limit.request_limit,
                time_window=time_window,
                max_wait_time=max_wait_time if max_wait_time is not None else cfg.rate_limit.max_wait_time,
            )

        self._owns_http_client = http_client is None
        if http_client is None:
            from crpt._http import EnvironmentAwareHttpClient
            http_client = EnvironmentAwareHttpClient()

        self.url = url
        self.request_timeout = request_timeout
        self.max_workers = max_workers
        self.rate_gate = rate_gate
        self.http_client: HttpClient = http_client
        self.listeners: list[SubmissionEventListener] = listeners
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="crpt-dispatch")
        self._closed = False
        self._close_lock = threading.Lock()

    # ======================
    # Public API
    # ======================

    def create_document(
        self,
        document: Document,
        signature: str,
        cancel_token: CancellationToken | None = None,
    ) -> "Future[SubmissionResponse]":
        """
        Submits a document for creation.

        Blocks while the rate limit is exhausted, then returns a Future
        that resolves when the server answers.

        Args:
            document: The document to create.
            signature: The document signature.
            cancel_token: Optional token to abandon the wait for a permit.

        Returns:
            Future[SubmissionResponse]: Resolves to the submission outcome.
        """
        request = SubmissionRequest(document=document, signature=signature)
        return self.submit(request, cancel_token=cancel_token)

    def submit(
        self,
        request: SubmissionRequest,
        cancel_token: CancellationToken | None = None,
    ) -> "Future[SubmissionResponse]":
        """
        Waits for a rate gate permit and dispatches the request asynchronously.

        Args:
            request: The request to submit.
            cancel_token: Optional token to abandon the wait for a permit.

        Returns:
            Future[SubmissionResponse]: Resolves to the submission outcome. If the
            future is cancelled before it runs, `result()` raises CancelledError
            and the permit is released anyway.

        Rate gate errors are reported to listeners (as TIMEOUT, CANCELLED or
        ERROR responses) before being raised.

        Raises:
            AcquisitionCancelledError: If the token was cancelled while waiting.
            TokenAcquisitionTimeoutError: If the wait exceeded max_wait_time.
            RateGateClosedError: If the rate gate was closed.
            RuntimeError: If the client was closed.
        """
        assert request, "Submission request can not be None."
        if self._closed:
            raise RuntimeError("CrptApi is closed.")

        event_context: dict[str, Any] = {}
        self._notify_listeners("on_before_submit", request=request, context=event_context)

        try:
            permit = self.rate_gate.permit(cancel_token=cancel_token)
        except ClientSideRateLimitError as e:
            self._report(self._response_from_exception(request, e), event_context)
            raise

        try:
            body = request.to_request_body()
            future = self.executor.submit(
                self._dispatch,
                request=request,
                body=body,
                permit=permit,
                cancel_token=cancel_token,
                context=event_context,
            )
        except BaseException:
            permit.release()
            raise

        future.add_done_callback(
            partial(self._on_future_done, request=request, permit=permit, context=event_context)
        )
        return future

    def execute(
        self,
        request: SubmissionRequest,
        cancel_token: CancellationToken | None = None,
    ) -> SubmissionResponse:
        """
        Submits a request and waits for its outcome (blocking).

        Rate gate errors (timeout, cancellation, closed gate) are reported
        as TIMEOUT, CANCELLED or ERROR responses instead of being raised.

        Returns:
            SubmissionResponse: The final response, always returned even if an error occurs.
        """
        logger.info(f"{request.id[:26]:<26} | CRPT | 🛜 Starting submission of a single document.")
        logger.info(f"{request.id[:26]:<26} | CRPT |    └ url='{self.url}'")

        try:
            response = self.submit(request, cancel_token=cancel_token).result()
        except (ClientSideRateLimitError, CancelledError) as e:
            response = self._response_from_exception(request, e)

        logger.info(f"{request.id[:26]:<26} | CRPT | 🛜 Submission finished with status: {response.status}")

        assert response.request is request, \
            "🌀 Sanity check | Unexpected mismatch: response do not reference its corresponding request."
        return response

    def execute_many(
        self,
        request_list: list[SubmissionRequest],
        cancel_token: CancellationToken | None = None,
    ) -> list[SubmissionResponse]:
        """
        Submits multiple requests, waits for their completion (blocking),
        and returns their responses.

        Requests are submitted in order, each one waiting for its own permit,
        and dispatched concurrently on the thread-pool.

        Args:
            request_list: List of SubmissionRequest objects to submit.
            cancel_token: Optional token to abandon the remaining waits for permits.

        Returns:
            List[SubmissionResponse]: One response per request, in the same order.
        """
        if not request_list:
            return []

        logger.info(
            f"{'CRPT-Batch-Submission'[:26]:<26} | CRPT | "
            f"🛜 Starting batch submission of {len(request_list)} documents."
        )
        logger.info(f"{'CRPT-Batch-Submission'[:26]:<26} | CRPT |    ├ max_concurrent={self.max_workers}")
        logger.info(
            f"{'CRPT-Batch-Submission'[:26]:<26} | CRPT |    └ "
            f"request_limit={self.rate_gate.request_limit} per {self.rate_gate.time_window}s"
        )

        responses_map: dict[int, SubmissionResponse] = {}
        future_to_index: dict[Future[SubmissionResponse], int] = {}
        for idx, req in enumerate(request_list):
            try:
                future_to_index[self.submit(req, cancel_token=cancel_token)] = idx
            except ClientSideRateLimitError as e:
                logger.warning(f"{req.id[:26]:<26} | CRPT | ⚠️ Not submitted in batch(seq={idx}): {e}")
                responses_map[idx] = self._response_from_exception(req, e)

        # Block and wait for all dispatched submissions to finish
        wait(future_to_index)
        for future, idx in future_to_index.items():
            correlated_request = request_list[idx]
            try:
                responses_map[idx] = future.result()
            except CancelledError as e:
                responses_map[idx] = self._response_from_exception(correlated_request, e)
            except Exception as e:
                logger.exception(
                    f"{correlated_request.id[:26]:<26} | CRPT | ❌ Submission failed in batch(seq={idx}): {e}"
                )
                responses_map[idx] = self._response_from_exception(correlated_request, e)

        # Rebuild responses list in the same order of requests list
        responses = [
            responses_map[i] for i in range(len(request_list))
        ]

        assert all(resp.request is req for req, resp in zip(request_list, responses, strict=True)), (
            "🌀 Sanity check | Unexpected mismatch: some responses do not reference their corresponding requests."
        )

        logger.info(f"{'CRPT-Batch-Submission'[:26]:<26} | CRPT | 🛜 Batch submission finished.")
        logger.info(f"{'CRPT-Batch-Submission'[:26]:<26} | CRPT |    ├ total of responses = {len(responses)}")

        totals_per_status = Counter(r.status for r in responses)
        items = totals_per_status.items()
        for idx, (status, total) in enumerate(items):
            icon = "└" if idx == (len(items) - 1) else "├"
            logger.info(
                f"{'CRPT-Batch-Submission'[:26]:<26} | CRPT |    {icon} "
                f"total of responses with status {status:<9} = {total}"
            )

        return responses

    def close(self) -> None:
        """
        Waits for in-flight submissions to finish and releases resources.

        The rate gate and HTTP client are closed only if this client created them. Idempotent.
        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        self.executor.shutdown(wait=True)
        if self._owns_gate:
            self.rate_gate.close()
        if self._owns_http_client:
            self.http_client.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ======================
    # Internals
    # ======================

    def _dispatch(
        self,
        request: SubmissionRequest,
        body: dict[str, Any],
        permit: Permit,
        cancel_token: CancellationToken | None,
        context: dict[str, Any],
    ) -> SubmissionResponse:
        """
        Runs on a worker thread: performs the HTTP call, releases the permit,
        then reports the outcome.
        """
        try:
            if cancel_token is not None and cancel_token.is_cancelled():
                response = SubmissionResponse(
                    request=request,
                    status=SubmissionStatus.CANCELLED,
                    error="Submission cancelled before dispatch.",
                )
            else:
                self._notify_listeners("on_dispatch", request=request, context=context)
                response = self._post(request, body)
        finally:
            permit.release()

        self._report(response, context)
        return response

    def _post(self, request: SubmissionRequest, body: dict[str, Any]) -> SubmissionResponse:
        """Performs the HTTP POST and maps its outcome to a SubmissionResponse."""
        try:
            http_response = self.http_client.post(
                self.url,
                data=body,
                headers={"Content-Type": "application/json"},
                timeout=self.request_timeout,
            )
        except Exception as e:
            if isinstance(e, requests.RequestException):
                logger.error(f"{request.id[:26]:<26} | CRPT | ❌ Transport error: {e}")
            else:
                logger.exception(f"{request.id[:26]:<26} | CRPT | ❌ Unexpected error while sending document: {e}")
            return SubmissionResponse(
                request=request,
                status=SubmissionStatus.from_exception(e),
                error=f"Failed to send document: {e}",
            )

        status_code = http_response.status_code
        raw_response = self._read_body(http_response)
        if 200 <= status_code < 300:
            return SubmissionResponse(
                request=request,
                status=SubmissionStatus.SUCCESS,
                status_code=status_code,
                raw_response=raw_response,
            )

        return SubmissionResponse(
            request=request,
            status=SubmissionStatus.FAILURE,
            status_code=status_code,
            raw_response=raw_response,
            error=f"Server answered with HTTP {status_code} {http_response.reason or ''}".rstrip(),
        )

    @staticmethod
    def _read_body(http_response: requests.Response) -> Any:
        if not http_response.content:
            return None
        try:
            return http_response.json()
        except ValueError:
            return http_response.text

    def _on_future_done(
        self,
        future: "Future[SubmissionResponse]",
        request: SubmissionRequest,
        permit: Permit,
        context: dict[str, Any],
    ) -> None:
        """Releases the permit of a submission whose dispatch was cancelled before running."""
        if not future.cancelled():
            return

        permit.release()
        self._report(
            SubmissionResponse(
                request=request,
                status=SubmissionStatus.CANCELLED,
                error="Submission cancelled before dispatch.",
            ),
            context,
        )

    def _report(self, response: SubmissionResponse, context: dict[str, Any]) -> None:
        """Logs the outcome and notifies listeners. Must run after the permit was released."""
        request = response.request
        if response.is_success():
            logger.info(f"{request.id[:26]:<26} | CRPT | ✅ Document accepted (HTTP {response.status_code}).")
        elif response.is_failure():
            logger.warning(f"{request.id[:26]:<26} | CRPT | ⚠️ Document rejected: {response.error}")
        else:
            logger.warning(f"{request.id[:26]:<26} | CRPT | ⚠️ Submission ended with status {response.status}: {response.error}")

        self._notify_listeners("on_after_submit", request=request, response=response, context=context)

    @staticmethod
    def _response_from_exception(request: SubmissionRequest, exc: BaseException) -> SubmissionResponse:
        return SubmissionResponse(
            request=request,
            status=SubmissionStatus.from_exception(exc),
            error=f"Submission was not dispatched: {str(exc) or exc.__class__.__name__}",
        )

    def _notify_listeners(
        self,
        event: str,
        **kwargs: Any,
    ) -> None:
        """
        Notifies all registered listeners about an event.

        Exceptions raised by listeners are logged but do not interrupt the submission.

        Args:
            event: The event method name (e.g., 'on_before_submit').
            **kwargs: Keyword arguments to pass to the listener method.
        """
        request: SubmissionRequest | None = kwargs.get("request")
        tracking_id = request.id if request else "unknown"

        for listener in self.listeners:
            try:
                method = getattr(listener, event, None)
                if method and callable(method):
                    method(**kwargs)
            except Exception as e:
                listener_name = listener.__class__.__name__
                logger.warning(
                    f"{tracking_id[:26]:<26} | CRPT | Event listener `{listener_name}.{event}()` raised an exception: {e}"
                )
