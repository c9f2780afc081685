"""
Event listeners for document submissions.

This module contains the SubmissionEventListener base class and concrete
implementations for observing the submission lifecycle.

Available Listeners:
    - SubmissionEventListener: Base class for all event listeners.
    - FileLoggingListener: Persists request/response to JSON files for debugging.

Example:
    >>> from crpt import CrptApi, FileLoggingListener
    >>> listener = FileLoggingListener(Path("./output/crpt"))
    >>> api = CrptApi(listeners=[listener])
"""

from pathlib import Path
from typing import Any, override

from crpt._models import SubmissionRequest, SubmissionResponse


class SubmissionEventListener:
    """
    Base class for observing document submission lifecycle events.

    Listeners are read-only observers: they can react to events, log, notify,
    or collect metrics, but should NOT modify the request or response.
    Exceptions raised by a listener are logged and never reach the caller.

    The `context` dict is shared across all listener calls for a single
    submission, allowing listeners to store and retrieve state.

    Lifecycle:
        1. on_before_submit: before waiting for a rate gate permit.
        2. on_dispatch: on a worker thread, with the permit held, right before the HTTP call.
        3. on_after_submit: after the permit has been released, with the final response.

    Example:
        >>> class MetricsListener(SubmissionEventListener):
        ...     def on_dispatch(self, request, context):
        ...         context['start_time'] = time.time()
        ...
        ...     def on_after_submit(self, request, response, context):
        ...         duration = time.time() - context.get('start_time', time.time())
        ...         statsd.timing('crpt.duration', duration)
    """

    def on_before_submit(self, request: SubmissionRequest, context: dict[str, Any]) -> None:
        """
        Called before the caller waits for a rate gate permit.

        Args:
            request: The request about to be submitted.
            context: Mutable dict for sharing state between listener calls.
        """
        pass

    def on_dispatch(self, request: SubmissionRequest, context: dict[str, Any]) -> None:
        """
        Called on a worker thread right before the HTTP call is made.

        Not called when the submission is cancelled before dispatch.

        Args:
            request: The request being dispatched.
            context: Mutable dict for sharing state between listener calls.
        """
        pass

    def on_after_submit(
        self,
        request: SubmissionRequest,
        response: SubmissionResponse,
        context: dict[str, Any],
    ) -> None:
        """
        Called after the submission completes and its permit was released.

        Check response.status or response.is_success() to determine the outcome.

        Args:
            request: The submitted request.
            response: The final response (always provided, check status for outcome).
            context: Mutable dict for sharing state between listener calls.
        """
        pass


class FileLoggingListener(SubmissionEventListener):
    """
    Listener that persists request and response to JSON files for debugging.

    This listener writes files to the specified output directory:
    - `{request_id}-request.json`: The request body
    - `{request_id}-response-{status}.json`: The response body or error details
    """

    def __init__(self, output_dir: Path | str):
        """
        Args:
            output_dir: Directory where JSON files will be saved (Path or str).
                       Created automatically if it doesn't exist.
        """
        assert output_dir, "Output directory is required."

        self.output_dir: Path = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    @override
    def on_dispatch(self, request: SubmissionRequest, context: dict[str, Any]) -> None:
        request.write_to_file(output_dir=self.output_dir)

    @override
    def on_after_submit(
        self,
        request: SubmissionRequest,
        response: SubmissionResponse,
        context: dict[str, Any],
    ) -> None:
        response.write_to_file(output_dir=self.output_dir)
