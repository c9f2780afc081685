"""
Data models for the document-creation client.

This module contains the data structures used across the crpt client:
- Description, Product, Document: The document payload (frozen/immutable)
- SubmissionRequest: A document plus its signature, ready to be submitted
- SubmissionResponse: The outcome of a single submission
- SubmissionStatus: Enum of submission outcomes
"""
import enum
import uuid
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

from crpt._utils import is_timeout_exception, safe_file_name, save_json_file


def _iso(value: str | date | None) -> str | None:
    if isinstance(value, date):
        return value.isoformat()
    return value


# ======================
# Document payload
# ======================

@dataclass(frozen=True)
class Description:
    """
    Description block of a document.

    Attributes:
        participant_inn: Tax id of the participant submitting the document.
    """
    participant_inn: str

    def to_dict(self) -> dict[str, Any]:
        return {"participantInn": self.participant_inn}


@dataclass(frozen=True)
class Product:
    """
    A single product line of a document.

    Date fields accept either ISO-8601 strings or `datetime.date` objects.
    """
    certificate_document: str | None = None
    certificate_document_date: str | date | None = None
    certificate_document_number: str | None = None
    owner_inn: str | None = None
    producer_inn: str | None = None
    production_date: str | date | None = None
    tnved_code: str | None = None
    uit_code: str | None = None
    uitu_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "certificate_document": self.certificate_document,
            "certificate_document_date": _iso(self.certificate_document_date),
            "certificate_document_number": self.certificate_document_number,
            "owner_inn": self.owner_inn,
            "producer_inn": self.producer_inn,
            "production_date": _iso(self.production_date),
            "tnved_code": self.tnved_code,
            "uit_code": self.uit_code,
            "uitu_code": self.uitu_code,
        }


@dataclass(frozen=True)
class Document:
    """
    A document for introducing goods produced in the Russian Federation.

    The client treats a document as an opaque payload: it is only
    serialized into the `description` field of the request body.

    Attributes:
        description: Participant description block.
        doc_id: Document identifier.
        doc_status: Document status.
        doc_type: Document type (e.g., "LP_INTRODUCE_GOODS").
        import_request: Whether this is an import request (wire name `importRequest`).
        owner_inn: Owner tax id.
        participant_inn: Participant tax id.
        producer_inn: Producer tax id.
        production_date: Production date (ISO-8601 string or date).
        production_type: Production type.
        products: Ordered product lines.
        reg_date: Registration date (ISO-8601 string or date).
        reg_number: Registration number.

    Example:
        >>> doc = Document(
        ...     description=Description(participant_inn="7700000000"),
        ...     doc_id="42",
        ...     doc_type="LP_INTRODUCE_GOODS",
        ...     products=(Product(tnved_code="6401", uit_code="010461..."),),
        ... )
        >>> doc.to_dict()["doc_id"]
        '42'
    """
    description: Description | None = None
    doc_id: str | None = None
    doc_status: str | None = None
    doc_type: str | None = None
    import_request: bool = False
    owner_inn: str | None = None
    participant_inn: str | None = None
    producer_inn: str | None = None
    production_date: str | date | None = None
    production_type: str | None = None
    products: tuple[Product, ...] = ()
    reg_date: str | date | None = None
    reg_number: str | None = None

    def __post_init__(self) -> None:
        # Accept any iterable of products but keep the instance hashable
        object.__setattr__(self, "products", tuple(self.products or ()))

    def to_dict(self) -> dict[str, Any]:
        """Converts the document to its JSON wire representation."""
        return {
            "description": self.description.to_dict() if self.description else None,
            "doc_id": self.doc_id,
            "doc_status": self.doc_status,
            "doc_type": self.doc_type,
            "importRequest": self.import_request,
            "owner_inn": self.owner_inn,
            "participant_inn": self.participant_inn,
            "producer_inn": self.producer_inn,
            "production_date": _iso(self.production_date),
            "production_type": self.production_type,
            "products": [p.to_dict() for p in self.products],
            "reg_date": _iso(self.reg_date),
            "reg_number": self.reg_number,
        }


# ======================
# Submission
# ======================

class SubmissionStatus(enum.StrEnum):
    """
    Outcome of a document submission.

    Attributes:
        SUCCESS: The server answered with a 2xx status.
        FAILURE: The server answered with a non-2xx status (see `status_code`).
        ERROR: Client-side error (network issues, serialization, unexpected errors).
        TIMEOUT: The HTTP call or the wait for a rate gate permit timed out.
        CANCELLED: The submission was cancelled before it was dispatched.
    """
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_exception(cls, exc: BaseException) -> "SubmissionStatus":
        """
        Determine the appropriate status for an exception.

        Returns:
            TIMEOUT for timeout exceptions, CANCELLED for cancellations, ERROR for all others.
        """
        from concurrent.futures import CancelledError

        from crpt._rate_limit import AcquisitionCancelledError

        if isinstance(exc, (AcquisitionCancelledError, CancelledError)):
            return cls.CANCELLED
        return cls.TIMEOUT if is_timeout_exception(exc) else cls.ERROR


@dataclass(frozen=True)
class SubmissionRequest:
    """
    Represents a document-creation request.

    Attributes:
        document: The document to create.
        signature: Signature of the document (sent as-is).
        id: Unique identifier for this request. Auto-generated as UUID if not provided.
        metadata: Optional dictionary for storing custom metadata (e.g., source file).

    Example:
        >>> request = SubmissionRequest(document=doc, signature="MIIG...")
        >>> request.to_request_body()["signature"]
        'MIIG...'
    """
    document: Document
    signature: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        assert self.id, "Request ID can not be empty."
        assert self.document is not None, "Request document can not be None."
        assert self.signature is not None, "Request signature can not be None."

    def to_request_body(self) -> dict[str, Any]:
        """Converts the request to the body expected by the document-creation endpoint."""
        return {
            "description": self.document.to_dict(),
            "signature": self.signature,
        }

    def write_to_file(self, output_dir: Path) -> Path:
        """
        Persists the request body to a JSON file for debugging purposes.

        The file is named `{request_id}-request.json`.

        Returns:
            Path to the created JSON file.
        """
        assert output_dir, "Output directory is required."
        assert output_dir.is_dir(), f"Output directory is not a directory ({output_dir})."

        target_file = output_dir / f"{safe_file_name(self.id)}-request.json"
        save_json_file(
            data=self.to_request_body(),
            file_path=target_file
        )
        return target_file


@dataclass(frozen=True)
class SubmissionResponse:
    """
    Represents the outcome of a document submission.

    Attributes:
        request: The original SubmissionRequest.
        status: The outcome (SUCCESS, FAILURE, ERROR, TIMEOUT or CANCELLED).
        status_code: HTTP status code, when the server answered.
        raw_response: The response body (parsed JSON when possible, else text).
        error: Error message describing what went wrong (only set on non-SUCCESS status).

    Example:
        >>> response = api.execute(request)
        >>> if response.is_success():
        ...     print(response.raw_response)
        ... else:
        ...     print(f"Error: {response.error}")
    """
    request: SubmissionRequest
    status: SubmissionStatus
    status_code: int | None = None
    raw_response: Any | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        assert self.request, "Submission request can not be empty."
        assert self.status, "Status can not be empty."

    def is_success(self) -> bool:
        """Returns True if the server accepted the document (2xx)."""
        return self.status == SubmissionStatus.SUCCESS

    def is_failure(self) -> bool:
        """Returns True if the server answered with a non-2xx status."""
        return self.status == SubmissionStatus.FAILURE

    def is_error(self) -> bool:
        """Returns True if a client-side error occurred."""
        return self.status == SubmissionStatus.ERROR

    def is_timeout(self) -> bool:
        return self.status == SubmissionStatus.TIMEOUT

    def is_cancelled(self) -> bool:
        return self.status == SubmissionStatus.CANCELLED

    def error_with_details(self) -> dict[str, Any]:
        """Returns a dictionary with error details for non-successful responses."""
        if self.is_success():
            return {}

        return {
            "status": self.status,
            "status_code": self.status_code,
            "error_message": self.error,
            "response_body": self.raw_response or {},
        }

    def write_to_file(self, output_dir: Path) -> Path:
        """
        Persists the response to a JSON file for debugging purposes.

        The file is named `{request_id}-response-{status}.json`.

        Returns:
            Path to the created JSON file.
        """
        assert output_dir, "Output directory is required."
        assert output_dir.is_dir(), f"Output directory is not a directory ({output_dir})."

        data: Any = self.raw_response
        if not self.is_success():
            data = self.error_with_details()
        elif not isinstance(data, dict):
            data = {"response_body": data}

        target_file = output_dir / f"{safe_file_name(self.request.id)}-response-{self.status}.json"
        save_json_file(
            data=data,
            file_path=target_file
        )
        return target_file
