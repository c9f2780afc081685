"""Tests for document and submission models."""

import json
import tempfile
import unittest
from concurrent.futures import CancelledError
from datetime import date
from pathlib import Path

import requests

from crpt import (
    AcquisitionCancelledError,
    Description,
    Document,
    Product,
    RateGateClosedError,
    SubmissionRequest,
    SubmissionResponse,
    SubmissionStatus,
    TokenAcquisitionTimeoutError,
)


def make_document():
    return Document(
        description=Description(participant_inn="7700000000"),
        doc_id="doc-42",
        doc_status="DRAFT",
        doc_type="LP_INTRODUCE_GOODS",
        import_request=True,
        owner_inn="7700000001",
        participant_inn="7700000000",
        producer_inn="7700000002",
        production_date=date(2024, 1, 20),
        production_type="OWN_PRODUCTION",
        products=[
            Product(
                certificate_document="CONFORMITY_CERTIFICATE",
                certificate_document_date="2024-01-10",
                certificate_document_number="RU-123",
                owner_inn="7700000001",
                producer_inn="7700000002",
                production_date=date(2024, 1, 20),
                tnved_code="6401100000",
                uit_code="010461111111111121abc",
                uitu_code=None,
            ),
        ],
        reg_date="2024-01-21",
        reg_number="REG-1",
    )


class TestDocumentToDict(unittest.TestCase):
    """Tests for the JSON wire representation of a document."""

    def test_uses_wire_field_names(self):
        data = make_document().to_dict()

        self.assertEqual(
            list(data.keys()),
            [
                "description", "doc_id", "doc_status", "doc_type", "importRequest",
                "owner_inn", "participant_inn", "producer_inn", "production_date",
                "production_type", "products", "reg_date", "reg_number",
            ],
        )
        self.assertEqual(data["description"], {"participantInn": "7700000000"})
        self.assertIs(data["importRequest"], True)

    def test_dates_are_iso_strings(self):
        data = make_document().to_dict()

        self.assertEqual(data["production_date"], "2024-01-20")
        self.assertEqual(data["reg_date"], "2024-01-21")
        self.assertEqual(data["products"][0]["production_date"], "2024-01-20")
        self.assertEqual(data["products"][0]["certificate_document_date"], "2024-01-10")

    def test_products_keep_order_and_wire_names(self):
        document = Document(products=[Product(uit_code="A"), Product(uit_code="B")])

        products = document.to_dict()["products"]

        self.assertEqual([p["uit_code"] for p in products], ["A", "B"])
        self.assertEqual(
            set(products[0].keys()),
            {
                "certificate_document", "certificate_document_date", "certificate_document_number",
                "owner_inn", "producer_inn", "production_date", "tnved_code", "uit_code", "uitu_code",
            },
        )

    def test_products_are_stored_as_tuple(self):
        document = Document(products=[Product(uit_code="A")])
        self.assertIsInstance(document.products, tuple)

    def test_empty_document(self):
        data = Document().to_dict()

        self.assertIsNone(data["description"])
        self.assertEqual(data["products"], [])
        self.assertIs(data["importRequest"], False)

    def test_document_is_serializable_as_json(self):
        json.dumps(make_document().to_dict())

    def test_document_is_frozen(self):
        document = make_document()
        with self.assertRaises(AttributeError):
            document.doc_id = "other"  # type: ignore[misc]


class TestSubmissionRequest(unittest.TestCase):

    def test_request_body(self):
        document = make_document()
        request = SubmissionRequest(document=document, signature="c2ln")

        self.assertEqual(request.to_request_body(), {
            "description": document.to_dict(),
            "signature": "c2ln",
        })

    def test_id_is_generated(self):
        first = SubmissionRequest(document=Document(), signature="s")
        second = SubmissionRequest(document=Document(), signature="s")

        self.assertTrue(first.id)
        self.assertNotEqual(first.id, second.id)

    def test_empty_id_is_rejected(self):
        with self.assertRaises(AssertionError):
            SubmissionRequest(document=Document(), signature="s", id="")

    def test_missing_signature_is_rejected(self):
        with self.assertRaises(AssertionError):
            SubmissionRequest(document=Document(), signature=None)  # type: ignore[arg-type]

    def test_write_to_file(self):
        request = SubmissionRequest(document=make_document(), signature="c2ln", id="req/1")
        with tempfile.TemporaryDirectory() as tmp:
            target = request.write_to_file(Path(tmp))

            self.assertEqual(target.name, "req_1-request.json")
            saved = json.loads(target.read_text(encoding="utf-8"))
            self.assertEqual(saved["signature"], "c2ln")
            self.assertEqual(saved["description"]["doc_id"], "doc-42")


class TestSubmissionResponse(unittest.TestCase):

    def setUp(self):
        self.request = SubmissionRequest(document=Document(doc_id="1"), signature="s", id="req-1")

    def test_predicates(self):
        cases = {
            SubmissionStatus.SUCCESS: "is_success",
            SubmissionStatus.FAILURE: "is_failure",
            SubmissionStatus.ERROR: "is_error",
            SubmissionStatus.TIMEOUT: "is_timeout",
            SubmissionStatus.CANCELLED: "is_cancelled",
        }
        for status, predicate in cases.items():
            response = SubmissionResponse(request=self.request, status=status)
            for other in cases.values():
                self.assertEqual(getattr(response, other)(), other == predicate, f"{status}.{other}()")

    def test_error_with_details_is_empty_on_success(self):
        response = SubmissionResponse(request=self.request, status=SubmissionStatus.SUCCESS, status_code=200)
        self.assertEqual(response.error_with_details(), {})

    def test_error_with_details_on_failure(self):
        response = SubmissionResponse(
            request=self.request,
            status=SubmissionStatus.FAILURE,
            status_code=403,
            raw_response={"error_message": "forbidden"},
            error="Server answered with HTTP 403 Forbidden",
        )

        self.assertEqual(response.error_with_details(), {
            "status": SubmissionStatus.FAILURE,
            "status_code": 403,
            "error_message": "Server answered with HTTP 403 Forbidden",
            "response_body": {"error_message": "forbidden"},
        })

    def test_write_to_file_on_success(self):
        response = SubmissionResponse(
            request=self.request, status=SubmissionStatus.SUCCESS, status_code=200, raw_response={"value": "1"}
        )
        with tempfile.TemporaryDirectory() as tmp:
            target = response.write_to_file(Path(tmp))

            self.assertEqual(target.name, "req-1-response-SUCCESS.json")
            self.assertEqual(json.loads(target.read_text(encoding="utf-8")), {"value": "1"})

    def test_write_to_file_on_error(self):
        response = SubmissionResponse(request=self.request, status=SubmissionStatus.ERROR, error="down")
        with tempfile.TemporaryDirectory() as tmp:
            target = response.write_to_file(Path(tmp))

            self.assertEqual(target.name, "req-1-response-ERROR.json")
            saved = json.loads(target.read_text(encoding="utf-8"))
            self.assertEqual(saved["status"], "ERROR")
            self.assertEqual(saved["error_message"], "down")


class TestSubmissionStatusFromException(unittest.TestCase):

    def test_timeouts(self):
        self.assertEqual(SubmissionStatus.from_exception(requests.Timeout()), SubmissionStatus.TIMEOUT)
        self.assertEqual(
            SubmissionStatus.from_exception(TokenAcquisitionTimeoutError(waited=1.0, max_wait_time=1.0)),
            SubmissionStatus.TIMEOUT,
        )

    def test_cancellations(self):
        self.assertEqual(
            SubmissionStatus.from_exception(AcquisitionCancelledError(waited=0.1)), SubmissionStatus.CANCELLED
        )
        self.assertEqual(SubmissionStatus.from_exception(CancelledError()), SubmissionStatus.CANCELLED)

    def test_other_errors(self):
        self.assertEqual(SubmissionStatus.from_exception(requests.ConnectionError()), SubmissionStatus.ERROR)
        self.assertEqual(SubmissionStatus.from_exception(RateGateClosedError()), SubmissionStatus.ERROR)

    def test_str_is_value(self):
        self.assertEqual(str(SubmissionStatus.SUCCESS), "SUCCESS")
