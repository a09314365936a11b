import json
from decimal import Decimal
from unittest import mock

import requests
from django.test import SimpleTestCase, override_settings

from core.document_analysis import (
    AnalysisOutcome,
    ExpenseExtraction,
    FilenameHeuristicAnalyzer,
    OpenAIDocumentAnalyzer,
    build_analysis_payload,
    document_type_from_filename,
    get_document_analyzer,
    parse_extraction,
)
from core.document_text import extract_text

from .helpers import PNG_BYTES, make_pdf


def _chat_response(content, status_code=200):
    response = mock.Mock()
    response.status_code = status_code
    response.text = json.dumps({"error": "x"}) if status_code != 200 else ""
    response.json.return_value = {"choices": [{"message": {"content": content}}]}
    return response


class ExtractionModelTests(SimpleTestCase):
    def test_parse_plain_json(self):
        extraction = parse_extraction(json.dumps({
            "amount": "1 234,50 €",
            "currency": "eur",
            "date": "2024-03-01",
            "supplier": "  Bureau Vallée ",
            "documentType": "Invoice",
            "confidence": 1.7,
            "confidences": {"amount": -0.2, "supplier": "0.8"},
            "commentary": None,
        }))
        self.assertEqual(extraction.amount, Decimal("1234.50"))
        self.assertEqual(extraction.currency, "EUR")
        self.assertEqual(extraction.supplier, "Bureau Vallée")
        self.assertEqual(extraction.document_type, "invoice")
        self.assertEqual(extraction.confidence, 1.0)
        self.assertEqual(extraction.confidences, {"amount": 0.0, "supplier": 0.8})
        self.assertEqual(extraction.commentary, "")

    def test_parse_fenced_and_mixed_replies(self):
        fenced = "```json\n{\"amount\": 12.5, \"supplier\": \"SNCF\"}\n```"
        self.assertEqual(parse_extraction(fenced).supplier, "SNCF")
        mixed = "Here is the data: {\"amount\": \"1,234.56\"} hope it helps"
        self.assertEqual(parse_extraction(mixed).amount, Decimal("1234.56"))

    def test_unusable_values_become_null(self):
        extraction = parse_extraction(json.dumps({"amount": "n/a", "supplier": "", "confidence": "high"}))
        self.assertIsNone(extraction.amount)
        self.assertIsNone(extraction.supplier)
        self.assertEqual(extraction.confidence, 0.5)

    def test_garbage_raises_value_error(self):
        for raw in ("not json at all", "[1, 2, 3]"):
            with self.subTest(raw=raw):
                with self.assertRaises(ValueError):
                    parse_extraction(raw)

    def test_payload_shape(self):
        outcome = AnalysisOutcome(
            success=True,
            method="ai",
            model="gpt-4o-mini",
            data=ExpenseExtraction(amount="42.00", currency="EUR", confidence=0.9, confidences={"amount": 0.95}),
        )
        payload = build_analysis_payload(outcome, processing_ms=120)
        self.assertEqual(set(payload), {"fields", "confidence", "commentary", "model"})
        self.assertEqual(payload["fields"]["amount"], "42.00")
        self.assertEqual(payload["confidence"], {"overall": 0.9, "amount": 0.95})
        self.assertEqual(payload["model"]["model"], "gpt-4o-mini")
        self.assertEqual(payload["model"]["processing_ms"], 120)
        json.dumps(payload)


@override_settings(OPENAI_API_KEY="sk-test", DOCUMENT_ANALYSIS_MODEL="gpt-4o-mini", DOCUMENT_ANALYSIS_TIMEOUT_SECONDS=5)
class OpenAIDocumentAnalyzerTests(SimpleTestCase):
    def test_image_goes_to_vision(self):
        reply = json.dumps({"amount": "19.90", "currency": "EUR", "supplier": "Fnac", "confidence": 0.8})
        with mock.patch("core.llm.requests.post", return_value=_chat_response(reply)) as post:
            outcome = OpenAIDocumentAnalyzer().analyze(PNG_BYTES, "image/png", "ticket.png")

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.data.amount, Decimal("19.90"))
        self.assertEqual(outcome.model, "gpt-4o-mini")
        body = post.call_args.kwargs["json"]
        self.assertEqual(body["model"], "gpt-4o-mini")
        image_part = body["messages"][0]["content"][0]
        self.assertTrue(image_part["image_url"]["url"].startswith("data:image/png;base64,"))
        self.assertEqual(post.call_args.kwargs["timeout"], 5)

    def test_text_documents_send_extracted_text(self):
        reply = json.dumps({"amount": "120.00"})
        with mock.patch("core.llm.requests.post", return_value=_chat_response(reply)) as post:
            outcome = OpenAIDocumentAnalyzer().analyze(b"...", "application/pdf", "facture.pdf", text="Total 120.00")
        self.assertTrue(outcome.success)
        prompt = post.call_args.kwargs["json"]["messages"][0]["content"]
        self.assertIn("Total 120.00", prompt)

    def test_http_error_is_failure(self):
        with mock.patch("core.llm.requests.post", return_value=_chat_response(None, status_code=500)):
            outcome = OpenAIDocumentAnalyzer().analyze(PNG_BYTES, "image/png", "ticket.png")
        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error, "HTTP 500")
        self.assertIsNone(outcome.data)

    def test_timeout_is_failure(self):
        with mock.patch("core.llm.requests.post", side_effect=requests.exceptions.Timeout()):
            outcome = OpenAIDocumentAnalyzer().analyze(PNG_BYTES, "image/png", "ticket.png")
        self.assertFalse(outcome.success)
        self.assertIn("timed out", outcome.error)

    def test_empty_and_unparsable_replies_are_failures(self):
        for content, reason in ((None, "empty response"), ("I cannot read this", "reply is not JSON")):
            with self.subTest(content=content):
                with mock.patch("core.llm.requests.post", return_value=_chat_response(content)):
                    outcome = OpenAIDocumentAnalyzer().analyze(PNG_BYTES, "image/png", "ticket.png")
                self.assertFalse(outcome.success)
                self.assertEqual(outcome.error, reason)

    def test_office_document_without_text_is_failure_without_call(self):
        with mock.patch("core.llm.requests.post") as post:
            outcome = OpenAIDocumentAnalyzer().analyze(b"PK..", "application/msword", "contrat.doc")
        self.assertFalse(outcome.success)
        post.assert_not_called()


class HeuristicAnalyzerTests(SimpleTestCase):
    def test_filename_keywords(self):
        cases = {
            "Facture_mars.pdf": "invoice",
            "scan-receipt.jpg": "receipt",
            "reçu taxi.png": "receipt",
            "contrat-prestation.docx": "contract",
            "note de frais.xlsx": "bill",
            "IMG_0001.jpg": "other",
        }
        for filename, expected in cases.items():
            with self.subTest(filename=filename):
                self.assertEqual(document_type_from_filename(filename), expected)

    def test_outcome_is_low_confidence(self):
        outcome = FilenameHeuristicAnalyzer().analyze(b"", "image/jpeg", "facture.jpg")
        self.assertTrue(outcome.success)
        self.assertEqual(outcome.method, "heuristic")
        self.assertEqual(outcome.data.confidence, 0.3)
        self.assertIsNone(outcome.data.amount)

    def test_analyzer_selection(self):
        with override_settings(OPENAI_API_KEY=""):
            self.assertIsInstance(get_document_analyzer(), FilenameHeuristicAnalyzer)
        with override_settings(OPENAI_API_KEY="sk-test"):
            self.assertIsInstance(get_document_analyzer(), OpenAIDocumentAnalyzer)


class DocumentTextTests(SimpleTestCase):
    def test_pdf_text(self):
        self.assertIn("Total TTC", extract_text(make_pdf(), "application/pdf"))

    def test_text_and_csv_are_decoded(self):
        self.assertEqual(extract_text("montant;42".encode(), "text/csv"), "montant;42")

    def test_images_and_broken_pdfs_yield_none(self):
        self.assertIsNone(extract_text(PNG_BYTES, "image/png"))
        self.assertIsNone(extract_text(b"not a pdf", "application/pdf"))
