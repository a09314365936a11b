"""
Structured field extraction for evidence documents.

Two collaborators implement ``analyze(data, mime_type, filename, text)``:

- ``OpenAIDocumentAnalyzer``: vision/text LLM extraction (amount, currency,
  date, supplier, document type, confidences, commentary).
- ``FilenameHeuristicAnalyzer``: keyword match on the filename, used when no
  OpenAI key is configured. It is never a fallback for a failed AI call.

Both return an ``AnalysisOutcome`` and never raise for expected failures.
"""
from __future__ import annotations

import base64
import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from django.utils import timezone
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from . import llm
from .document_text import render_pdf_first_page
from .file_types import is_image

logger = logging.getLogger(__name__)

METHOD_AI = "ai"
METHOD_HEURISTIC = "heuristic"

HEURISTIC_CONFIDENCE = 0.3


def _clamp(value: Any, default: float) -> float:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return default
    if num != num:  # NaN
        return default
    return min(max(num, 0.0), 1.0)


class ExpenseExtraction(BaseModel):
    amount: Decimal | None = None
    currency: str | None = None
    date: str | None = None
    supplier: str | None = None
    document_type: str | None = None
    confidence: float = 0.5
    confidences: dict[str, float] = Field(default_factory=dict)
    commentary: str = ""

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, value: Any):
        if value in (None, ""):
            return None
        if isinstance(value, (int, float, Decimal)):
            raw = str(value)
        else:
            raw = re.sub(r"[^\d,.\-]", "", str(value))
            # "1.234,56" / "1234,56" -> "1234.56"
            if "," in raw and "." in raw:
                raw = raw.replace(".", "").replace(",", ".") if raw.rfind(",") > raw.rfind(".") else raw.replace(",", "")
            else:
                raw = raw.replace(",", ".")
        try:
            return Decimal(raw).quantize(Decimal("0.01"))
        except (InvalidOperation, ValueError):
            return None

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: Any):
        if not value or not isinstance(value, str):
            return None
        code = value.strip().upper()
        return code[:3] if code else None

    @field_validator("date", "supplier", "document_type", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any):
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("document_type", mode="after")
    @classmethod
    def _lower_document_type(cls, value: str | None):
        return value.lower() if value else value

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any):
        return _clamp(value, 0.5)

    @field_validator("confidences", mode="before")
    @classmethod
    def _clamp_confidences(cls, value: Any):
        if not isinstance(value, dict):
            return {}
        return {str(k): _clamp(v, 0.0) for k, v in value.items()}

    @field_validator("commentary", mode="before")
    @classmethod
    def _commentary_text(cls, value: Any):
        return "" if value is None else str(value)


@dataclass
class AnalysisOutcome:
    success: bool
    method: str
    data: ExpenseExtraction | None = None
    error: str | None = None
    model: str | None = None

    @classmethod
    def failed(cls, method: str, reason: str, model: str | None = None) -> "AnalysisOutcome":
        return cls(success=False, method=method, error=reason, model=model)


class DocumentAnalyzer(Protocol):
    def analyze(self, data: bytes, mime_type: str, filename: str, text: str | None = None) -> AnalysisOutcome:
        ...


EXTRACTION_PROMPT = """You are an expert document analyzer for expense justification.
The document may be in English or French. Extract:

{
  "amount": "Total amount due as a decimal string (e.g. '1234.56'), or null",
  "currency": "3-letter ISO currency code (e.g. 'EUR', 'USD'), or null",
  "date": "Document date in YYYY-MM-DD format, or null",
  "supplier": "Supplier or vendor name, or null",
  "document_type": "invoice | receipt | contract | bill | other",
  "confidence": "Overall confidence between 0 and 1",
  "confidences": {"amount": 0.0, "currency": 0.0, "date": 0.0, "supplier": 0.0, "document_type": 0.0},
  "commentary": "One or two sentences on anything a reviewer should check"
}

IMPORTANT:
- For amount, extract the FINAL TOTAL (not subtotals)
- If a field cannot be determined, use null
- Return ONLY the JSON object, no other text
"""


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    return text


def parse_extraction(raw_response: str) -> ExpenseExtraction:
    """Parse a model reply into a validated extraction. Raises ValueError."""
    text = _strip_code_fence(raw_response)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if not match:
            raise ValueError("reply is not JSON")
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError as exc:
            raise ValueError("reply is not JSON") from exc
    if not isinstance(data, dict):
        raise ValueError("reply is not a JSON object")
    # Accept the camelCase key some models reply with.
    if "document_type" not in data and "documentType" in data:
        data["document_type"] = data.pop("documentType")
    try:
        return ExpenseExtraction.model_validate(data)
    except PydanticValidationError as exc:
        raise ValueError(f"invalid extraction: {exc.error_count()} field error(s)") from exc


class OpenAIDocumentAnalyzer:
    def analyze(self, data: bytes, mime_type: str, filename: str, text: str | None = None) -> AnalysisOutcome:
        model = llm.configured_model()
        prompt = f"{EXTRACTION_PROMPT}\nFilename: {filename}"
        try:
            if is_image(mime_type):
                raw = llm.call_openai_vision(prompt, base64.b64encode(data).decode("utf-8"), mime_type)
            elif text:
                raw = llm.call_openai_text(f"{prompt}\n\nDocument text:\n{text}")
            elif mime_type == "application/pdf":
                png = render_pdf_first_page(data)
                if png is None:
                    return AnalysisOutcome.failed(METHOD_AI, "PDF has no readable pages", model)
                raw = llm.call_openai_vision(prompt, base64.b64encode(png).decode("utf-8"), "image/png")
            else:
                return AnalysisOutcome.failed(METHOD_AI, f"no analyzable content for {mime_type}", model)
        except llm.LLMCallError as exc:
            return AnalysisOutcome.failed(METHOD_AI, str(exc), model)

        try:
            extraction = parse_extraction(raw)
        except ValueError as exc:
            logger.warning("[analysis] unparsable model reply for %s: %s", filename, raw[:300])
            return AnalysisOutcome.failed(METHOD_AI, str(exc), model)
        return AnalysisOutcome(success=True, method=METHOD_AI, data=extraction, model=model)


HEURISTIC_KEYWORDS = (
    ("invoice", ("invoice", "facture")),
    ("receipt", ("receipt", "reçu", "recu")),
    ("contract", ("contract", "contrat")),
    ("bill", ("bill", "note")),
)


def document_type_from_filename(filename: str) -> str:
    lowered = (filename or "").lower()
    for document_type, keywords in HEURISTIC_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return document_type
    return "other"


class FilenameHeuristicAnalyzer:
    def analyze(self, data: bytes, mime_type: str, filename: str, text: str | None = None) -> AnalysisOutcome:
        document_type = document_type_from_filename(filename)
        extraction = ExpenseExtraction(
            document_type=document_type,
            confidence=HEURISTIC_CONFIDENCE,
            confidences={"document_type": HEURISTIC_CONFIDENCE},
            commentary="Document type inferred from the filename only.",
        )
        return AnalysisOutcome(success=True, method=METHOD_HEURISTIC, data=extraction)


def get_document_analyzer() -> DocumentAnalyzer:
    if llm.is_configured():
        return OpenAIDocumentAnalyzer()
    return FilenameHeuristicAnalyzer()


def build_analysis_payload(outcome: AnalysisOutcome, processing_ms: int) -> dict:
    """JSON stored on ``EvidenceFile.analysis`` for a successful outcome."""
    extraction = outcome.data
    fields = {
        "amount": str(extraction.amount) if extraction.amount is not None else None,
        "currency": extraction.currency,
        "date": extraction.date,
        "supplier": extraction.supplier,
        "document_type": extraction.document_type,
    }
    confidence = {"overall": extraction.confidence}
    confidence.update(extraction.confidences)
    return {
        "fields": fields,
        "confidence": confidence,
        "commentary": extraction.commentary,
        "model": {
            "method": outcome.method,
            "model": outcome.model,
            "analyzed_at": timezone.now().isoformat(),
            "processing_ms": processing_ms,
        },
    }
