"""
Recording-standards compliance validation of the raw document.

The validator is a collaborator: the engine only sees
``validate_document(bytes) -> ComplianceVerdict``. The bundled adapter asks
an OpenAI model to audit the extracted text against Cook County recording
requirements and reads back every "CRITICAL FAILURE" line.

Outcomes:
  - no extractable text         → FAIL
  - no OPENAI_API_KEY           → FLAGGED (check skipped, never a PASS)
  - LLM call fails              → FAIL
  - any CRITICAL FAILURE line   → FAIL, the lines become the details
  - otherwise                   → PASS
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
from typing import Callable, Protocol, runtime_checkable

import pdfplumber
from openai import AsyncOpenAI

from .models import ComplianceStatus, ComplianceVerdict

logger = logging.getLogger(__name__)

# Characters of document text sent to the model
MAX_PROMPT_CHARS = 15000

FAILURE_MARKER = "CRITICAL FAILURE"


# ─── System Prompt ───────────────────────────────────────────────────

COOK_COUNTY_SYSTEM_PROMPT = """\
You are the Cook County Compliance Validator. Perform a zero-trust audit of a
real estate document against the Cook County Clerk's mandatory recording
requirements.

Verify the presence and correctness of:
1. Geographic Jurisdiction: the property is explicitly in Cook County, Illinois.
2. Property Identification:
   * PIN: the 14-digit Property Index Number.
   * Legal Description: a full, formal legal description (Lot/Block/Subdivision).
   * Common Address: the full street address of the subject property.
3. Required Headers:
   * "Mail To": a valid name and return address.
   * "Prepared By": name and address of the preparer.
4. Formatting & Legibility:
   * Minimum 10pt font.
   * Every exhibit labeled as an "Exhibit" (e.g. "Exhibit A").
   * A signature block without a Notary Public seal/acknowledgment is "Incomplete".

Rules:
* Assume the document will be rejected if any field is missing or illegible.
* For every missing requirement write exactly one line:
  "CRITICAL FAILURE: [Requirement Name] missing."
* Non-real-estate documents skip PIN and Legal Description, but legibility and
  "Prepared By" still apply.
* Flag boilerplate legal descriptions without a specific PIN.
"""


@runtime_checkable
class ComplianceValidator(Protocol):
    async def validate_document(self, document: bytes) -> ComplianceVerdict: ...


def extract_pdf_text(document: bytes) -> str:
    """Concatenated text of every page. Raises on unreadable PDFs."""
    with pdfplumber.open(io.BytesIO(document)) as pdf:
        return "\n".join(page.extract_text() or "" for page in pdf.pages)


def parse_analysis(analysis: str) -> ComplianceVerdict:
    failures = [line.strip() for line in analysis.splitlines() if FAILURE_MARKER in line]
    if failures:
        return ComplianceVerdict(status=ComplianceStatus.FAIL, details=failures)
    return ComplianceVerdict(status=ComplianceStatus.PASS, details=["Compliance Check Passed"])


class OpenAIComplianceValidator:
    """LLM-backed recording-standards audit.

    ``text_extractor`` turns document bytes into text; it runs in a worker
    thread because PDF parsing is blocking.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-5",
        text_extractor: Callable[[bytes], str] = extract_pdf_text,
        client: AsyncOpenAI | None = None,
    ):
        self.api_key = api_key if api_key is not None else os.environ.get("OPENAI_API_KEY")
        self.model = model
        self.text_extractor = text_extractor
        self._client = client
        if not self.api_key and client is None:
            logger.warning("No OPENAI_API_KEY set; compliance validation will be skipped")

    def _openai(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def validate_document(self, document: bytes) -> ComplianceVerdict:
        logger.info("Starting compliance validation (%d bytes)", len(document))
        try:
            text = await asyncio.to_thread(self.text_extractor, document)
        except Exception as e:
            logger.error("Text extraction failed: %s", e)
            return ComplianceVerdict(
                status=ComplianceStatus.FAIL,
                details=["CRITICAL FAILURE: Unable to extract text from document for validation."],
            )

        if not text or not text.strip():
            return ComplianceVerdict(
                status=ComplianceStatus.FAIL,
                details=["CRITICAL FAILURE: Document appears empty or illegible (no text extracted)."],
            )

        if not self.api_key and self._client is None:
            return ComplianceVerdict(
                status=ComplianceStatus.FLAGGED,
                details=["SKIPPED: OpenAI API Key missing. Compliance validation bypassed."],
            )

        try:
            response = await self._openai().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": COOK_COUNTY_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": (
                            "Analyze the following document text for compliance:\n\n"
                            f"{text[:MAX_PROMPT_CHARS]}"
                        ),
                    },
                ],
            )
        except Exception as e:
            logger.error("LLM compliance analysis failed: %s", e)
            return ComplianceVerdict(status=ComplianceStatus.FAIL, details=[f"LLM Analysis Error: {e}"])

        analysis = response.choices[0].message.content or ""
        verdict = parse_analysis(analysis)
        logger.info("Compliance validation finished: %s", verdict.status.value)
        return verdict
