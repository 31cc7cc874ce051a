"""
Document fraud-risk scoring over raw document bytes.

Three independent signal sources:
  - forensics: producer/tool signatures, creation vs. modification dates
  - layout:    required template blocks for the policy profile, hidden layers
  - patterns:  policy jurisdiction vs. notary commission state,
               jurisdiction-specific mandatory phrases

Each source is a pure function returning RiskSignal objects. The engine
sums severity weights (HIGH 0.8, MEDIUM 0.4, LOW 0.1), caps at 1.0 and
bands the result (>0.7 HIGH, >0.3 MEDIUM, else LOW). No document means no
signals and a LOW score of 0.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .models import DocumentRisk, RiskBand, RiskSignal

SEVERITY_WEIGHTS: dict[RiskBand, float] = {
    RiskBand.HIGH: 0.8,
    RiskBand.MEDIUM: 0.4,
    RiskBand.LOW: 0.1,
}

HIGH_BAND_ABOVE = 0.7
MEDIUM_BAND_ABOVE = 0.3

# Producer strings seen on forged or mass-edited documents
SUSPICIOUS_PRODUCERS: tuple[str, ...] = (
    "suspiciouspdfgenerator",
    "pdf editor pro",
    "online pdf forge",
    "phantompdf crack",
)

# Required acknowledgment block per template (policy profile)
TEMPLATE_REQUIRED_BLOCKS: dict[str, str] = {
    "STANDARD_CA": "CALIFORNIA ALL-PURPOSE ACKNOWLEDGMENT",
}

# Phrases a notarial certificate must carry, by commission state
MANDATORY_PHRASES: dict[str, tuple[str, str]] = {
    "CA": ("penalty of perjury", 'California documents must include "penalty of perjury" language'),
}

HIDDEN_LAYER_MARKER = "<<<FLOATING_TEXT_LAYER>>>"

_PRODUCER = re.compile(r"/Producer\s*\(([^)]*)\)")
_CREATOR = re.compile(r"/Creator\s*\(([^)]*)\)")
_CREATION_DATE = re.compile(r"/CreationDate\s*\(D:(\d{4,14})")
_MOD_DATE = re.compile(r"/ModDate\s*\(D:(\d{4,14})")
_POLICY_STATE = re.compile(r"STANDARD_([A-Z]{2})")


@dataclass(frozen=True)
class RiskContext:
    policy_profile: Optional[str] = None
    notary_state: Optional[str] = None


@dataclass(frozen=True)
class RiskEngineOptions:
    check_forensics: bool = True
    check_layout: bool = True
    check_patterns: bool = True


def _text(document: bytes) -> str:
    # latin-1 maps every byte, so PDF syntax survives alongside binary streams
    return document.decode("latin-1")


# ─── Forensics ───────────────────────────────────────────────────────


def check_forensics(document: bytes) -> list[RiskSignal]:
    text = _text(document)
    signals: list[RiskSignal] = []

    for pattern in (_PRODUCER, _CREATOR):
        match = pattern.search(text)
        if match and any(bad in match.group(1).lower() for bad in SUSPICIOUS_PRODUCERS):
            signals.append(
                RiskSignal(
                    id="BAD_PRODUCER",
                    description=f"Document produced by a known-suspicious tool: {match.group(1).strip()}",
                    severity=RiskBand.HIGH,
                )
            )
            break

    created = _CREATION_DATE.search(text)
    modified = _MOD_DATE.search(text)
    if created and modified:
        # PDF dates are D:YYYYMMDDHHmmSS with trailing parts optional; pad to compare
        c = created.group(1).ljust(14, "0")
        m = modified.group(1).ljust(14, "0")
        if m < c:
            signals.append(
                RiskSignal(
                    id="INVALID_TIMESTAMPS",
                    description=f"Modification date {modified.group(1)} precedes creation date {created.group(1)}",
                    severity=RiskBand.MEDIUM,
                )
            )

    return signals


# ─── Layout ──────────────────────────────────────────────────────────


def check_layout(document: bytes, template_id: Optional[str] = None) -> list[RiskSignal]:
    text = _text(document)
    signals: list[RiskSignal] = []

    required = TEMPLATE_REQUIRED_BLOCKS.get(template_id or "")
    if required and required not in text:
        signals.append(
            RiskSignal(
                id="TEMPLATE_MISMATCH",
                description=f"Document missing required notary block for template {template_id}",
                severity=RiskBand.HIGH,
            )
        )

    if HIDDEN_LAYER_MARKER in text:
        signals.append(
            RiskSignal(
                id="HIDDEN_LAYER",
                description="Document contains hidden text layers",
                severity=RiskBand.HIGH,
            )
        )

    return signals


# ─── Patterns ────────────────────────────────────────────────────────


def check_patterns(document: bytes, context: RiskContext) -> list[RiskSignal]:
    signals: list[RiskSignal] = []

    if context.policy_profile and context.notary_state:
        match = _POLICY_STATE.search(context.policy_profile)
        if match and match.group(1) != context.notary_state:
            signals.append(
                RiskSignal(
                    id="POLICY_JURISDICTION_MISMATCH",
                    description=(
                        f"Policy profile {context.policy_profile} expects {match.group(1)}, "
                        f"but notary commission is in {context.notary_state}"
                    ),
                    severity=RiskBand.MEDIUM,
                )
            )

    mandatory = MANDATORY_PHRASES.get(context.notary_state or "")
    if mandatory:
        phrase, description = mandatory
        if phrase not in _text(document):
            signals.append(
                RiskSignal(id="MISSING_MANDATORY_PHRASE", description=description, severity=RiskBand.HIGH)
            )

    return signals


# ─── Engine ──────────────────────────────────────────────────────────


def score_signals(signals: list[RiskSignal]) -> DocumentRisk:
    if not signals:
        return DocumentRisk(score=0.0, band=RiskBand.LOW, signals=[])

    score = min(1.0, sum(SEVERITY_WEIGHTS[s.severity] for s in signals))
    if score > HIGH_BAND_ABOVE:
        band = RiskBand.HIGH
    elif score > MEDIUM_BAND_ABOVE:
        band = RiskBand.MEDIUM
    else:
        band = RiskBand.LOW
    return DocumentRisk(score=score, band=band, signals=list(signals))


class RiskEngine:
    """Read-only, side-effect-free document scorer."""

    def __init__(self, options: RiskEngineOptions | None = None):
        self.options = options or RiskEngineOptions()

    def analyze_document(
        self, document: bytes | None, context: RiskContext | None = None
    ) -> DocumentRisk:
        if not document:
            return score_signals([])
        context = context or RiskContext()

        signals: list[RiskSignal] = []
        if self.options.check_forensics:
            signals.extend(check_forensics(document))
        if self.options.check_layout:
            signals.extend(check_layout(document, template_id=context.policy_profile))
        if self.options.check_patterns:
            signals.extend(check_patterns(document, context))
        return score_signals(signals)
