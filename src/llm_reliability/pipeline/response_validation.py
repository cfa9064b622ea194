"""Stage 3: heuristic response validation.

Four independent checks produce scores in [0, 1]:

- factual: each response claim is supported, contradicted or unverified
  against the grounded evidence (knowledge snippets and fact-check points).
  score = (supported + unverified_weight * unverified) / claims
- logical: sentence pairs that overlap heavily but disagree in polarity, or
  "always"/"never" statements about the same term.
  score = max(0, 1 - 0.5 * pairs)
- complete: parts of the query whose keywords appear in the non-disputed
  claims or in the evidence that supported them.
  score = addressed / parts
- consistent: one subject bound to different numbers, or a sentence that
  reverses something said earlier in the conversation.
  score = max(0, 1 - 0.34 * conflicts)

overall = w_f * factual + w_l * logical + w_c * complete + w_s * consistent,
with the weights normalized to sum to 1. A contradicted claim can only lower
factual, and it is excluded from completeness, so adding contradicted claims
never raises overall.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from llm_reliability.config.constants import NEGATIONS
from llm_reliability.config.settings import Settings
from llm_reliability.knowledge.tokenizer import content_terms
from llm_reliability.models.domain import (
    CheckResult,
    GroundedContext,
    QueryClassification,
    ValidationResult,
)
from llm_reliability.observability.logger import get_logger
from llm_reliability.pipeline.context_grounding import split_sentences

logger = get_logger("response_validation")

CONTRADICTION_OVERLAP = 0.6
PAIR_OVERLAP = 0.6

_WORDS = re.compile(r"[a-z']+")
_NUMBER = re.compile(r"\d+(?:[.,]\d+)?")
_QUERY_PARTS = re.compile(r"[?;]|\band also\b|\band\b|\balso\b", re.I)


@dataclass(frozen=True)
class ValidationLevel:
    name: str
    support_threshold: float
    unverified_weight: float
    unverified_raises_risk: bool = False


def levels_from_settings(settings: Settings) -> dict[str, ValidationLevel]:
    return {
        "basic": ValidationLevel(
            "basic", settings.val_support_threshold, settings.val_unverified_weight
        ),
        "strict": ValidationLevel(
            "strict", settings.strict_support_threshold, settings.strict_unverified_weight
        ),
        "enhanced": ValidationLevel(
            "enhanced",
            settings.strict_support_threshold,
            settings.strict_unverified_weight,
            unverified_raises_risk=True,
        ),
    }


def negated(text: str) -> bool:
    """Odd number of negation words means negative polarity."""
    words = _WORDS.findall(text.lower())
    return sum(1 for w in words if w in NEGATIONS) % 2 == 1


def _terms(text: str) -> set[str]:
    return {t for t in content_terms(text) if t not in NEGATIONS}


def _coverage(claim_terms: set[str], evidence_terms: set[str]) -> float:
    if not claim_terms:
        return 0.0
    return len(claim_terms & evidence_terms) / len(claim_terms)


def _severity(score: float) -> str:
    if score >= 0.8:
        return "none"
    if score >= 0.6:
        return "low"
    if score >= 0.4:
        return "medium"
    return "high"


@dataclass
class _Evidence:
    text: str
    terms: set[str]
    negated: bool


@dataclass
class _ClaimVerdict:
    text: str
    terms: set[str]
    status: str  # "supported", "contradicted", "unverified"
    evidence: _Evidence | None = None


class ResponseValidator:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._levels = levels_from_settings(settings)
        weights = (
            settings.val_w_factual,
            settings.val_w_logical,
            settings.val_w_complete,
            settings.val_w_consistent,
        )
        total = sum(weights) or 1.0
        self.weights = {
            name: w / total
            for name, w in zip(("factual", "logical", "complete", "consistent"), weights)
        }

    def validate(
        self,
        query_text: str,
        response: str,
        context: GroundedContext,
        classification: QueryClassification,
        level: str = "basic",
        history: list[str] | None = None,
        quality_threshold: float | None = None,
    ) -> ValidationResult:
        lvl = self._levels.get(level, self._levels["basic"])
        issues: list[str] = []

        evidence = self._evidence(context)
        claims = [s for s in split_sentences(response) if _terms(s)]
        verdicts = [self._judge(c, evidence, lvl) for c in claims]

        supported = sum(1 for v in verdicts if v.status == "supported")
        contradicted = sum(1 for v in verdicts if v.status == "contradicted")
        unverified = sum(1 for v in verdicts if v.status == "unverified")
        n = len(verdicts)

        # -- factual --
        if not classification.requires_facts and not evidence:
            factual = 1.0
        elif n == 0:
            factual = lvl.unverified_weight
        else:
            factual = (supported + lvl.unverified_weight * unverified) / n
        for v in verdicts:
            if v.status == "contradicted":
                issues.append(f"contradicted_claim: {v.text[:120]}")
        if unverified and (classification.requires_facts or evidence):
            issues.append(f"unverified_claims: {unverified}")

        # -- logical --
        pairs = self._logical_conflicts(split_sentences(response))
        logical = max(0.0, 1.0 - 0.5 * pairs)
        if pairs:
            issues.append(f"logical_conflicts: {pairs}")

        # -- complete --
        complete, missing = self._completeness(query_text, verdicts)
        for part in missing:
            issues.append(f"unaddressed_part: {part[:80]}")

        # -- consistent --
        conflicts = self._consistency_conflicts(split_sentences(response), history or [])
        consistent = max(0.0, 1.0 - 0.34 * conflicts)
        if conflicts:
            issues.append(f"consistency_conflicts: {conflicts}")

        scores = {
            "factual": factual,
            "logical": logical,
            "complete": complete,
            "consistent": consistent,
        }
        overall = sum(self.weights[k] * scores[k] for k in scores)
        overall = round(max(0.0, min(1.0, overall)), 4)

        checks = {
            k: CheckResult(
                passed=s >= self._settings.check_pass_threshold,
                score=round(s, 4),
                severity=_severity(s),
            )
            for k, s in scores.items()
        }

        supported_ratio = supported / n if n else 0.0
        contradicted_ratio = contradicted / n if n else 0.0
        unverified_ratio = unverified / n if n else 0.0

        risk = self._risk(
            overall, contradicted, unverified, unverified_ratio, classification, lvl
        )

        if contradicted:
            status = "disputed"
        elif n and supported_ratio >= 0.5:
            status = "verified"
        else:
            status = "unverified"

        s = self._settings
        confidence = (
            s.conf_alpha * overall + s.conf_beta * supported_ratio - s.conf_gamma * contradicted_ratio
        )
        confidence = round(max(0.0, min(1.0, confidence)), 4)

        flagged = quality_threshold is not None and overall < quality_threshold

        result = ValidationResult(
            overall_score=overall,
            checks=checks,
            issues=issues,
            confidence_score=confidence,
            hallucination_risk=risk,
            fact_check_status=status,
            contradictions=contradicted,
            unverified_ratio=round(unverified_ratio, 4),
            flagged=flagged,
        )
        logger.info(
            "response_validated",
            level=lvl.name,
            overall=overall,
            claims=n,
            supported=supported,
            contradicted=contradicted,
            unverified=unverified,
            risk=risk,
            status=status,
            flagged=flagged,
        )
        return result

    def _risk(
        self,
        overall: float,
        contradicted: int,
        unverified: int,
        unverified_ratio: float,
        classification: QueryClassification,
        lvl: ValidationLevel,
    ) -> str:
        s = self._settings
        if overall < s.risk_high_below or contradicted > 0:
            return "high"
        if overall < s.risk_medium_below:
            return "medium"
        if classification.requires_facts and unverified_ratio > 0.5:
            return "medium"
        if lvl.unverified_raises_risk and classification.requires_facts and unverified:
            return "medium"
        return "low"

    @staticmethod
    def _evidence(context: GroundedContext) -> list[_Evidence]:
        seen: set[str] = set()
        units: list[_Evidence] = []
        texts = list(context.fact_check_points)
        for r in context.sources:
            texts.extend(split_sentences(r.text))
        for text in texts:
            if text in seen:
                continue
            seen.add(text)
            terms = _terms(text)
            if terms:
                units.append(_Evidence(text, terms, negated(text)))
        return units

    @staticmethod
    def _judge(claim: str, evidence: list[_Evidence], lvl: ValidationLevel) -> _ClaimVerdict:
        terms = _terms(claim)
        polarity = negated(claim)
        best: _Evidence | None = None
        best_cov = 0.0
        for e in evidence:
            cov = _coverage(terms, e.terms)
            if cov > best_cov:
                best, best_cov = e, cov
        if best is None:
            return _ClaimVerdict(claim, terms, "unverified")
        if best.negated == polarity and best_cov >= lvl.support_threshold:
            return _ClaimVerdict(claim, terms, "supported", best)
        if best.negated != polarity and best_cov >= max(
            lvl.support_threshold, CONTRADICTION_OVERLAP
        ):
            return _ClaimVerdict(claim, terms, "contradicted", best)
        return _ClaimVerdict(claim, terms, "unverified")

    @staticmethod
    def _logical_conflicts(sentences: list[str]) -> int:
        info = [(_terms(s), negated(s), _WORDS.findall(s.lower())) for s in sentences]
        pairs = 0
        for i in range(len(info)):
            for j in range(i + 1, len(info)):
                a_terms, a_neg, a_words = info[i]
                b_terms, b_neg, b_words = info[j]
                if len(a_terms) < 2 or len(b_terms) < 2:
                    continue
                shared = a_terms & b_terms
                overlap = len(shared) / min(len(a_terms), len(b_terms))
                if overlap >= PAIR_OVERLAP and a_neg != b_neg:
                    pairs += 1
                    continue
                absolutes = ({"always", "never"} & set(a_words), {"always", "never"} & set(b_words))
                if (
                    absolutes[0]
                    and absolutes[1]
                    and absolutes[0] != absolutes[1]
                    and shared - {"always", "never"}
                ):
                    pairs += 1
        return pairs

    @staticmethod
    def _completeness(query_text: str, verdicts: list[_ClaimVerdict]) -> tuple[float, list[str]]:
        parts = [p.strip() for p in _QUERY_PARTS.split(query_text) if p and _terms(p)]
        if not parts:
            return 1.0, []
        covered: set[str] = set()
        for v in verdicts:
            if v.status == "contradicted":
                continue
            covered |= v.terms
            if v.evidence is not None:
                covered |= v.evidence.terms
        missing = []
        for part in parts:
            terms = _terms(part)
            if len(terms & covered) / len(terms) < 0.5:
                missing.append(part)
        return (len(parts) - len(missing)) / len(parts), missing

    @staticmethod
    def _consistency_conflicts(sentences: list[str], history: list[str]) -> int:
        conflicts = 0
        bindings: dict[str, set[tuple[str, ...]]] = {}
        for s in sentences:
            numbers = tuple(_NUMBER.findall(s))
            if not numbers:
                continue
            words = [t for t in content_terms(s) if not _NUMBER.fullmatch(t)]
            if not words:
                continue
            lowered = s.lower()

            def position(word: str) -> tuple[int, str]:
                pos = lowered.find(word)
                return (pos if pos >= 0 else len(lowered), word)

            subject = min(words, key=position)
            bindings.setdefault(subject, set()).add(numbers)
        conflicts += sum(1 for values in bindings.values() if len(values) > 1)

        previous = [
            (_terms(p), negated(p))
            for text in history
            for p in split_sentences(text)
        ]
        for s in sentences:
            terms = _terms(s)
            if len(terms) < 2:
                continue
            polarity = negated(s)
            for p_terms, p_neg in previous:
                if len(p_terms) < 2:
                    continue
                overlap = len(terms & p_terms) / min(len(terms), len(p_terms))
                if overlap >= PAIR_OVERLAP and p_neg != polarity:
                    conflicts += 1
                    break
        return conflicts
