"""Rule table mapping abnormal lab findings to candidate recommendations.

Indicator names arrive from external parsers in more than one language, so
issues are detected by keyword on the lower-cased name and then confirmed by
the direction of the deviation from the reference range.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from .models import CompanyType, LabAnalysis, LabIndicator, RecommendationType

MULTIPLE_ABNORMALITIES_THRESHOLD = 3
MAX_FALLBACK_ANALYSES = 2


@dataclass(frozen=True)
class Finding:
    issue: str
    analysis: LabAnalysis
    indicator: LabIndicator | None = None
    abnormal_count: int = 0


@dataclass(frozen=True)
class CandidateSpec:
    type: RecommendationType
    title: str
    priority: int
    description: str
    reason: str
    company_types: tuple[CompanyType, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class _IssueMatcher:
    issue: str
    keywords: tuple[str, ...]
    direction: str

    def matches_name(self, name: str) -> bool:
        lowered = name.lower()
        return any(keyword in lowered for keyword in self.keywords)

    def deviates(self, indicator: LabIndicator) -> bool:
        if self.direction == "low":
            return indicator.below_range
        return indicator.above_range


# First name match wins, so HbA1c lands on glucose before hemoglobin is tried.
_MATCHERS: tuple[_IssueMatcher, ...] = (
    _IssueMatcher("high_glucose", ("glucose", "hba1c", "glycated", "глюкоз"), "high"),
    _IssueMatcher("vitamin_d_deficiency", ("vitamin d", "25-oh", "calcidiol", "витамин d", "кальцидиол"), "low"),
    _IssueMatcher("high_cholesterol", ("cholesterol", "ldl", "холестерин"), "high"),
    _IssueMatcher("low_hemoglobin", ("hemoglobin", "haemoglobin", "hgb", "гемоглобин"), "low"),
    _IssueMatcher("iron_deficiency", ("ferritin", "iron", "ферритин", "железо"), "low"),
)


def detect_findings(analysis: LabAnalysis) -> list[Finding]:
    findings: list[Finding] = []
    seen: set[str] = set()
    abnormal = analysis.abnormal_indicators
    for indicator in abnormal:
        for matcher in _MATCHERS:
            if not matcher.matches_name(indicator.name):
                continue
            if matcher.deviates(indicator) and matcher.issue not in seen:
                seen.add(matcher.issue)
                findings.append(Finding(issue=matcher.issue, analysis=analysis, indicator=indicator))
            break
    if len(abnormal) >= MULTIPLE_ABNORMALITIES_THRESHOLD:
        findings.append(
            Finding(issue="multiple_abnormalities", analysis=analysis, abnormal_count=len(abnormal))
        )
    return findings


def _level(indicator: LabIndicator | None) -> str:
    if indicator is None:
        return "n/a"
    unit = f" {indicator.unit}" if indicator.unit else ""
    return f"{indicator.value:g}{unit}"


def _indicator_metadata(indicator: LabIndicator | None) -> dict[str, Any]:
    if indicator is None:
        return {}
    return {
        "indicator": indicator.name,
        "current_value": indicator.value,
        "unit": indicator.unit,
        "normal_range": indicator.normal_range(),
    }


def _vitamin_d(finding: Finding) -> list[CandidateSpec]:
    level = _level(finding.indicator)
    return [
        CandidateSpec(
            type=RecommendationType.LAB_RETEST,
            title="Vitamin D follow-up test",
            priority=5,
            description=f"Repeat the vitamin D test 2-3 months after starting supplements. Current level: {level}.",
            reason=f"Low vitamin D ({level})",
            company_types=(CompanyType.LABORATORY,),
            metadata={"test_type": "vitamin_d", **_indicator_metadata(finding.indicator)},
        ),
        CandidateSpec(
            type=RecommendationType.SUPPLEMENT,
            title="Vitamin D3 supplement",
            priority=5,
            description="Vitamin D3 at 2000-4000 IU per day is commonly used to correct a deficiency. "
            "Confirm the dose with your doctor.",
            reason=f"Vitamin D deficiency ({level})",
            company_types=(CompanyType.PHARMACY, CompanyType.HEALTH_STORE),
            metadata={"supplement_type": "vitamin_d3", "dosage": "2000-4000 IU", "duration": "2-3 months"},
        ),
        CandidateSpec(
            type=RecommendationType.ARTICLE,
            title="Vitamin D: why it matters and how to correct a deficiency",
            priority=3,
            description="Background reading on the role of vitamin D, the causes of deficiency and how it is treated.",
            reason="Vitamin D deficiency",
            metadata={"reading_time": "10 min"},
        ),
    ]


def _cholesterol(finding: Finding) -> list[CandidateSpec]:
    level = _level(finding.indicator)
    return [
        CandidateSpec(
            type=RecommendationType.CLINIC_VISIT,
            title="Cardiologist consultation",
            priority=4,
            description=f"Elevated cholesterol ({level}) warrants a cardiovascular risk assessment.",
            reason=f"High cholesterol ({level})",
            company_types=(CompanyType.CLINIC,),
            metadata={"specialty": "cardiology", **_indicator_metadata(finding.indicator)},
        ),
        CandidateSpec(
            type=RecommendationType.SERVICE,
            title="Nutritionist consultation for diet correction",
            priority=4,
            description="A nutritionist can put together an eating plan aimed at lowering cholesterol.",
            reason=f"High cholesterol ({level})",
            company_types=(CompanyType.NUTRITIONIST,),
            metadata={"service_type": "nutrition_consultation"},
        ),
        CandidateSpec(
            type=RecommendationType.SERVICE,
            title="Regular physical activity",
            priority=3,
            description="Moderate aerobic exercise 3-4 times a week improves the lipid profile.",
            reason="High cholesterol",
            company_types=(CompanyType.FITNESS_CENTER,),
            metadata={"activity_type": "cardio", "frequency": "3-4 times a week", "duration": "30-45 min"},
        ),
    ]


def _glucose(finding: Finding) -> list[CandidateSpec]:
    level = _level(finding.indicator)
    return [
        CandidateSpec(
            type=RecommendationType.CLINIC_VISIT,
            title="Endocrinologist consultation",
            priority=5,
            description="An endocrinologist can assess carbohydrate metabolism and rule out diabetes.",
            reason=f"High glucose ({level})",
            company_types=(CompanyType.CLINIC,),
            metadata={"specialty": "endocrinology", **_indicator_metadata(finding.indicator)},
        ),
        CandidateSpec(
            type=RecommendationType.LAB_RETEST,
            title="Glycated hemoglobin (HbA1c) test",
            priority=4,
            description="HbA1c reflects the average blood glucose over the last 2-3 months.",
            reason="High glucose",
            company_types=(CompanyType.LABORATORY,),
            metadata={"test_type": "hba1c"},
        ),
    ]


def _anemia(finding: Finding) -> list[CandidateSpec]:
    level = _level(finding.indicator)
    name = finding.indicator.name if finding.indicator else "hemoglobin"
    return [
        CandidateSpec(
            type=RecommendationType.SUPPLEMENT,
            title="Iron supplements for anemia",
            priority=4,
            description="Oral iron is the usual first-line treatment. Take it on an empty stomach and "
            "away from calcium and tea.",
            reason=f"Low {name} ({level})",
            company_types=(CompanyType.PHARMACY,),
            metadata={"supplement_type": "iron", **_indicator_metadata(finding.indicator)},
        ),
        CandidateSpec(
            type=RecommendationType.CLINIC_VISIT,
            title="General practitioner consultation",
            priority=5,
            description="A doctor should look for the cause of the anemia before treatment is chosen.",
            reason=f"Low {name}",
            company_types=(CompanyType.CLINIC,),
            metadata={"specialty": "general_practice"},
        ),
    ]


def _multiple(finding: Finding) -> list[CandidateSpec]:
    count = finding.abnormal_count
    return [
        CandidateSpec(
            type=RecommendationType.CLINIC_VISIT,
            title="Comprehensive medical checkup",
            priority=5,
            description=f"{count} results are outside their reference ranges. "
            "A full checkup can find the common cause.",
            reason=f"Multiple abnormal results ({count} indicators)",
            company_types=(CompanyType.CLINIC,),
            metadata={
                "abnormal_count": count,
                "abnormal_indicators": [indicator.name for indicator in finding.analysis.abnormal_indicators],
            },
        )
    ]


def fallback_candidates(analysis: LabAnalysis) -> list[CandidateSpec]:
    return [
        CandidateSpec(
            type=RecommendationType.LAB_RETEST,
            title=f"Follow-up test: {analysis.title}",
            priority=4,
            description="Repeat the test to confirm the deviation and track how it changes.",
            reason="Abnormal values in a lab result",
            company_types=(CompanyType.LABORATORY,),
            metadata={"analysis_title": analysis.title},
        ),
        CandidateSpec(
            type=RecommendationType.CLINIC_VISIT,
            title="Doctor consultation on test results",
            priority=3,
            description="Book a doctor to interpret the abnormal values and agree on next steps.",
            reason="Abnormal values in a lab result",
            company_types=(CompanyType.CLINIC,),
        ),
    ]


RULES: dict[str, Callable[[Finding], list[CandidateSpec]]] = {
    "vitamin_d_deficiency": _vitamin_d,
    "high_cholesterol": _cholesterol,
    "high_glucose": _glucose,
    "low_hemoglobin": _anemia,
    "iron_deficiency": _anemia,
    "multiple_abnormalities": _multiple,
}


def candidates_for(finding: Finding) -> list[CandidateSpec]:
    rule = RULES.get(finding.issue)
    return rule(finding) if rule else []
