"""Validation and normalisation of reviewer submissions.

``evaluate_submission`` turns a raw stage submission into a well-formed
``StageDecision`` or raises the ``ReviewError`` that names the failing
precondition.  It has no side effects: persistence is done by the review
workflow inside one transaction.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from app.models.ssc_models import (
    MAX_AMOUNT,
    PARALLEL_STAGES,
    STAGE_PAYLOAD_MODELS,
    TERMINAL_APPLICATION_STATUSES,
    ApplicationStatus,
    DecisionType,
    ReviewStage,
    StageOutcome,
    StageState,
)
from app.services.review_errors import (
    ApplicationClosed,
    ApplicationNotSubmitted,
    IncompleteChecklist,
    IncompleteVerification,
    InvalidPayload,
    InvalidTransition,
    MissingReason,
    NotFound,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Required documents for document verification
# ---------------------------------------------------------------------------
DOCUMENT_CHECKLIST_ITEMS: dict[str, str] = {
    "valid_id": "Valid ID",
    "birth_certificate": "Birth Certificate",
    "barangay_certificate": "Barangay Certificate",
    "income_certificate": "Income Certificate",
    "certificate_of_enrollment": "Certificate of Enrollment",
    "good_moral_certificate": "Certificate of Good Moral",
    "academic_records": "Academic Records (TOR/Grades)",
}

# Short keys sent by the admin console, optionally suffixed with "_verified".
CHECKLIST_ALIASES: dict[str, str] = {
    "birth_cert": "birth_certificate",
    "barangay_cert": "barangay_certificate",
    "income_cert": "income_certificate",
    "coe": "certificate_of_enrollment",
    "good_moral": "good_moral_certificate",
}

_LEGACY_SUFFIX = "_verified"


@dataclass(frozen=True)
class StageDecision:
    """A validated reviewer action, ready to be appended to the ledger."""

    stage: ReviewStage
    outcome: StageOutcome | StageState
    reviewer_id: str
    review_data: dict[str, Any] = field(default_factory=dict)
    notes: str | None = None
    reviewer_role: str | None = None
    decision_type: DecisionType = DecisionType.REVIEW


def parse_stage(stage: str | ReviewStage) -> ReviewStage:
    try:
        return ReviewStage(stage)
    except ValueError:
        raise NotFound(
            f"Unknown review stage '{stage}'",
            stage=str(stage),
            valid_stages=[s.value for s in ReviewStage],
        ) from None


def parse_outcome(outcome: str | StageOutcome) -> StageOutcome:
    try:
        return StageOutcome(outcome)
    except ValueError:
        raise InvalidPayload(
            f"Unknown outcome '{outcome}'",
            outcome=str(outcome),
            valid_outcomes=[o.value for o in StageOutcome],
        ) from None


def ensure_open(application_status: str) -> None:
    """Raise unless the application can still receive stage decisions."""
    status = ApplicationStatus(application_status)
    if status in TERMINAL_APPLICATION_STATUSES:
        raise ApplicationClosed(
            f"Application is {status.value}; no further stage decisions are accepted",
            application_status=status.value,
        )
    if status == ApplicationStatus.DRAFT:
        raise ApplicationNotSubmitted(
            "Application has not been submitted for SSC review",
            application_status=status.value,
        )


def _normalise_checklist(raw: dict[str, Any]) -> dict[str, bool]:
    checklist: dict[str, bool] = {key: False for key in DOCUMENT_CHECKLIST_ITEMS}
    unknown: list[str] = []
    for key, value in raw.items():
        item = key[: -len(_LEGACY_SUFFIX)] if key.endswith(_LEGACY_SUFFIX) else key
        item = CHECKLIST_ALIASES.get(item, item)
        if item not in checklist:
            unknown.append(key)
            continue
        checklist[item] = bool(value)
    if unknown:
        raise InvalidPayload(
            "Unknown document checklist items",
            unknown_items=sorted(unknown),
            valid_items=list(DOCUMENT_CHECKLIST_ITEMS),
        )
    return checklist


def _parse_payload(stage: ReviewStage, payload: dict[str, Any] | None) -> dict[str, Any]:
    model = STAGE_PAYLOAD_MODELS[stage]
    try:
        parsed = model.model_validate(payload or {})
    except ValidationError as exc:
        raise InvalidPayload(
            f"Invalid review data for {stage.value}",
            errors=[
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ],
        ) from exc

    data = parsed.model_dump(mode="json")
    if stage == ReviewStage.DOCUMENT_VERIFICATION:
        data["checklist"] = _normalise_checklist(data.get("checklist") or {})
    return data


def _check_document_verification(data: dict[str, Any]) -> None:
    unchecked = [key for key, ok in data["checklist"].items() if not ok]
    if unchecked:
        raise IncompleteChecklist(
            "All required documents must be verified before approval",
            unchecked_items=unchecked,
            unchecked_labels=[DOCUMENT_CHECKLIST_ITEMS[key] for key in unchecked],
        )


def _check_financial_review(data: dict[str, Any]) -> None:
    failing: list[str] = []
    if not data.get("income_verified"):
        failing.append("income_verified")
    if not data.get("budget_available"):
        failing.append("budget_available")
    amount = data.get("recommended_amount")
    if amount is None or amount < 0:
        failing.append("recommended_amount")
    if failing:
        raise IncompleteVerification(
            "Financial review cannot be approved until income and budget are "
            "verified and a non-negative recommended amount is given",
            failing_fields=failing,
        )


def check_amount(field_name: str, value: Any) -> None:
    """Raise InvalidPayload if *value* does not fit an amount column."""
    if value is not None and float(value) > MAX_AMOUNT:
        raise InvalidPayload(
            f"{field_name} exceeds the maximum of {MAX_AMOUNT:,.2f}",
            errors=[
                {
                    "field": field_name,
                    "message": f"Input should be less than or equal to {MAX_AMOUNT}",
                }
            ],
        )


def evaluate_submission(
    *,
    application_status: str,
    stage: str | ReviewStage,
    outcome: str | StageOutcome,
    review_data: dict[str, Any] | None,
    notes: str | None,
    reviewer_id: str,
    reviewer_role: str | None = None,
) -> StageDecision:
    """Validate a reviewer's submission and return a normalised decision.

    Raises:
        NotFound: Unknown stage.
        ApplicationClosed: Application already approved, rejected or withdrawn.
        ApplicationNotSubmitted: Application is still a draft.
        MissingReason: Rejection or revision request without notes.
        InvalidTransition: Revision requested on final approval.
        InvalidPayload: Malformed review data or unknown outcome.
        IncompleteChecklist: Document verification approved with unchecked items.
        IncompleteVerification: Financial review approved without the
            required flags or amount.
    """
    review_stage = parse_stage(stage)
    stage_outcome = parse_outcome(outcome)
    ensure_open(application_status)

    cleaned_notes = notes.strip() if notes else None
    if stage_outcome == StageOutcome.REJECTED and not cleaned_notes:
        raise MissingReason(
            "A reason is required to reject a stage",
            stage=review_stage.value,
        )
    if stage_outcome == StageOutcome.REVISION_REQUESTED:
        if review_stage not in PARALLEL_STAGES:
            raise InvalidTransition(
                "Revisions can only be requested on document verification, "
                "financial review or academic review",
                stage=review_stage.value,
            )
        if not cleaned_notes:
            raise MissingReason(
                "Notes are required to request a revision",
                stage=review_stage.value,
            )

    data = _parse_payload(review_stage, review_data)

    if stage_outcome == StageOutcome.APPROVED:
        if review_stage == ReviewStage.DOCUMENT_VERIFICATION:
            _check_document_verification(data)
        elif review_stage == ReviewStage.FINANCIAL_REVIEW:
            _check_financial_review(data)

    logger.debug(
        "Evaluated %s submission for stage %s by %s",
        stage_outcome.value,
        review_stage.value,
        reviewer_id,
    )
    if stage_outcome == StageOutcome.REVISION_REQUESTED:
        # The stage stays open; the ledger records the request.
        return StageDecision(
            stage=review_stage,
            outcome=StageState.PENDING,
            reviewer_id=reviewer_id,
            review_data=data,
            notes=cleaned_notes,
            reviewer_role=reviewer_role,
            decision_type=DecisionType.REVISION_REQUESTED,
        )
    return StageDecision(
        stage=review_stage,
        outcome=stage_outcome,
        reviewer_id=reviewer_id,
        review_data=data,
        notes=cleaned_notes,
        reviewer_role=reviewer_role,
    )
