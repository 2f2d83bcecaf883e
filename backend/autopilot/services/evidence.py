"""Evidence packet construction and completeness scoring per dispute reason."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from autopilot.services.types import ChargeContext, DisputeEvent, EvidenceProfile


SCORE_CAP = 100

EVIDENCE_WEIGHTS = {
    "customer_name": 10,
    "customer_email": 10,
    "product_description": 15,
    "support_interaction": 15,
    "terms_url": 10,
    "refund_policy_url": 10,
    "cancellation_policy_url": 10,
    "access_log": 10,
    "shipping_tracking_number": 10,
}

PLAYBOOKS = {
    "fraudulent": "Applied fraud playbook: customer identity + transaction legitimacy evidence.",
    "product_not_received": "Applied delivery playbook: shipment + delivery proof focus.",
    "product_unacceptable": "Applied product-quality playbook: product description + support history focus.",
    "subscription_canceled": "Applied subscription playbook: cancellation/refund policy + service timeline focus.",
    "duplicate": "Applied duplicate-charge playbook: single-charge validation and transaction mapping.",
}
GENERAL_PLAYBOOK = "Applied general playbook: complete transaction and policy evidence pack."


@dataclass
class EvidenceInput:
    reason: str
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    product_description: Optional[str] = None
    terms_url: Optional[str] = None
    refund_policy_url: Optional[str] = None
    cancellation_policy_url: Optional[str] = None
    access_log: Optional[str] = None
    support_interaction: Optional[str] = None
    shipping_carrier: Optional[str] = None
    shipping_tracking_number: Optional[str] = None
    shipping_date: Optional[str] = None
    expected_descriptor: Optional[str] = None
    observed_descriptor: Optional[str] = None
    support_email: Optional[str] = None
    support_phone: Optional[str] = None


@dataclass
class BuiltEvidence:
    payload: Dict[str, Any]
    score: int
    summary: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {"payload": self.payload, "score": self.score, "summary": list(self.summary)}


def _trim(value: Optional[str]) -> str:
    return str(value or "").strip()


def playbook_for_reason(reason: Optional[str]) -> str:
    return PLAYBOOKS.get(str(reason or ""), GENERAL_PLAYBOOK)


def score_evidence(evidence: EvidenceInput) -> int:
    score = 0
    for key, weight in EVIDENCE_WEIGHTS.items():
        if _trim(getattr(evidence, key)):
            score += weight
    return min(SCORE_CAP, score)


def descriptor_mismatch(expected: Optional[str], observed: Optional[str]) -> Optional[str]:
    """Warning line when the configured descriptor is absent from the charge descriptor."""
    wanted = _trim(expected)
    if not wanted:
        return None
    seen = _trim(observed)
    if wanted.lower() in seen.lower():
        return None
    return f'Statement descriptor mismatch: expected "{wanted}", charge shows "{seen}".'


def build_evidence_package(evidence: EvidenceInput) -> BuiltEvidence:
    reason = _trim(evidence.reason)
    summary: List[str] = [playbook_for_reason(reason)]

    text_lines = [f"Automated evidence packet generated for reason={reason}"]
    if _trim(evidence.terms_url):
        text_lines.append(f"Terms: {_trim(evidence.terms_url)}")
    if _trim(evidence.refund_policy_url):
        text_lines.append(f"Refund policy: {_trim(evidence.refund_policy_url)}")
    if _trim(evidence.cancellation_policy_url):
        text_lines.append(f"Cancellation policy: {_trim(evidence.cancellation_policy_url)}")
    contacts = [_trim(evidence.support_email), _trim(evidence.support_phone)]
    contact = " / ".join(value for value in contacts if value)
    if contact:
        text_lines.append(f"Support contact: {contact}")

    fields: Dict[str, str] = {
        "customer_name": _trim(evidence.customer_name),
        "customer_email_address": _trim(evidence.customer_email),
        "product_description": _trim(evidence.product_description),
        "service_date": _trim(evidence.shipping_date),
        "access_activity_log": _trim(evidence.access_log),
        "customer_communication": _trim(evidence.support_interaction),
        "uncategorized_text": "\n".join(text_lines),
    }
    if _trim(evidence.shipping_carrier) and _trim(evidence.shipping_tracking_number):
        fields["shipping_carrier"] = _trim(evidence.shipping_carrier)
        fields["shipping_tracking_number"] = _trim(evidence.shipping_tracking_number)

    warning = descriptor_mismatch(evidence.expected_descriptor, evidence.observed_descriptor)
    if warning:
        summary.append(warning)

    score = score_evidence(evidence)
    summary.append(f"Evidence score: {score}/100")
    return BuiltEvidence(payload={"evidence": fields, "submit": False}, score=score, summary=summary)


def evidence_input_from_profile(
    dispute: DisputeEvent,
    profile: Optional[EvidenceProfile],
    charge: Optional[ChargeContext] = None,
    statement_descriptor: Optional[str] = None,
    shipping_tracking_number: Optional[str] = None,
    support_email: Optional[str] = None,
    support_phone: Optional[str] = None,
) -> EvidenceInput:
    profile = profile or EvidenceProfile()
    charge = charge or ChargeContext()
    support = f"{profile.support_policy_template or ''}\n{profile.onboarding_proof_template or ''}".strip()
    return EvidenceInput(
        reason=dispute.reason,
        customer_email=charge.billing_email,
        customer_name=charge.billing_name,
        product_description=profile.product_description_template,
        terms_url=profile.terms_url,
        refund_policy_url=profile.refund_policy_url,
        cancellation_policy_url=profile.cancellation_policy_url,
        access_log=profile.delivery_proof_template,
        support_interaction=support,
        shipping_carrier=profile.shipping_carrier,
        shipping_tracking_number=shipping_tracking_number,
        expected_descriptor=statement_descriptor,
        observed_descriptor=charge.statement_descriptor,
        support_email=support_email,
        support_phone=support_phone,
    )


def compute_evidence(
    dispute: DisputeEvent,
    profile: Optional[EvidenceProfile],
    charge: Optional[ChargeContext] = None,
    statement_descriptor: Optional[str] = None,
    support_email: Optional[str] = None,
    support_phone: Optional[str] = None,
) -> BuiltEvidence:
    return build_evidence_package(
        evidence_input_from_profile(
            dispute,
            profile,
            charge,
            statement_descriptor=statement_descriptor,
            support_email=support_email,
            support_phone=support_phone,
        )
    )
