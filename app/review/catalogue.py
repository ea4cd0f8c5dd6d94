"""Per-program document catalogue and the roles staffing each review office."""
from __future__ import annotations

from dataclasses import dataclass

from app.core.models import Program, ReviewStage


@dataclass(frozen=True)
class DocumentSpec:
    document_type: str
    stage: ReviewStage
    required: bool
    label: str


FIRST = ReviewStage.INITIAL_REVIEW
SECOND = ReviewStage.TECHNICAL_REVIEW

DOCUMENT_CATALOGUE: dict[Program, tuple[DocumentSpec, ...]] = {
    Program.ZONING_CLEARANCE: (
        DocumentSpec("proof_of_ownership", FIRST, True, "Proof of ownership (title or contract of lease)"),
        DocumentSpec("vicinity_map", FIRST, True, "Vicinity map"),
        DocumentSpec("tax_clearance", FIRST, True, "Real property tax clearance"),
        DocumentSpec("environmental_clearance", FIRST, False, "Environmental compliance certificate"),
        DocumentSpec("dpwh_clearance", FIRST, False, "DPWH clearance"),
        DocumentSpec("business_permit", FIRST, False, "Business permit"),
        DocumentSpec("signature_file", FIRST, False, "Applicant signature"),
        DocumentSpec("site_development_plan", SECOND, True, "Site development plan"),
        DocumentSpec("building_plan", SECOND, True, "Building plan"),
        DocumentSpec("subdivision_permit", SECOND, False, "Subdivision permit"),
        DocumentSpec("fire_safety_clearance", SECOND, False, "Fire safety evaluation clearance"),
    ),
    Program.HOUSING_ASSISTANCE: (
        DocumentSpec("government_id", FIRST, True, "Valid government ID"),
        DocumentSpec("income_proof", FIRST, True, "Proof of income"),
        DocumentSpec("residency_proof", FIRST, True, "Proof of residency"),
        DocumentSpec("family_composition", FIRST, True, "Family composition"),
        DocumentSpec("affidavit_non_ownership", FIRST, True, "Affidavit of non-ownership"),
        DocumentSpec("senior_pwd_id", FIRST, False, "Senior citizen or PWD ID"),
        DocumentSpec("solo_parent_id", FIRST, False, "Solo parent ID"),
        DocumentSpec("ofw_docs", FIRST, False, "OFW documents"),
        DocumentSpec("barangay_endorsement", FIRST, False, "Barangay endorsement"),
        DocumentSpec("employment_cert", FIRST, False, "Certificate of employment"),
        DocumentSpec("inspection_report", SECOND, False, "Field inspection report"),
        DocumentSpec("site_photos", SECOND, False, "Site photos"),
    ),
}

OFFICE_ROLES: dict[Program, dict[ReviewStage, frozenset[str]]] = {
    Program.ZONING_CLEARANCE: {
        FIRST: frozenset({"zoning_officer"}),
        SECOND: frozenset({"building_officer"}),
    },
    Program.HOUSING_ASSISTANCE: {
        FIRST: frozenset({"housing_officer"}),
        SECOND: frozenset({"housing_inspector"}),
    },
}

# Program -> (config key, fallback prefix) for application numbers.
NUMBER_PREFIX_KEYS: dict[Program, tuple[str, str]] = {
    Program.ZONING_CLEARANCE: ("zoning_number_prefix", "ZC"),
    Program.HOUSING_ASSISTANCE: ("housing_number_prefix", "HA"),
}


def document_spec(program: Program, document_type: str) -> DocumentSpec | None:
    return next(
        (spec for spec in DOCUMENT_CATALOGUE[program] if spec.document_type == document_type),
        None,
    )


def required_document_types(program: Program) -> list[str]:
    return [spec.document_type for spec in DOCUMENT_CATALOGUE[program] if spec.required]


def office_roles(program: Program, stage: ReviewStage) -> frozenset[str]:
    return OFFICE_ROLES[program][stage]
