"""Company registry and per-company step rules.

Each company runs flatbed, dry van, or both. Whether an applicant has to
do flatbed training is decided once, when the tracker is created (or the
company changes), and stored on the tracker.
"""

from dataclasses import dataclass
from enum import Enum

from drivedock.core.errors import ValidationError


class ApplicationType(Enum):
    """Kind of driving position applied for."""

    FLAT_BED = "FLAT_BED"
    DRY_VAN = "DRY_VAN"


@dataclass(frozen=True)
class Company:
    """Business unit an applicant can onboard with.

    Attributes:
        id: Stable identifier stored on trackers.
        name: Display name used in emails.
        country_code: "CA" or "US".
        has_flatbed: Runs flatbed freight.
        has_dry_van: Runs dry van freight.
    """

    id: str
    name: str
    country_code: str
    has_flatbed: bool
    has_dry_van: bool


COMPANIES: dict[str, Company] = {
    c.id: c
    for c in (
        Company("ssp-ca", "SSP Truckline Inc", "CA", has_flatbed=True, has_dry_van=True),
        Company("ssp-us", "SSP Trucklines Inc", "US", has_flatbed=True, has_dry_van=True),
        Company("fellowtrans", "FellowsTrans Inc", "CA", has_flatbed=True, has_dry_van=False),
        Company("webfreight", "Web Freight Inc", "CA", has_flatbed=True, has_dry_van=False),
        Company("nesh", "New England Steel Haulers Inc", "CA", has_flatbed=True, has_dry_van=False),
    )
}


def get_company(company_id: str) -> Company:
    """Look up a company by id.

    Raises:
        ValidationError: If the company is unknown.
    """
    company = COMPANIES.get(company_id)
    if company is None:
        raise ValidationError(f"Unknown company: '{company_id}'")
    return company


def can_have_flatbed_training(
    company: Company, application_type: ApplicationType | None
) -> bool:
    """Whether flatbed training applies at all for this company and type.

    False at a company with no flatbed work, and for a dry van applicant at
    a company that runs dry van.
    """
    if not company.has_flatbed:
        return False
    if application_type is ApplicationType.DRY_VAN and company.has_dry_van:
        return False
    return True


def needs_flatbed_training(
    company: Company,
    application_type: ApplicationType | None,
    has_flatbed_experience: bool,
) -> bool:
    """Whether the flatbed training step is part of the applicant's flow.

    Experienced flatbed drivers skip it; otherwise it follows
    can_have_flatbed_training.
    """
    if has_flatbed_experience:
        return False
    return can_have_flatbed_training(company, application_type)
