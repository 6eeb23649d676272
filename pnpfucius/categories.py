"""Privacy prediction-market categories."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class MarketCategory:
    id: str
    name: str
    description: str
    weight: float
    urgency: str
    templates: list[str] = field(default_factory=list)


PRIVACY_CATEGORIES: dict[str, MarketCategory] = {
    "regulation": MarketCategory(
        id="regulation",
        name="Privacy Regulation",
        description="GDPR fines, federal privacy laws, encryption and KYC rules",
        weight=0.3,
        urgency="timely",
        templates=[
            "Will the EU issue a GDPR fine over {amount} against {company} by {date}?",
            "Will the US pass a federal privacy law by {date}?",
            "Will {country} ban end-to-end encryption by {date}?",
        ],
    ),
    "technology": MarketCategory(
        id="technology",
        name="Privacy Technology",
        description="Zero-knowledge proofs, confidential transfers, privacy tooling",
        weight=0.3,
        urgency="evergreen",
        templates=[
            "Will {protocol} launch ZK proofs on mainnet by {date}?",
            "Will Solana confidential transfers exceed {volume} in volume by {date}?",
            "Will Tornado Cash sanctions be lifted by {date}?",
        ],
    ),
    "adoption": MarketCategory(
        id="adoption",
        name="Privacy Adoption",
        description="User growth, TVL milestones and enterprise uptake of privacy tools",
        weight=0.2,
        urgency="evergreen",
        templates=[
            "Will Signal reach {count} monthly active users by {date}?",
            "Will {exchange} delist a privacy coin by {date}?",
            "Will a Fortune 500 company announce ZK adoption by {date}?",
        ],
    ),
    "events": MarketCategory(
        id="events",
        name="Privacy Events",
        description="Data breaches, surveillance scandals, court cases and hackathons",
        weight=0.2,
        urgency="breaking",
        templates=[
            "Will a data breach affecting over {count} users be disclosed by {date}?",
            "Will {company} face a surveillance lawsuit by {date}?",
        ],
    ),
}


def list_categories() -> list[MarketCategory]:
    return list(PRIVACY_CATEGORIES.values())
