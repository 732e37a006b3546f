from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True, slots=True)
class AgentProfile:
    name: str
    role: str


@dataclass(frozen=True, slots=True)
class TeamDescriptor:
    id: str
    name: str
    badge: str
    focus: str
    agents: tuple[AgentProfile, ...] = field(default_factory=tuple)

    @property
    def agent_names(self) -> List[str]:
        return [agent.name for agent in self.agents]

    def summary(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "badge": self.badge,
            "focus": self.focus,
            "agents": [{"name": agent.name, "role": agent.role} for agent in self.agents],
        }


def _team(team_id: str, name: str, badge: str, focus: str, *agents: tuple[str, str]) -> TeamDescriptor:
    return TeamDescriptor(
        id=team_id,
        name=name,
        badge=badge,
        focus=focus,
        agents=tuple(AgentProfile(name=agent_name, role=role) for agent_name, role in agents),
    )


DEFAULT_TEAMS: tuple[TeamDescriptor, ...] = (
    _team(
        "developer",
        "Developer Team",
        "DEV",
        "Architecture, implementation and quality of the product codebase.",
        ("Architect", "System design and technical direction"),
        ("Coder", "Feature implementation"),
        ("QA Engineer", "Testing and release quality"),
    ),
    _team(
        "design",
        "Design Team",
        "DSN",
        "User experience, visual language and interaction design.",
        ("UX Lead", "User research and flows"),
        ("Visual Designer", "Interface and brand visuals"),
        ("Motion Designer", "Animation and interaction polish"),
    ),
    _team(
        "communications",
        "Communications Team",
        "COM",
        "Content, messaging and social presence.",
        ("Content Strategist", "Editorial planning"),
        ("Copywriter", "Product and campaign copy"),
        ("Social Manager", "Community and social channels"),
    ),
    _team(
        "legal",
        "Legal Team",
        "LGL",
        "Compliance, contracts and intellectual property.",
        ("Compliance Officer", "Regulatory compliance"),
        ("Contract Analyst", "Agreements and terms"),
        ("IP Counsel", "Trademarks, patents and licensing"),
    ),
    _team(
        "marketing",
        "Marketing Team",
        "MKT",
        "Growth, brand positioning and campaign analytics.",
        ("Growth Lead", "Acquisition experiments"),
        ("Brand Strategist", "Positioning and narrative"),
        ("Analytics Expert", "Funnel and campaign metrics"),
    ),
    _team(
        "gtm",
        "Go-to-Market Team",
        "GTM",
        "Launch planning, partnerships and market research.",
        ("Launch Coordinator", "Launch timelines and readiness"),
        ("Partnership Manager", "Channel and partner deals"),
        ("Market Researcher", "Competitive and market analysis"),
    ),
    _team(
        "sales",
        "Sales Team",
        "SLS",
        "Pipeline, deals and customer success.",
        ("Sales Director", "Sales strategy and forecasting"),
        ("Account Executive", "Deal execution"),
        ("SDR Lead", "Outbound prospecting"),
        ("Solutions Consultant", "Technical pre-sales"),
        ("Customer Success", "Onboarding and retention"),
    ),
)


def default_team_registry() -> dict[str, TeamDescriptor]:
    return {team.id: team for team in DEFAULT_TEAMS}
