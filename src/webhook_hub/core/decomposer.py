"""Keyword-based decomposition of project requirements into components."""

import logging
import re

from webhook_hub.models import ProjectInfo, TaskComponent, TaskDecomposition

logger = logging.getLogger(__name__)

# Extra sessions on top of the components: analysis, testing and review
EXTRA_SESSIONS_COUNT = 3

COMPONENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "api": ("api", "endpoint", "rest", "graphql", "service"),
    "frontend": ("ui", "frontend", "react", "vue", "angular", "interface"),
    "backend": ("backend", "server", "database", "model", "schema"),
    "auth": ("auth", "authentication", "authorization", "security", "jwt", "oauth"),
    "testing": ("test", "testing", "unit test", "integration test"),
    "deployment": ("deploy", "deployment", "docker", "kubernetes", "ci/cd"),
}

COMPONENT_PRIORITIES = {
    "auth": "high",
    "backend": "high",
    "api": "high",
    "frontend": "medium",
    "testing": "low",
    "deployment": "low",
}

# Candidate dependencies per component; only those actually present are kept
COMPONENT_DEPENDENCIES: dict[str, tuple[str, ...]] = {
    "api": ("backend",),
    "frontend": ("api",),
    "testing": ("backend", "api", "frontend"),
    "deployment": ("backend", "api", "frontend", "testing"),
}

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def _mentions(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def extract_component_requirements(requirements: str, component: str, keywords: tuple[str, ...]) -> str:
    """Sentences of the requirements that mention one of the component's keywords."""
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(requirements)]
    relevant = [s for s in sentences if s and _mentions(s.lower(), keywords)]
    if relevant:
        return ". ".join(relevant)
    return f"Implement {component} functionality as described in the overall requirements"


def determine_strategy(components: list[TaskComponent]) -> str:
    if any(c.dependencies for c in components):
        return "wait_for_core"
    if len(components) > 3:
        return "parallel"
    return "sequential"


class TaskDecomposer:
    """Splits a project's requirements into prioritized, dependency-ordered components.

    Deterministic and total: every requirements string yields at least one
    component, and dependencies only point at components already detected,
    so the result is acyclic.
    """

    def __init__(
        self,
        keywords: dict[str, tuple[str, ...]] | None = None,
        priorities: dict[str, str] | None = None,
        dependencies: dict[str, tuple[str, ...]] | None = None,
    ):
        self.keywords = keywords or COMPONENT_KEYWORDS
        self.priorities = priorities or COMPONENT_PRIORITIES
        self.dependencies = dependencies if dependencies is not None else COMPONENT_DEPENDENCIES

    def decompose(self, project: ProjectInfo | str) -> TaskDecomposition:
        requirements = project if isinstance(project, str) else project.requirements
        if not isinstance(project, str):
            logger.info("Decomposing project %s", project.repository)

        components = self.analyze_requirements(requirements)
        return TaskDecomposition(
            components=components,
            strategy=determine_strategy(components),
            estimated_sessions=len(components) + EXTRA_SESSIONS_COUNT,
        )

    def analyze_requirements(self, requirements: str) -> list[TaskComponent]:
        lowered = requirements.lower()
        present = [name for name, words in self.keywords.items() if _mentions(lowered, words)]

        components = []
        for name in present:
            deps = [d for d in self.dependencies.get(name, ()) if d in present]
            components.append(TaskComponent(
                name=name,
                requirements=extract_component_requirements(requirements, name, self.keywords[name]),
                priority=self.priorities.get(name, "medium"),
                dependencies=deps,
            ))

        if not components:
            components.append(TaskComponent(
                name="implementation",
                requirements=requirements,
                priority="high",
                dependencies=[],
            ))
        return components
