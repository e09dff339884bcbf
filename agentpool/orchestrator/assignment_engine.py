"""Keyword scoring of tasks against agent capabilities."""

import logging
import re
from typing import Iterable, Optional

from agentpool.app.models import Agent, AgentStatus, Task

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "had",
    "her", "was", "one", "our", "out", "day", "get", "has", "him", "his",
    "how", "its", "may", "new", "now", "old", "see", "two", "way", "who",
    "boy", "did", "she", "use", "with", "this", "that", "from", "they",
    "have", "will", "would", "there", "their",
})

MIN_KEYWORD_LENGTH = 4

_WORD_RE = re.compile(r"[a-z0-9]+")


def extract_keywords(text: str) -> list[str]:
    """
    Split text into lowercase keywords.

    Words shorter than MIN_KEYWORD_LENGTH and stop words are dropped.
    Repeated words are kept, so they weigh more in the score.
    """
    return [
        word
        for word in _WORD_RE.findall(text.lower())
        if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS
    ]


class AssignmentEngine:
    """
    Stateless matcher picking the agent best suited for a task.

    The score is a keyword heuristic: every task keyword found inside an
    agent capability adds one point, and the total is scaled down by the
    agent's load.
    """

    def score(self, task: Task, agent: Agent) -> float:
        """
        Score how well an agent fits a task.

        Args:
            task: Task to place
            agent: Candidate agent

        Returns:
            Non-negative score; 0 means no capability matched
        """
        capabilities = [c.lower() for c in agent.capabilities]
        score = 0.0
        for keyword in extract_keywords(f"{task.title} {task.description}"):
            for capability in capabilities:
                if keyword in capability:
                    score += 1.0

        load_factor = 1.0 - agent.load / 100.0
        return score * load_factor

    def rank_agents(self, task: Task, agents: Iterable[Agent]) -> list[tuple[Agent, float]]:
        """
        Order idle agents by score, best first.

        Agents that are not idle or score zero are left out. Equal scores
        are ordered by agent ID so the ranking never depends on input order.
        """
        ranked = []
        for agent in agents:
            if agent.status != AgentStatus.IDLE:
                continue
            score = self.score(task, agent)
            if score > 0:
                ranked.append((agent, score))

        ranked.sort(key=lambda pair: (-pair[1], pair[0].id))
        return ranked

    def find_best_agent(self, task: Task, agents: Iterable[Agent]) -> Optional[Agent]:
        """
        Pick the highest-scoring idle agent.

        Ties go to the lowest agent ID.

        Returns:
            The chosen agent, or None if no agent scores above zero
        """
        ranked = self.rank_agents(task, agents)
        if not ranked:
            logger.debug(f"No agent scored above zero for task {task.id or task.title}")
            return None
        best, score = ranked[0]
        logger.debug(f"Best agent for task {task.id or task.title}: {best.id} ({score:.2f})")
        return best
