"""Tests for keyword scoring and agent ranking."""

from agentpool.app.models import Agent, AgentStatus, Task
from agentpool.orchestrator import AssignmentEngine, extract_keywords


def make_agent(agent_id, capabilities, load=0, status=AgentStatus.IDLE):
    return Agent(
        id=agent_id,
        name=agent_id,
        capabilities=capabilities,
        load=load,
        status=status,
    )


def test_extract_keywords_filters_short_and_stop_words():
    words = extract_keywords("Fix the login bug and refactor THIS module, refactor!")

    assert words == ["login", "refactor", "module", "refactor"]


def test_score_counts_substring_matches():
    engine = AssignmentEngine()
    task = Task(title="Refactor parser", description="debugging help")
    agent = make_agent("a", ["Refactoring", "debug", "parsers"])

    # refactor -> Refactoring, parser -> parsers; "debugging" is not inside "debug"
    assert engine.score(task, agent) == 2.0


def test_score_scaled_by_load():
    engine = AssignmentEngine()
    task = Task(title="review security")
    agent = make_agent("a", ["review", "security"], load=50)

    assert engine.score(task, agent) == 1.0


def test_fully_loaded_agent_scores_zero():
    engine = AssignmentEngine()
    task = Task(title="review security")

    assert engine.score(task, make_agent("a", ["review"], load=100)) == 0.0


def test_rank_skips_busy_and_non_matching_agents():
    engine = AssignmentEngine()
    task = Task(title="Write documentation")
    agents = [
        make_agent("busy", ["documentation"], status=AgentStatus.WORKING),
        make_agent("coder", ["code"]),
        make_agent("writer", ["documentation"]),
    ]

    ranked = engine.rank_agents(task, agents)

    assert [agent.id for agent, _ in ranked] == ["writer"]


def test_find_best_agent_prefers_higher_score():
    engine = AssignmentEngine()
    task = Task(title="implement feature", description="implement tests")
    agents = [
        make_agent("one", ["feature"]),
        make_agent("two", ["implement"]),
    ]

    assert engine.find_best_agent(task, agents).id == "two"


def test_find_best_agent_none_when_nothing_matches():
    engine = AssignmentEngine()
    task = Task(title="paint the fence")

    assert engine.find_best_agent(task, [make_agent("a", ["code"])]) is None


def test_tie_goes_to_lowest_agent_id():
    """Equal scores resolve to the lowest agent ID whatever the input order."""
    engine = AssignmentEngine()
    task = Task(title="review code")
    zeta = make_agent("zeta", ["review"])
    alpha = make_agent("alpha", ["review"])

    picks = {engine.find_best_agent(task, order).id for order in ([zeta, alpha], [alpha, zeta])}
    picks |= {engine.find_best_agent(task, [zeta, alpha]).id for _ in range(10)}

    assert picks == {"alpha"}
