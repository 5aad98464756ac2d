"""
Advisory consensus summary for a decision's vote tally.
"""

from typing import List

from .agent import ModelMessage
from .policy import ResiliencePolicy
from ..core.schema import DecisionRecord

MAX_SUMMARY_CHARS = 500

CONSENSUS_SYSTEM_PROMPT = (
    "You summarize the consensus of a product team's vote in two sentences at most. "
    "State which option leads, how clear the margin is, and what the team should confirm next. "
    "Answer in plain text."
)


def build_consensus_messages(record: DecisionRecord) -> List[ModelMessage]:
    lines = [f"Question: {record.question}", f"Total votes: {record.total_votes}"]
    for index, option in enumerate(record.options):
        lines.append(f"- {option}: {record.tally(index)} votes")
    return [
        ModelMessage(role="system", content=CONSENSUS_SYSTEM_PROMPT),
        ModelMessage(role="user", content="\n".join(lines)),
    ]


def summarize_decision(record: DecisionRecord, policy: ResiliencePolicy) -> str:
    """Regenerate the summary text; failures propagate as ModelChainExhausted."""
    reply = policy.call(build_consensus_messages(record), purpose="consensus")
    return reply.content.strip()[:MAX_SUMMARY_CHARS]
