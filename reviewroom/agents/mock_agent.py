"""
Mock model client that answers without external dependencies.
Used for development (AI_FORCE_MOCK=true) and when no model server is reachable.
"""

import json
from typing import Any, Dict, List

from .agent import BaseModelClient, ModelMessage


class MockModelClient(BaseModelClient):
    """
    Deterministic stand-in for a model server.
    Recognizes the review, impact and consensus prompts and returns well-formed canned output.
    """

    name = "mock"

    REVIEW_RESPONSE = [
        {
            "type": "LOGIC",
            "severity": "WARNING",
            "position": "Overview",
            "originalText": "",
            "comment": "Success metrics are not defined; add measurable acceptance criteria."
        },
        {
            "type": "RISK",
            "severity": "SUGGESTION",
            "position": "Error handling",
            "originalText": "",
            "comment": "Describe the failure and retry behaviour for external dependencies."
        }
    ]

    IMPACT_RESPONSE = {
        "nodes": [
            {"id": "Document editor", "group": 1, "val": 15},
            {"id": "Review comments", "group": 1, "val": 10},
            {"id": "Sync service", "group": 2, "val": 12},
            {"id": "Model gateway", "group": 2, "val": 8},
            {"id": "Room store", "group": 3, "val": 14}
        ],
        "links": [
            {"source": "Document editor", "target": "Sync service"},
            {"source": "Review comments", "target": "Sync service"},
            {"source": "Review comments", "target": "Model gateway"},
            {"source": "Sync service", "target": "Room store"}
        ]
    }

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []

    def chat(self, model: str, messages: List[ModelMessage], timeout: float) -> str:
        self.calls.append({"model": model, "timeout": timeout})
        kind = self._classify_request(messages)

        if kind == "review":
            return "```json\n" + json.dumps(self.REVIEW_RESPONSE) + "\n```"
        if kind == "impact":
            return json.dumps(self.IMPACT_RESPONSE)
        if kind == "consensus":
            return "The team leans towards the leading option; confirm with the remaining reviewers."
        return "Mock model reply."

    def _classify_request(self, messages: List[ModelMessage]) -> str:
        """Classify the request by its system prompt."""
        system = " ".join(m.content for m in messages if m.role == "system").lower()

        if "review" in system and "severity" in system:
            return "review"
        elif "dependency graph" in system:
            return "impact"
        elif "consensus" in system:
            return "consensus"
        else:
            return "general"

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status.update({
            'calls': len(self.calls),
            'capabilities': ['review', 'impact', 'consensus']
        })
        return status
