"""
Feature/system dependency graph generated from the document.
"""

import json
from typing import List

from pydantic import ValidationError

from .agent import ModelMessage
from .policy import ResiliencePolicy
from .review_agent import strip_code_fences
from ..core.errors import UpstreamModelError
from ..core.schema import ImpactGraph
from ..util.logging import logger

IMPACT_SYSTEM_PROMPT = """You are a senior system architect. Analyze the product requirements document and build a feature-to-system-module dependency graph.

Answer with a strict JSON object and no Markdown fences:
{
  "nodes": [
    { "id": "feature or module name", "group": 1 (feature) or 2 (service) or 3 (database), "val": weight between 5 and 20 }
  ],
  "links": [
    { "source": "node id", "target": "node id" }
  ]
}
Extract at least 5-8 key nodes and their dependencies."""


def build_impact_messages(prd_content: str) -> List[ModelMessage]:
    return [
        ModelMessage(role="system", content=IMPACT_SYSTEM_PROMPT),
        ModelMessage(role="user", content=f"Analyze this PRD and generate the graph:\n{prd_content}"),
    ]


def parse_impact_graph(raw: str) -> ImpactGraph:
    """Validate model output as a graph; duplicate nodes and dangling links are dropped."""
    try:
        graph = ImpactGraph.model_validate(json.loads(strip_code_fences(raw)))
    except (json.JSONDecodeError, ValidationError) as e:
        raise UpstreamModelError(f"Graph generation failed: model returned an invalid graph ({e.__class__.__name__})")

    nodes = []
    node_ids = set()
    for node in graph.nodes:
        if node.id in node_ids:
            continue
        node_ids.add(node.id)
        nodes.append(node)

    links = [link for link in graph.links if link.source in node_ids and link.target in node_ids]
    return ImpactGraph(nodes=nodes, links=links)


def generate_impact_graph(prd_content: str, policy: ResiliencePolicy) -> ImpactGraph:
    """Generate a graph; raises UpstreamModelError when the chain fails or the output is unusable."""
    reply = policy.call(build_impact_messages(prd_content), purpose="impact")
    graph = parse_impact_graph(reply.content)
    logger.log_operation("impact", "success", {
        "model": reply.model_used,
        "nodes": len(graph.nodes),
        "links": len(graph.links)
    })
    return graph
