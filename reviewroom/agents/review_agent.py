"""
AI review of a requirements document.

The review never fails from the caller's point of view: model failures and unparseable
output are turned into displayable comments.
"""

import json
from typing import Any, Dict, List, Optional

from .agent import ModelMessage
from .policy import ResiliencePolicy
from ..core.errors import ModelChainExhausted
from ..core.schema import Comment, CommentType, KnowledgeDocument, Severity
from ..util.logging import logger

KB_SNIPPET_CHARS = 1000
AI_REVIEWER_AUTHOR = "AI Reviewer"
SYSTEM_AUTHOR = "System"

REVIEW_SYSTEM_PROMPT = """You are a principal product architect at a leading technology company. Review the product requirements document in depth.{kb_context}

Core principles:
1. Logical completeness: look for missing success metrics and missing exception flows.
2. Technical consistency: check the document against common architecture standards and the knowledge base.
3. Risk identification: identify security, performance and compliance risks.

Answer with a strict JSON array and no Markdown fences. Each element:
{{
  "type": "LOGIC" | "TECH" | "RISK" | "LANGUAGE",
  "severity": "BLOCKER" | "WARNING" | "SUGGESTION",
  "position": "section number or related text",
  "originalText": "quoted original text",
  "comment": "concrete suggestion"
}}"""


def strip_code_fences(text: str) -> str:
    """Remove Markdown code fences models like to wrap JSON in."""
    return (text or "").replace("```json", "").replace("```", "").strip()


def build_kb_context(kb_files: Optional[List[KnowledgeDocument]]) -> str:
    if not kb_files:
        return ""
    context = "\n\nLoaded knowledge base:\n"
    for doc in kb_files:
        snippet = (doc.content or "")[:KB_SNIPPET_CHARS]
        context += f"\n--- Document: {doc.name} ---\n{snippet}\n----------------\n"
    return context


def build_review_messages(prd_content: str, kb_files: Optional[List[KnowledgeDocument]] = None) -> List[ModelMessage]:
    return [
        ModelMessage(role="system", content=REVIEW_SYSTEM_PROMPT.format(kb_context=build_kb_context(kb_files))),
        ModelMessage(role="user", content=f"Review the following PRD excerpt:\n{prd_content}"),
    ]


def _coerce_enum(enum_cls, value: Any, default):
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        return default


def _comment_from_item(item: Dict[str, Any]) -> Comment:
    comment_type = _coerce_enum(CommentType, item.get("type"), CommentType.LANGUAGE)
    if comment_type == CommentType.HUMAN:
        comment_type = CommentType.LANGUAGE
    return Comment(
        type=comment_type,
        severity=_coerce_enum(Severity, item.get("severity"), Severity.INFO),
        position=str(item.get("position") or ""),
        original_text=str(item.get("originalText") or ""),
        body=str(item.get("comment") or ""),
        question=item.get("question"),
        author=AI_REVIEWER_AUTHOR,
    )


def parse_review_comments(raw: str) -> List[Comment]:
    """Turn model output into comments; unparseable output becomes a single INFO comment."""
    text = strip_code_fences(raw)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Review output was not valid JSON; returning it as a single comment")
        return [Comment(
            type=CommentType.LANGUAGE,
            severity=Severity.INFO,
            position="AI suggestion (unparsed output)",
            body=text,
            author=AI_REVIEWER_AUTHOR,
        )]

    if isinstance(parsed, dict):
        parsed = parsed.get("comments", [parsed])
    if not isinstance(parsed, list):
        parsed = [{"comment": str(parsed)}]

    return [_comment_from_item(item) for item in parsed if isinstance(item, dict)]


def describe_failure(error: ModelChainExhausted) -> str:
    """Best guess at a human-readable cause from the collected errors."""
    last = error.errors[-1] if error.errors else error.message
    if "401" in last:
        return "API key invalid or expired"
    if "404" in last:
        return "unknown model name"
    if "timeout" in last.lower() or "timed out" in last.lower():
        return "model call timed out"
    return last


def failure_comment(body: str, position: str = "System error") -> Comment:
    return Comment(
        type=CommentType.RISK,
        severity=Severity.WARNING,
        position=position,
        body=body,
        author=SYSTEM_AUTHOR,
    )


def review_document(prd_content: str, kb_files: Optional[List[KnowledgeDocument]],
                    policy: ResiliencePolicy) -> List[Comment]:
    """
    Ask the model chain for review comments.

    Args:
        prd_content: Full document text
        kb_files: Knowledge documents supplied as context
        policy: Model call policy (primary/fallback chain)

    Returns:
        Review comments, or one synthetic comment describing why the review failed
    """
    try:
        reply = policy.call(build_review_messages(prd_content, kb_files), purpose="review")
    except ModelChainExhausted as e:
        logger.log_operation("review", "failed", {"attempts": len(e.errors)})
        return [failure_comment(
            f"AI review failed: {describe_failure(e)} (primary error: {e.primary_error})"
        )]

    comments = parse_review_comments(reply.content)
    logger.log_operation("review", "success", {"model": reply.model_used, "comments": len(comments)})
    return comments
