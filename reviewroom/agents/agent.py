"""
Base interfaces for model clients and the data classes passed between agents.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List


@dataclass
class ModelMessage:
    """Chat message in the format every model client accepts."""
    role: str  # "system", "user" or "assistant"
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ModelReply:
    """Successful reply from the model chain."""
    content: str
    model_used: str
    attempts: int = 1
    processing_time_ms: int = 0
    errors: List[str] = field(default_factory=list)
    audit_info: Dict[str, Any] = None

    def __post_init__(self):
        if self.audit_info is None:
            self.audit_info = {"timestamp": datetime.now().isoformat()}


class BaseModelClient(ABC):
    """
    Abstract base class for model backends.
    Implementations must raise on transport errors, non-success responses and empty output.
    """

    name = "base"

    @abstractmethod
    def chat(self, model: str, messages: List[ModelMessage], timeout: float) -> str:
        """
        Send one chat request.

        Args:
            model: Model name to call
            messages: System and user messages
            timeout: Seconds allowed for this call

        Returns:
            The raw text content of the reply
        """
        pass

    def get_status(self) -> Dict[str, Any]:
        """Get current status of this client."""
        return {"client": self.name}
