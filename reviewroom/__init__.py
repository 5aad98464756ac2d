"""
PRD review rooms: shared, versioned documents with comments, votes and AI review.
"""

from .core.config import VERSION

__version__ = VERSION
