"""Server package for BriefContext.

Provides the context service, its HTTP API and command line interface.
"""

from .context_service import ContextService, ServiceState, format_excerpts
from .topic_filter import TopicFilter

__all__ = [
    'ContextService',
    'ServiceState',
    'format_excerpts',
    'TopicFilter'
]
