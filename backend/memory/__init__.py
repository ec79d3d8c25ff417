"""
Memory module for the interview engine.
Provides fact extraction, conversation memory and vector database storage.
"""

from .manager import memory_manager, ConversationMemoryManager
from .extractors import fact_extractor
from .vector_db import memory_store

__all__ = ['memory_manager', 'ConversationMemoryManager', 'fact_extractor', 'memory_store']
