"""
Vector database interface for storing and retrieving conversation facts.
Uses ChromaDB for vector storage and similarity search.
"""
import logging
from typing import List, Dict, Any, Optional
from datetime import datetime

import chromadb
from chromadb.config import Settings

from utils.config import config

logger = logging.getLogger(__name__)


class MemoryStore:
    """
    Vector database store for conversation facts.
    A failed initialisation leaves the store disabled; every call then
    degrades to an empty result.
    """

    def __init__(self, persist_dir: Optional[str] = None, enabled: Optional[bool] = None):
        self.client = None
        self.collection = None
        self._initialized = False

        enabled = config.memory.enabled if enabled is None else enabled
        if not enabled:
            logger.info("Memory store disabled by configuration")
            return

        persist_dir = config.memory.chroma_persist_dir if persist_dir is None else persist_dir
        try:
            if persist_dir:
                self.client = chromadb.PersistentClient(
                    path=persist_dir,
                    settings=Settings(anonymized_telemetry=False),
                )
            else:
                self.client = chromadb.Client(Settings(anonymized_telemetry=False))
            self.collection = self.client.get_or_create_collection(
                name=config.memory.collection_name,
                metadata={"description": "Interview conversation facts"},
            )
            self._initialized = True
            logger.info(f"ChromaDB initialized ({persist_dir or 'in-memory'})")
        except Exception as e:
            logger.warning(f"ChromaDB initialization failed, memory store disabled: {e}")

    @property
    def is_available(self) -> bool:
        return self._initialized

    def store_facts(
        self,
        session_id: str,
        facts: List[Dict[str, Any]],
        phase: str
    ) -> List[str]:
        """
        Store facts in the vector database.

        Args:
            session_id: The conversation ID
            facts: List of fact dictionaries (content, type, topic_label)
            phase: Current interview phase

        Returns:
            List of stored fact IDs
        """
        if not self._initialized or not facts:
            return []

        try:
            ids = []
            documents = []
            metadatas = []
            stamp = datetime.now().timestamp()

            for i, fact in enumerate(facts):
                ids.append(f"{session_id}_{phase}_{stamp}_{i}")
                documents.append(fact.get('content', str(fact)))
                metadatas.append({
                    "session_id": session_id,
                    "phase": phase,
                    "fact_type": fact.get('type', 'general'),
                    "topic_label": fact.get('topic_label', ''),
                    "timestamp": datetime.now().isoformat()
                })

            self.collection.add(
                ids=ids,
                documents=documents,
                metadatas=metadatas
            )

            logger.info(f"Stored {len(ids)} facts for session {session_id}")
            return ids

        except Exception as e:
            logger.error(f"Failed to store facts: {e}")
            return []

    def retrieve_relevant(
        self,
        session_id: str,
        query: str,
        n_results: int = 5,
        phase_filter: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Retrieve relevant facts from the vector database.

        Args:
            session_id: The conversation ID
            query: Query text for similarity search
            n_results: Number of results to return
            phase_filter: Optional phase to filter by

        Returns:
            List of {"content", "metadata"} dictionaries
        """
        if not self._initialized:
            return []

        try:
            if phase_filter:
                where_filter = {"$and": [{"session_id": session_id}, {"phase": phase_filter}]}
            else:
                where_filter = {"session_id": session_id}

            results = self.collection.query(
                query_texts=[query],
                n_results=n_results,
                where=where_filter
            )

            facts = []
            if results and results.get('documents'):
                metadatas = results.get('metadatas') or [[]]
                for i, doc in enumerate(results['documents'][0]):
                    facts.append({
                        "content": doc,
                        "metadata": metadatas[0][i] if i < len(metadatas[0]) else {}
                    })

            return facts

        except Exception as e:
            logger.error(f"Failed to retrieve facts: {e}")
            return []

    def count(self, session_id: Optional[str] = None) -> int:
        """Number of stored facts, optionally for one session."""
        if not self._initialized:
            return 0
        try:
            if session_id is None:
                return self.collection.count()
            results = self.collection.get(where={"session_id": session_id})
            return len(results.get('ids') or [])
        except Exception as e:
            logger.error(f"Failed to count facts: {e}")
            return 0

    def clear_session(self, session_id: str) -> bool:
        """
        Clear all facts for a session.

        Returns:
            True if successful
        """
        if not self._initialized:
            return False

        try:
            results = self.collection.get(
                where={"session_id": session_id}
            )

            if results and results.get('ids'):
                self.collection.delete(ids=results['ids'])
                logger.info(f"Cleared {len(results['ids'])} facts for session {session_id}")

            return True

        except Exception as e:
            logger.error(f"Failed to clear session: {e}")
            return False


# Global instance
memory_store = MemoryStore()
