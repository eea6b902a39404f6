"""
Job Record Store module.

Durable composite job and clip records with compare-and-set transitions.
"""

from typing import Optional

from shared.config import settings
from modules.job_store.base import CompositeJobStore
from modules.job_store.memory import InMemoryCompositeJobStore


def create_job_store(backend: Optional[str] = None) -> CompositeJobStore:
    """
    Build the configured store backend.

    Args:
        backend: "memory" or "supabase" (defaults to JOB_STORE_BACKEND)
    """
    backend = backend or settings.job_store_backend
    if backend == "supabase":
        from modules.job_store.supabase_store import SupabaseCompositeJobStore
        return SupabaseCompositeJobStore()
    return InMemoryCompositeJobStore()


__all__ = ["CompositeJobStore", "InMemoryCompositeJobStore", "create_job_store"]
