"""
Job record store interface.

Durable storage for composite jobs and their clip records. Status changes go
through compare-and-set so concurrent writers cannot both win a transition.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from shared.models.composite import ClipRecord, ClipStatus, CompositeJob, CompositeStatus


class CompositeJobStore(ABC):
    """Authoritative record of composite jobs and clips."""

    @abstractmethod
    async def create(self, composite: CompositeJob) -> CompositeJob:
        """Persist a new composite together with its clips."""

    @abstractmethod
    async def get(self, composite_id: str) -> Optional[CompositeJob]:
        """Load a composite with its clips ordered by clip_index."""

    @abstractmethod
    async def list_by_owner(self, owner_id: str, limit: int = 50) -> List[CompositeJob]:
        """Composites owned by `owner_id`, newest first."""

    @abstractmethod
    async def list_by_status(
        self, statuses: Iterable[CompositeStatus], limit: int = 50
    ) -> List[CompositeJob]:
        """Composites in any of `statuses`, oldest first."""

    @abstractmethod
    async def transition(
        self,
        composite_id: str,
        expected: Iterable[CompositeStatus],
        new_status: CompositeStatus,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[CompositeJob]:
        """
        Compare-and-set the composite status.

        Applies `new_status` and `fields` only if the current status is one
        of `expected`.

        Returns:
            Updated composite, or None if the status did not match
        """

    @abstractmethod
    async def update_clip(
        self,
        clip_id: str,
        expected: Iterable[ClipStatus],
        fields: Dict[str, Any],
    ) -> Optional[ClipRecord]:
        """
        Compare-and-set update of a clip.

        Returns:
            Updated clip, or None if the clip status did not match
        """

    @abstractmethod
    async def get_clip(self, clip_id: str) -> Optional[ClipRecord]:
        """Load one clip."""

    @abstractmethod
    async def find_clip_by_handle(self, provider_handle: str) -> Optional[ClipRecord]:
        """Look up the clip currently bound to a provider handle."""

    @abstractmethod
    async def list_clips_by_status(
        self, statuses: Iterable[ClipStatus], limit: int = 50
    ) -> List[ClipRecord]:
        """Clips in any of `statuses`, oldest first."""

    @abstractmethod
    async def delete(self, composite_id: str) -> bool:
        """Delete a composite and its clips. Returns False if it did not exist."""
