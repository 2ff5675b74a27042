"""
Core abstractions for the content repository.

Defines the ContentRepositoryProtocol the scheduler reads due items from and
writes availability state back to, plus the record and selection types.
"""

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Protocol, Tuple, runtime_checkable

from sentinel.constants import PRIORITY_VIEW_THRESHOLD, HIGH_PRIORITY, NORMAL_PRIORITY


class ContentType(Enum):
    """Kinds of content the platform stores."""
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    IMAGE = "image"
    COLLECTION = "collection"


class ContentStatus(Enum):
    """Publication state of a content item."""
    DRAFT = "draft"
    PROCESSING = "processing"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    REMOVED = "removed"


# Fields the engine may write through update_availability()
AVAILABILITY_FIELDS = frozenset({
    'available',
    'pinned',
    'last_verified',
    'recovery_attempts',
    'unrecoverable',
    'last_recovery_attempt',
    'recovery_success',
    'verification',
})


@dataclass
class ContentRecord:
    """One content item and its availability state."""
    content_id: str
    cid: Optional[str]
    title: str = ""
    content_type: ContentType = ContentType.DOCUMENT
    status: ContentStatus = ContentStatus.PUBLISHED
    priority: str = NORMAL_PRIORITY
    views: int = 0
    # Availability state, None/0 until the first verification pass
    available: Optional[bool] = None
    pinned: bool = False
    last_verified: Optional[float] = None
    recovery_attempts: int = 0
    unrecoverable: bool = False
    last_recovery_attempt: Optional[float] = None
    recovery_success: Optional[bool] = None
    verification: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_priority(self) -> bool:
        return self.priority == HIGH_PRIORITY or self.views > PRIORITY_VIEW_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['content_type'] = self.content_type.value
        data['status'] = self.status.value
        return data


@dataclass(frozen=True)
class DueSelection:
    """Criteria for one scheduler tick's due-item query."""
    min_check_interval: float
    priority_check_interval: float
    limit: int
    content_types: Tuple[ContentType, ...] = tuple(ContentType)
    statuses: Tuple[ContentStatus, ...] = (ContentStatus.PUBLISHED,)
    exclude_ids: FrozenSet[str] = frozenset()
    now: float = field(default_factory=time.time)

    def interval_for(self, record: ContentRecord) -> float:
        return self.priority_check_interval if record.is_priority else self.min_check_interval

    def is_due(self, record: ContentRecord) -> bool:
        """Whether a record qualifies for verification under these criteria."""
        if not record.cid or record.unrecoverable:
            return False
        if record.content_id in self.exclude_ids:
            return False
        if record.status not in self.statuses or record.content_type not in self.content_types:
            return False
        if record.last_verified is None:
            return True
        return self.now - record.last_verified >= self.interval_for(record)


@runtime_checkable
class ContentRepositoryProtocol(Protocol):
    """Protocol that content stores must implement for the engine."""

    def get_due_for_verification(self, selection: DueSelection) -> List[ContentRecord]:
        """Return at most selection.limit items due for a check."""
        ...

    def get_by_id(self, content_id: str) -> Optional[ContentRecord]:
        """Look up one item, or None if unknown."""
        ...

    def update_availability(self, content_id: str, patch: Dict[str, Any]) -> bool:
        """Apply one availability patch atomically. Returns False if unknown."""
        ...

    def search(self, statuses: Optional[List[ContentStatus]] = None,
               content_types: Optional[List[ContentType]] = None) -> List[ContentRecord]:
        """List items by status and type (used for bulk backups)."""
        ...
