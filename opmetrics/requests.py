"""Request shapes seen by the metrics hooks.

Each shape is a frozen dataclass tagged with a ``RequestKind``. The classifier
dispatches on the tag only, so adding a shape means adding a kind and the
matching arm in ``opmetrics.classifier``.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional, Tuple


class RequestKind(str, Enum):
    """Closed set of request kinds understood by the classifier."""
    INDEX = "index"
    BULK = "bulk"
    BULK_SHARD = "bulk_shard"
    GET = "get"
    MULTI_GET = "multi_get"
    MULTI_GET_SHARD = "multi_get_shard"
    SEARCH = "search"
    MULTI_SEARCH = "multi_search"
    SEARCH_SCROLL = "search_scroll"
    SHARD_SEARCH = "shard_search"
    SHARD_FETCH = "shard_fetch"
    INTERNAL_SCROLL = "internal_scroll"
    CONCRETE_SHARD = "concrete_shard"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class OperationRequest:
    """Base class for all request shapes."""
    kind: ClassVar[RequestKind] = RequestKind.UNRECOGNIZED


@dataclass(frozen=True)
class IndexRequest(OperationRequest):
    kind: ClassVar[RequestKind] = RequestKind.INDEX
    index: Optional[str] = None


@dataclass(frozen=True)
class BulkRequest(OperationRequest):
    """Bulk write; ``indices`` is the set of indices touched by its items."""
    kind: ClassVar[RequestKind] = RequestKind.BULK
    indices: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class BulkShardRequest(OperationRequest):
    kind: ClassVar[RequestKind] = RequestKind.BULK_SHARD
    index: Optional[str] = None
    shard_id: int = 0


@dataclass(frozen=True)
class GetRequest(OperationRequest):
    kind: ClassVar[RequestKind] = RequestKind.GET
    index: Optional[str] = None


@dataclass(frozen=True)
class MultiGetRequest(OperationRequest):
    """Multi-get; one index per item."""
    kind: ClassVar[RequestKind] = RequestKind.MULTI_GET
    item_indices: Tuple[Optional[str], ...] = ()


@dataclass(frozen=True)
class MultiGetShardRequest(OperationRequest):
    kind: ClassVar[RequestKind] = RequestKind.MULTI_GET_SHARD
    index: Optional[str] = None
    shard_id: int = 0


@dataclass(frozen=True)
class SearchRequest(OperationRequest):
    kind: ClassVar[RequestKind] = RequestKind.SEARCH
    indices: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class MultiSearchRequest(OperationRequest):
    kind: ClassVar[RequestKind] = RequestKind.MULTI_SEARCH
    requests: Tuple[SearchRequest, ...] = ()


@dataclass(frozen=True)
class SearchScrollRequest(OperationRequest):
    kind: ClassVar[RequestKind] = RequestKind.SEARCH_SCROLL
    scroll_id: str = ""


@dataclass(frozen=True)
class ShardSearchRequest(OperationRequest):
    kind: ClassVar[RequestKind] = RequestKind.SHARD_SEARCH
    index: Optional[str] = None
    shard_id: int = 0


@dataclass(frozen=True)
class ShardFetchSearchRequest(OperationRequest):
    """Fetch phase; index and shard come from the originating shard search."""
    kind: ClassVar[RequestKind] = RequestKind.SHARD_FETCH
    shard_search: ShardSearchRequest = field(default_factory=ShardSearchRequest)


@dataclass(frozen=True)
class InternalScrollSearchRequest(OperationRequest):
    kind: ClassVar[RequestKind] = RequestKind.INTERNAL_SCROLL
    scroll_id: str = ""


@dataclass(frozen=True)
class ConcreteShardRequest(OperationRequest):
    """Replication wrapper forwarding an inner request to a concrete shard."""
    kind: ClassVar[RequestKind] = RequestKind.CONCRETE_SHARD
    request: OperationRequest = field(default_factory=OperationRequest)


@dataclass(frozen=True)
class UnrecognizedRequest(OperationRequest):
    """Any request shape the classifier has no arm for."""
    kind: ClassVar[RequestKind] = RequestKind.UNRECOGNIZED
    type_name: str = "unknown"
