"""Derive (index, shard, operation) labels from operation requests."""
import logging
from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple

from opmetrics.labels import (
    DEFAULT_EMPTY,
    DEFAULT_MAX_INDEX_COUNT,
    DEFAULT_MSEARCH,
    DEFAULT_SCROLL,
    DEFAULT_UNKNOWN,
    DEFAULT_WILDCARD_TOKEN,
    escape_wildcards,
    join_indices,
)
from opmetrics.requests import OperationRequest, RequestKind

logger = logging.getLogger(__name__)

OPERATION_INDEX = "index"
OPERATION_GET = "get"
OPERATION_SEARCH = "search"

_INDEX_OPERATIONS: FrozenSet[RequestKind] = frozenset({
    RequestKind.INDEX,
    RequestKind.BULK,
    RequestKind.BULK_SHARD,
})

_GET_OPERATIONS: FrozenSet[RequestKind] = frozenset({
    RequestKind.GET,
    RequestKind.MULTI_GET,
    RequestKind.MULTI_GET_SHARD,
})

_SEARCH_OPERATIONS: FrozenSet[RequestKind] = frozenset({
    RequestKind.SEARCH,
    RequestKind.SHARD_SEARCH,
    RequestKind.SHARD_FETCH,
    RequestKind.MULTI_SEARCH,
    RequestKind.SEARCH_SCROLL,
    RequestKind.INTERNAL_SCROLL,
})

# Kinds holding one index name in an ``index`` field
_SINGLE_INDEX_KINDS: FrozenSet[RequestKind] = frozenset({
    RequestKind.INDEX,
    RequestKind.GET,
    RequestKind.BULK_SHARD,
    RequestKind.MULTI_GET_SHARD,
    RequestKind.SHARD_SEARCH,
})

_SHARD_KINDS: FrozenSet[RequestKind] = frozenset({
    RequestKind.BULK_SHARD,
    RequestKind.MULTI_GET_SHARD,
    RequestKind.SHARD_SEARCH,
})


@dataclass(frozen=True)
class Classification:
    """Labels derived for one request."""
    index: str
    shard: str
    operation: str

    def as_tuple(self) -> Tuple[str, str, str]:
        return (self.index, self.shard, self.operation)


class RequestClassifier:
    """
    Stateless classifier over the closed set of request kinds.

    Safe to share between threads: it holds only its configuration.
    """

    def __init__(
        self,
        max_index_count: int = DEFAULT_MAX_INDEX_COUNT,
        wildcard_token: str = DEFAULT_WILDCARD_TOKEN
    ):
        if max_index_count < 1:
            raise ValueError(f"max_index_count must be >= 1, got {max_index_count}")
        self.max_index_count = max_index_count
        self.wildcard_token = wildcard_token

    def classify(self, request: Optional[OperationRequest]) -> Classification:
        """Return all three labels for ``request``."""
        return Classification(
            index=self.extract_indices(request),
            shard=self.extract_shard(request),
            operation=self.extract_operation(request),
        )

    def extract_indices(self, request: Optional[OperationRequest]) -> str:
        """Index label, with wildcards escaped."""
        return escape_wildcards(self._resolve_indices(request), self.wildcard_token)

    def _resolve_indices(self, request: Optional[OperationRequest]) -> str:
        kind = self._kind(request)

        if kind in _SINGLE_INDEX_KINDS:
            return join_indices([request.index], self.max_index_count)
        if kind in (RequestKind.BULK, RequestKind.SEARCH):
            return join_indices(request.indices, self.max_index_count)
        if kind == RequestKind.MULTI_GET:
            return join_indices(request.item_indices, self.max_index_count)
        if kind == RequestKind.SHARD_FETCH:
            return join_indices([request.shard_search.index], self.max_index_count)
        if kind == RequestKind.MULTI_SEARCH:
            return DEFAULT_MSEARCH
        if kind == RequestKind.SEARCH_SCROLL:
            return DEFAULT_SCROLL
        if kind == RequestKind.CONCRETE_SHARD:
            return self._resolve_indices(request.request)

        logger.debug(f"Unknown index for request kind {kind.value}")
        return DEFAULT_UNKNOWN

    def extract_shard(self, request: Optional[OperationRequest]) -> str:
        """Shard id as a string, or ``-`` when the request is not shard scoped."""
        kind = self._kind(request)

        if kind in _SHARD_KINDS:
            return str(request.shard_id)
        if kind == RequestKind.SHARD_FETCH:
            return str(request.shard_search.shard_id)
        if kind == RequestKind.CONCRETE_SHARD:
            return self.extract_shard(request.request)

        logger.debug(f"Unknown shard for request kind {kind.value}")
        return DEFAULT_EMPTY

    def extract_operation(self, request: Optional[OperationRequest]) -> str:
        """One of ``index``, ``get``, ``search`` or ``_unknown``."""
        kind = self._kind(request)

        if kind in _INDEX_OPERATIONS:
            return OPERATION_INDEX
        if kind in _GET_OPERATIONS:
            return OPERATION_GET
        if kind in _SEARCH_OPERATIONS:
            return OPERATION_SEARCH
        if kind == RequestKind.CONCRETE_SHARD:
            return self.extract_operation(request.request)

        logger.debug(f"Unknown operation for request kind {kind.value}")
        return DEFAULT_UNKNOWN

    @staticmethod
    def _kind(request: Optional[OperationRequest]) -> RequestKind:
        if request is None:
            return RequestKind.UNRECOGNIZED
        kind = getattr(request, "kind", None)
        if not isinstance(kind, RequestKind):
            return RequestKind.UNRECOGNIZED
        return kind
