"""Tests for request classification into (index, shard, operation) labels."""
import pytest

from opmetrics.classifier import Classification, RequestClassifier
from opmetrics.labels import join_indices, escape_wildcards, validate_label_names
from opmetrics.requests import (
    BulkRequest,
    BulkShardRequest,
    ConcreteShardRequest,
    GetRequest,
    IndexRequest,
    InternalScrollSearchRequest,
    MultiGetRequest,
    MultiGetShardRequest,
    MultiSearchRequest,
    OperationRequest,
    SearchRequest,
    SearchScrollRequest,
    ShardFetchSearchRequest,
    ShardSearchRequest,
    UnrecognizedRequest,
)

classifier = RequestClassifier()


# --- index names -----------------------------------------------------------

def test_multi_index_join_sorts_dedupes_and_truncates():
    request = SearchRequest(indices=("b", "a", "a", "c", "d"))
    assert classifier.extract_indices(request) == "a/b/c/_etc"


def test_multi_index_join_at_cap_has_no_marker():
    request = SearchRequest(indices=("c", "a", "b", "b"))
    assert classifier.extract_indices(request) == "a/b/c"


def test_custom_index_cap():
    request = SearchRequest(indices=("b", "a", "c", "d"))
    assert RequestClassifier(max_index_count=5).extract_indices(request) == "a/b/c/d"
    assert RequestClassifier(max_index_count=1).extract_indices(request) == "a/_etc"


def test_invalid_index_cap():
    with pytest.raises(ValueError):
        RequestClassifier(max_index_count=0)


@pytest.mark.parametrize("indices", [None, (), ("",), ("", "", "  ")])
def test_missing_or_blank_indices_are_unknown(indices):
    assert classifier.extract_indices(SearchRequest(indices=indices)) == "_unknown"


def test_blank_names_dropped_from_multi_index():
    request = BulkRequest(indices=("", "logs", "metrics", ""))
    assert classifier.extract_indices(request) == "logs/metrics"


def test_single_index_shapes():
    assert classifier.extract_indices(IndexRequest(index="orders")) == "orders"
    assert classifier.extract_indices(GetRequest(index="users")) == "users"
    assert classifier.extract_indices(IndexRequest(index="")) == "_unknown"
    assert classifier.extract_indices(GetRequest()) == "_unknown"


def test_multi_get_uses_item_indices():
    request = MultiGetRequest(item_indices=("users", None, "orders", "users"))
    assert classifier.extract_indices(request) == "orders/users"


def test_sentinel_indices():
    assert classifier.extract_indices(MultiSearchRequest()) == "_msearch"
    assert classifier.extract_indices(SearchScrollRequest(scroll_id="abc")) == "_scroll"
    assert classifier.extract_indices(InternalScrollSearchRequest()) == "_unknown"


def test_wildcards_are_escaped():
    request = SearchRequest(indices=("logs-*",))
    label = classifier.extract_indices(request)
    assert label == "logs-__any"
    assert "*" not in label

    custom = RequestClassifier(wildcard_token="ANY")
    assert custom.extract_indices(SearchRequest(indices=("*",))) == "ANY"


# --- shards and operations -------------------------------------------------

def test_shard_labels():
    assert classifier.extract_shard(BulkShardRequest(index="a", shard_id=3)) == "3"
    assert classifier.extract_shard(MultiGetShardRequest(index="a", shard_id=0)) == "0"
    assert classifier.extract_shard(ShardSearchRequest(index="a", shard_id=7)) == "7"
    fetch = ShardFetchSearchRequest(shard_search=ShardSearchRequest(index="a", shard_id=2))
    assert classifier.extract_shard(fetch) == "2"
    assert classifier.extract_shard(SearchRequest(indices=("a",))) == "-"


@pytest.mark.parametrize("request_, operation", [
    (IndexRequest(index="a"), "index"),
    (BulkRequest(indices=("a",)), "index"),
    (BulkShardRequest(index="a"), "index"),
    (GetRequest(index="a"), "get"),
    (MultiGetRequest(item_indices=("a",)), "get"),
    (MultiGetShardRequest(index="a"), "get"),
    (SearchRequest(indices=("a",)), "search"),
    (ShardSearchRequest(index="a"), "search"),
    (ShardFetchSearchRequest(), "search"),
    (MultiSearchRequest(), "search"),
    (SearchScrollRequest(), "search"),
    (InternalScrollSearchRequest(), "search"),
    (UnrecognizedRequest(type_name="ClusterHealthRequest"), "_unknown"),
])
def test_operation_labels(request_, operation):
    assert classifier.extract_operation(request_) == operation


def test_shard_fetch_takes_index_from_shard_search():
    fetch = ShardFetchSearchRequest(shard_search=ShardSearchRequest(index="logs", shard_id=4))
    assert classifier.classify(fetch) == Classification("logs", "4", "search")


# --- wrappers and fallbacks -------------------------------------------------

@pytest.mark.parametrize("inner", [
    BulkShardRequest(index="orders", shard_id=1),
    IndexRequest(index="orders-*"),
    SearchRequest(indices=("b", "a", "c", "d")),
    MultiSearchRequest(),
    UnrecognizedRequest(),
])
def test_wrapped_request_classifies_like_inner(inner):
    wrapped = ConcreteShardRequest(request=inner)
    assert classifier.classify(wrapped) == classifier.classify(inner)

    double_wrapped = ConcreteShardRequest(request=wrapped)
    assert classifier.classify(double_wrapped) == classifier.classify(inner)


@pytest.mark.parametrize("request_", [
    None,
    UnrecognizedRequest(type_name="NodesStatsRequest"),
    OperationRequest(),
    object(),
])
def test_unrecognized_requests_fall_back_to_sentinels(request_):
    labels = classifier.classify(request_)
    assert labels.as_tuple() == ("_unknown", "-", "_unknown")


# --- label helpers -----------------------------------------------------------

def test_join_indices_helper():
    assert join_indices(["b", "a", "a", "c", "d"], max_count=3) == "a/b/c/_etc"
    assert join_indices(["x"]) == "x"
    assert join_indices(None) == "_unknown"
    assert join_indices(["", ""]) == "_unknown"


def test_escape_wildcards_helper():
    assert escape_wildcards("a*b*") == "a__anyb__any"
    assert escape_wildcards("plain") == "plain"


def test_validate_label_names():
    assert validate_label_names(["index", "shard", "operation", "_x1"])
    assert not validate_label_names(["1index"])
    assert not validate_label_names(["in-dex"])
