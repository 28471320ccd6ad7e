from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping

from ..models import DetailRecord, FilterKind, NamespaceResult, ReportDefinition
from ..util.errors import NamespaceError, QueryError, map_mongo_error

TELEPORT_ID_FIELD = "clusterInfo.teleportClusterId"
STATUS_FIELD = "clusterInfo.status.status"
NAME_FIELD = "metadata.name"
CREATE_TIME_FIELD = "metadata.createTime"
STATUS_SUCCESS = "Success"

DETAIL_PROJECTION = {
    "_id": 0,
    NAME_FIELD: 1,
    CREATE_TIME_FIELD: 1,
    STATUS_FIELD: 1,
}


def build_filter(kind: FilterKind, sentinel: str) -> Dict[str, Any]:
    """
    Server-side predicate for a filter variant. The unfiltered variants return
    an empty filter and count the whole collection.
    """
    not_sentinel = {"$ne": sentinel}
    if kind is FilterKind.TELEPORT_ATTACHED:
        return {TELEPORT_ID_FIELD: {"$exists": True}, NAME_FIELD: not_sentinel}
    if kind is FilterKind.TELEPORT_DETACHED:
        return {TELEPORT_ID_FIELD: {"$exists": False}, NAME_FIELD: not_sentinel}
    if kind is FilterKind.STATUS_SUCCESS:
        return {
            TELEPORT_ID_FIELD: {"$exists": True},
            STATUS_FIELD: STATUS_SUCCESS,
            NAME_FIELD: not_sentinel,
        }
    return {}


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    as_datetime = getattr(value, "as_datetime", None)
    if callable(as_datetime):
        # bson.Timestamp
        return as_datetime().isoformat()
    if isinstance(value, Mapping) and "seconds" in value:
        # protobuf Timestamp stored as {"seconds": ..., "nanos": ...}
        try:
            seconds = int(value["seconds"])
            nanos = int(value.get("nanos") or 0)
        except (TypeError, ValueError):
            return str(dict(value))
        ts = datetime.fromtimestamp(seconds, timezone.utc).replace(microsecond=nanos // 1000)
        return ts.isoformat()
    return str(value)


def _sub_document(doc: Mapping[str, Any], key: str, namespace: str) -> Mapping[str, Any]:
    value = doc.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise QueryError(namespace, f"malformed document: '{key}' is {type(value).__name__}, expected a document")
    return value


def decode_record(doc: Any, namespace: str) -> DetailRecord:
    """
    Map one clusterobjects document to a DetailRecord. Absent fields decode to
    empty strings; a field of the wrong shape is a QueryError for the namespace.
    """
    if not isinstance(doc, Mapping):
        raise QueryError(namespace, f"malformed document of type {type(doc).__name__}")
    metadata = _sub_document(doc, "metadata", namespace)
    cluster_info = _sub_document(doc, "clusterInfo", namespace)
    status = _sub_document(cluster_info, "status", namespace)
    return DetailRecord(
        name=_format_value(metadata.get("name")),
        status=_format_value(status.get("status")),
        create_time=_format_value(metadata.get("createTime")),
    )


def iter_detail_records(collection: Any, query: Dict[str, Any], namespace: str) -> Iterator[DetailRecord]:
    """
    Stream matching documents in natural order, decoding one at a time.
    """
    with collection.find(query, DETAIL_PROJECTION) as cursor:
        for doc in cursor:
            yield decode_record(doc, namespace)


def run_attachment_query(
    client: Any,
    database: str,
    collection_name: str,
    definition: ReportDefinition,
    *,
    sentinel: str,
    namespace: str,
) -> NamespaceResult:
    """
    Count documents matching the report's filter and, unless the report is
    count-only, collect their detail records. The stored count is discounted
    by the report's offset and never negative.
    """
    collection = client[database][collection_name]
    query = build_filter(definition.filter, sentinel)
    try:
        raw_count = int(collection.count_documents(query))
        records: tuple[DetailRecord, ...] = ()
        if not definition.count_only:
            records = tuple(iter_detail_records(collection, query, namespace))
    except NamespaceError:
        raise
    except Exception as e:
        mapped = map_mongo_error(e, namespace, f"query on {database}.{collection_name} failed")
        if mapped:
            raise mapped from e
        raise
    return NamespaceResult(
        namespace=namespace,
        count=max(raw_count - definition.count_offset, 0),
        records=records,
    )
