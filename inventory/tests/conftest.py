from __future__ import annotations

import base64
import re
import types
from typing import Any, Dict, List, Optional

import pytest
from kubernetes.client.exceptions import ApiException

from tenant_report.config import RunConfig

_HOST_RE = re.compile(r"://(?:[^@/]+@)?[^.]+\.([^.]+)\.svc\.cluster\.local")

_MISSING = object()


def _lookup(doc: Dict[str, Any], dotted: str) -> Any:
    value: Any = doc
    for part in dotted.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    """Enough of MongoDB's matcher for $exists, $ne and equality on dotted paths."""
    for key, cond in query.items():
        value = _lookup(doc, key)
        if isinstance(cond, dict):
            if "$exists" in cond and (value is not _MISSING) != cond["$exists"]:
                return False
            if "$ne" in cond and value is not _MISSING and value == cond["$ne"]:
                return False
        elif value is _MISSING or value != cond:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Any]) -> None:
        self._docs = docs
        self.closed = False

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.closed = True

    def __iter__(self):
        return iter(self._docs)


class FakeCollection:
    def __init__(self, docs: List[Any], error: Optional[BaseException] = None) -> None:
        self.docs = docs
        self.error = error
        self.queries: List[Dict[str, Any]] = []

    def count_documents(self, query: Dict[str, Any]) -> int:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return sum(1 for d in self.docs if not isinstance(d, dict) or matches(d, query))

    def find(self, query: Dict[str, Any], projection: Optional[Dict[str, Any]] = None) -> FakeCursor:
        if self.error is not None:
            raise self.error
        return FakeCursor([d for d in self.docs if not isinstance(d, dict) or matches(d, query)])


class FakeMongoClient:
    def __init__(
        self,
        uri: str,
        docs: Optional[List[Any]] = None,
        *,
        ping_error: Optional[BaseException] = None,
        query_error: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.uri = uri
        self.kwargs = kwargs
        self.close_calls = 0
        self.ping_error = ping_error
        self.collection = FakeCollection(list(docs or []), error=query_error)
        self.admin = types.SimpleNamespace(command=self._command)

    def _command(self, name: str) -> Dict[str, Any]:
        if self.ping_error is not None:
            raise self.ping_error
        return {"ok": 1.0}

    def __getitem__(self, database: str) -> Dict[str, FakeCollection]:
        return {"clusterobjects": self.collection}

    def close(self) -> None:
        self.close_calls += 1


class FakeMongoFactory:
    """
    Stand-in for MongoClient that routes each URI to a namespace's documents.
    """

    def __init__(
        self,
        docs_by_namespace: Dict[str, List[Any]],
        *,
        ping_errors: Optional[Dict[str, BaseException]] = None,
        query_errors: Optional[Dict[str, BaseException]] = None,
    ) -> None:
        self.docs_by_namespace = docs_by_namespace
        self.ping_errors = ping_errors or {}
        self.query_errors = query_errors or {}
        self.clients: Dict[str, FakeMongoClient] = {}

    def __call__(self, uri: str, **kwargs: Any) -> FakeMongoClient:
        match = _HOST_RE.search(uri)
        assert match, uri
        namespace = match.group(1)
        client = FakeMongoClient(
            uri,
            self.docs_by_namespace.get(namespace, []),
            ping_error=self.ping_errors.get(namespace),
            query_error=self.query_errors.get(namespace),
            **kwargs,
        )
        self.clients[namespace] = client
        return client


class FakeCoreV1:
    def __init__(
        self,
        namespaces: List[str],
        secrets: Dict[str, Dict[str, str]],
        *,
        page_size: Optional[int] = None,
    ) -> None:
        self.namespaces = namespaces
        self.secrets = secrets
        self.page_size = page_size
        self.list_calls: List[Dict[str, Any]] = []
        self.secret_reads: List[tuple[str, str]] = []

    def list_namespace(self, limit: int = 500, _continue: Optional[str] = None, **kwargs: Any) -> Any:
        self.list_calls.append({"limit": limit, "_continue": _continue, **kwargs})
        size = self.page_size or len(self.namespaces) or 1
        start = int(_continue or 0)
        chunk = self.namespaces[start : start + size]
        next_token = str(start + size) if start + size < len(self.namespaces) else None
        items = [types.SimpleNamespace(metadata=types.SimpleNamespace(name=n)) for n in chunk]
        return types.SimpleNamespace(items=items, metadata=types.SimpleNamespace(_continue=next_token))

    def read_namespaced_secret(self, name: str, namespace: str, **kwargs: Any) -> Any:
        self.secret_reads.append((namespace, name))
        data = self.secrets.get(namespace)
        if data is None:
            raise ApiException(status=404, reason="Not Found")
        encoded = {k: base64.b64encode(v.encode("utf-8")).decode("ascii") for k, v in data.items()}
        return types.SimpleNamespace(data=encoded)


def scoped_secret(username: str = "pxuser", password: str = "s3cret") -> Dict[str, str]:
    return {"mongodb-username": username, "mongodb-password": password}


def cluster_doc(
    name: str,
    *,
    teleport: bool = True,
    status: str = "Success",
    create_time: str = "2024-05-01T10:00:00Z",
) -> Dict[str, Any]:
    info: Dict[str, Any] = {"status": {"status": status}}
    if teleport:
        info["teleportClusterId"] = f"tp-{name}"
    return {"metadata": {"name": name, "createTime": create_time}, "clusterInfo": info}


@pytest.fixture
def run_config(tmp_path) -> RunConfig:
    return RunConfig(output=tmp_path / "cluster.xlsx", namespace_timeout=5.0)
