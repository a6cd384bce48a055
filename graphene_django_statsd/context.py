"""Per-request context shared between the Django middleware and the resolvers."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from graphene_django_statsd.utils import fingerprint, get_operation_source


@dataclass(frozen=True)
class QueryContext:
    """Identity of a single GraphQL query within a request."""

    query_hash: Optional[str]
    operation_name: Optional[str]
    query: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_payload(cls, payload):
        """Build a context from a ``{"query": ..., "operationName": ...}`` payload."""
        query = payload.get("query")
        if not isinstance(query, str):
            query = None
        return cls(
            query_hash=fingerprint(query) if query else None,
            operation_name=payload.get("operationName") or None,
            query=query,
        )

    def resolve(self, info):  # pylint: disable=unused-argument
        return self


@dataclass(frozen=True)
class BatchContext:
    """Identities of every query carried by a batched request, keyed by fingerprint."""

    queries: Mapping[str, QueryContext]

    def __post_init__(self):
        object.__setattr__(self, "queries", MappingProxyType(dict(self.queries)))

    @classmethod
    def from_payloads(cls, payloads):
        """Build a batch context from the list body of a batched request."""
        queries = {}
        for payload in payloads:
            query_context = QueryContext.from_payload(payload)
            if query_context.query_hash is not None:
                queries[query_context.query_hash] = query_context
        return cls(queries=queries)

    def resolve(self, info):
        """Find the query of the batch that ``info`` is currently executing.

        graphene-django executes each query of a batch separately against the
        same request, so the executing document's source text identifies which
        entry of the batch a resolver belongs to.

        Returns:
            QueryContext or None: The matching entry, or None if not found.
        """
        source = get_operation_source(info)
        if not source:
            return None
        return self.queries.get(fingerprint(source))
