"""
CQRS: Queries

Queries read customer views from the read store. They never touch the
write store and may lag behind it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from core.types import Result
from db.interfaces import IReadStore
from db.query_models import CustomerQueryModel
from db.read_mappings import ReadModelRegistry
from domain.mediator import IQueryHandler, Query


logger = logging.getLogger("shop.db.queries")

CUSTOMER_NOT_FOUND_MESSAGE = "Customer not found."


class CustomerReadOnlyRepository:
    """Customer views in the read store."""

    def __init__(self, read_store: IReadStore, registry: ReadModelRegistry):
        self._read_store = read_store
        self._registry = registry
        self._collection = registry.collection_for(CustomerQueryModel)

    async def get_by_id(self, customer_id: str) -> Optional[CustomerQueryModel]:
        document = await self._read_store.get(self._collection, customer_id)
        if document is None:
            return None
        return self._registry.deserialize(CustomerQueryModel, document)

    async def get_all(self) -> List[CustomerQueryModel]:
        documents = await self._read_store.find_all(self._collection)
        return [self._registry.deserialize(CustomerQueryModel, d) for d in documents]


@dataclass(frozen=True)
class GetCustomerByIdQuery(Query[Result[CustomerQueryModel]]):
    customer_id: str = ""


@dataclass(frozen=True)
class ListCustomersQuery(Query[Result[List[CustomerQueryModel]]]):
    pass


class GetCustomerByIdQueryHandler(IQueryHandler[GetCustomerByIdQuery, Result[CustomerQueryModel]]):
    def __init__(self, repository: CustomerReadOnlyRepository):
        self.repository = repository

    async def handle(self, query: GetCustomerByIdQuery) -> Result[CustomerQueryModel]:
        customer = await self.repository.get_by_id(query.customer_id)
        if customer is None:
            return Result.error(CUSTOMER_NOT_FOUND_MESSAGE)
        return Result.success(customer)


class ListCustomersQueryHandler(IQueryHandler[ListCustomersQuery, Result[List[CustomerQueryModel]]]):
    def __init__(self, repository: CustomerReadOnlyRepository):
        self.repository = repository

    async def handle(self, query: ListCustomersQuery) -> Result[List[CustomerQueryModel]]:
        return Result.success(await self.repository.get_all())
