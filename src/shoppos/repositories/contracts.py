from __future__ import annotations

from typing import Callable, Iterable, Optional, Protocol

Document = dict
DocumentRow = tuple[str, Document]
Listener = Callable[[list[DocumentRow]], None]
Unsubscribe = Callable[[], None]


class EntityStore(Protocol):
    """Key-addressed document store with per-collection change notification.

    Documents never carry None values; absent fields are omitted from writes.
    """

    def create(self, collection: str, doc: Document, doc_id: Optional[str] = None) -> str: ...
    def get(self, collection: str, doc_id: str) -> Optional[Document]: ...
    def list(self, collection: str, where: Optional[dict] = None) -> list[DocumentRow]: ...
    def update(self, collection: str, doc_id: str, partial: Document, unset: Iterable[str] = ()) -> None: ...
    def delete(self, collection: str, doc_id: str) -> bool: ...
    def mutate(
        self, collection: str, doc_id: str, fn: Callable[[Document], Document], unset: Iterable[str] = ()
    ) -> Document: ...
    def subscribe(self, collection: str, listener: Listener, where: Optional[dict] = None) -> Unsubscribe: ...
    def next_sequence(self, name: str) -> int: ...
    def peek_sequence(self, name: str) -> int: ...


PRODUCTS = "products"
PROMOTIONS = "promotions"
VOUCHERS = "vouchers"
CUSTOMERS = "customers"
INVOICES = "invoices"
SHOP = "shop"
SHOP_PROFILE_ID = "profile"
