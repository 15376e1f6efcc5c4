"""
Typed API client and client-side cart

`ApiClient` wraps every endpoint and validates responses into the models in
schemas.py. The bearer token and a cached copy of the cart live in a
`LocalStorage` object, the counterpart of browser local storage.

`ClientCart` keeps the working cart for a UI. Signed-out users work purely on
the local cache. Signed-in mutations are applied locally first, sent to the
server, and rolled back if the server rejects them.
"""

import json
import os
from typing import Any, Callable, Dict, List, Optional

import httpx
import structlog
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

import settings
from schemas import (
    ArtworkOut, CartLineOut, CartOut, DashboardStats, OrderOut, PurchaseOut, SalesReport,
    SavedAddressOut, TokenResponse, UserProfile,
)

logger = structlog.get_logger(__name__)

TOKEN_KEY = "token"
CART_KEY = "cart"

_artwork_list = TypeAdapter(List[ArtworkOut])
_order_list = TypeAdapter(List[OrderOut])
_purchase_list = TypeAdapter(List[PurchaseOut])
_address_list = TypeAdapter(List[SavedAddressOut])
_profile_list = TypeAdapter(List[UserProfile])
_cart_lines = TypeAdapter(List[CartLineOut])


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class LocalStorage:
    """Small key/value store, kept in memory and optionally mirrored to a JSON file."""

    def __init__(self, path: Optional[str] = None):
        self._path = path
        self._data: Dict[str, Any] = {}
        if path and os.path.exists(path):
            with open(path, "r", encoding="utf-8") as fh:
                self._data = json.load(fh)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any):
        self._data[key] = value
        self._flush()

    def remove(self, key: str):
        if self._data.pop(key, None) is not None:
            self._flush()

    def _flush(self):
        if not self._path:
            return
        with open(self._path, "w", encoding="utf-8") as fh:
            json.dump(self._data, fh)


class CartCache:
    """Cached cart lines. Invalidated on login, logout and checkout; rewritten after each accepted mutation."""

    def __init__(self, storage: LocalStorage):
        self.storage = storage

    def load(self) -> List[CartLineOut]:
        raw = self.storage.get(CART_KEY)
        if not raw:
            return []
        try:
            return _cart_lines.validate_python(raw)
        except PydanticValidationError as e:
            logger.warning("cart_cache_corrupt", error=str(e))
            self.invalidate()
            return []

    def store(self, lines: List[CartLineOut]):
        self.storage.set(CART_KEY, [line.model_dump(mode="json") for line in lines])

    def invalidate(self):
        self.storage.remove(CART_KEY)


class ApiClient:
    def __init__(self, base_url: Optional[str] = None, storage: Optional[LocalStorage] = None,
                 http: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.storage = storage or LocalStorage()
        self.cart_cache = CartCache(self.storage)
        self._http = http or httpx.Client(base_url=base_url or settings.API_BASE_URL, timeout=timeout)

    @property
    def token(self) -> Optional[str]:
        return self.storage.get(TOKEN_KEY)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def _request(self, method: str, path: str, *, json: Any = None, params: Optional[Dict[str, Any]] = None,
                 auth: bool = False) -> Any:
        headers = {"Accept": "application/json"}
        if auth and self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = self._http.request(method, path, json=json, params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("api_unreachable", method=method, path=path, error=str(e))
            raise ApiError(0, f"Could not reach the server: {e}") from e
        is_json = response.headers.get("content-type", "").startswith("application/json")
        body = response.json() if is_json else response.text
        if response.is_error:
            message = body.get("detail") if is_json and isinstance(body, dict) else None
            message = message or f"Request failed with {response.status_code}"
            logger.warning("api_request_failed", method=method, path=path, status=response.status_code,
                           message=message)
            raise ApiError(response.status_code, str(message))
        return body

    # Auth

    def register(self, email: str, password: str, username: Optional[str] = None) -> UserProfile:
        body = self._request("POST", "/auth/register", json={"email": email, "password": password,
                                                             "username": username})
        return UserProfile.model_validate(body["user"])

    def login(self, email: str, password: str) -> TokenResponse:
        data = TokenResponse.model_validate(
            self._request("POST", "/auth/login", json={"email": email, "password": password}))
        self.storage.set(TOKEN_KEY, data.token)
        self.cart_cache.invalidate()
        return data

    def logout(self):
        self.storage.remove(TOKEN_KEY)
        self.cart_cache.invalidate()

    def get_profile(self) -> UserProfile:
        return UserProfile.model_validate(self._request("GET", "/auth/profile", auth=True))

    def update_profile(self, **fields: Any) -> UserProfile:
        return UserProfile.model_validate(self._request("PUT", "/users/profile", json=fields, auth=True))

    def forgot_password(self, email: str) -> str:
        return self._request("POST", "/auth/forgot-password", json={"email": email})["message"]

    def reset_password(self, token: str, new_password: str) -> str:
        body = self._request("POST", "/auth/reset-password", json={"token": token, "new_password": new_password})
        return body["message"]

    # Artworks

    def list_artworks(self) -> List[ArtworkOut]:
        return _artwork_list.validate_python(self._request("GET", "/artworks"))

    def artworks_for_sale(self) -> List[ArtworkOut]:
        return _artwork_list.validate_python(self._request("GET", "/artworks/for-sale"))

    def get_artwork(self, artwork_id: str) -> ArtworkOut:
        return ArtworkOut.model_validate(self._request("GET", f"/artworks/{artwork_id}"))

    def create_artwork(self, title: str, description: str, image_url: str,
                       price: Optional[float] = None) -> ArtworkOut:
        payload: Dict[str, Any] = {"title": title, "description": description, "image_url": image_url}
        if price is not None and price > 0:
            payload["price"] = float(price)
        return ArtworkOut.model_validate(self._request("POST", "/artworks", json=payload, auth=True))

    def like_artwork(self, artwork_id: str) -> ArtworkOut:
        return ArtworkOut.model_validate(self._request("PUT", f"/artworks/{artwork_id}/like", auth=True))

    def comment_artwork(self, artwork_id: str, text: str) -> ArtworkOut:
        return ArtworkOut.model_validate(
            self._request("POST", f"/artworks/{artwork_id}/comment", json={"text": text}, auth=True))

    def sell_artwork(self, artwork_id: str, price: float) -> ArtworkOut:
        return ArtworkOut.model_validate(
            self._request("PUT", f"/artworks/{artwork_id}/sell", json={"price": price}, auth=True))

    def remove_from_sale(self, artwork_id: str) -> ArtworkOut:
        return ArtworkOut.model_validate(self._request("PUT", f"/artworks/{artwork_id}/remove-sale", auth=True))

    def buy_artwork(self, artwork_id: str) -> ArtworkOut:
        return ArtworkOut.model_validate(self._request("POST", f"/artworks/{artwork_id}/buy", auth=True))

    def my_purchases(self) -> List[PurchaseOut]:
        return _purchase_list.validate_python(self._request("GET", "/artworks/my-purchases", auth=True))

    def my_sales(self) -> List[PurchaseOut]:
        return _purchase_list.validate_python(self._request("GET", "/artworks/my-sales", auth=True))

    # Cart

    def get_cart(self) -> CartOut:
        return CartOut.model_validate(self._request("GET", "/cart", auth=True))

    def add_to_cart(self, artwork_id: str, quantity: int = 1) -> CartOut:
        return CartOut.model_validate(
            self._request("POST", "/cart/items", json={"artwork_id": artwork_id, "quantity": quantity}, auth=True))

    def update_cart_item(self, artwork_id: str, quantity: int) -> CartOut:
        return CartOut.model_validate(
            self._request("PUT", f"/cart/items/{artwork_id}", json={"quantity": quantity}, auth=True))

    def remove_from_cart(self, artwork_id: str) -> CartOut:
        return CartOut.model_validate(self._request("DELETE", f"/cart/items/{artwork_id}", auth=True))

    def clear_cart(self) -> CartOut:
        return CartOut.model_validate(self._request("DELETE", "/cart", auth=True))

    # Orders

    def create_order(self, shipping_address: Dict[str, Any], payment_method: str,
                     items: Optional[List[Dict[str, Any]]] = None, notes: Optional[str] = None) -> OrderOut:
        payload = {"shipping_address": shipping_address, "payment_method": payment_method,
                   "items": items, "notes": notes}
        order = OrderOut.model_validate(self._request("POST", "/orders", json=payload, auth=True))
        self.cart_cache.invalidate()
        return order

    def list_orders(self) -> List[OrderOut]:
        return _order_list.validate_python(self._request("GET", "/orders", auth=True))

    def list_all_orders(self) -> List[OrderOut]:
        return _order_list.validate_python(self._request("GET", "/orders/all", auth=True))

    def get_order(self, order_id: str) -> OrderOut:
        return OrderOut.model_validate(self._request("GET", f"/orders/{order_id}", auth=True))

    def cancel_order(self, order_id: str) -> OrderOut:
        return OrderOut.model_validate(self._request("PUT", f"/orders/{order_id}/cancel", auth=True))

    def pay_order(self, order_id: str, transaction_ref: Optional[str] = None) -> OrderOut:
        return OrderOut.model_validate(
            self._request("PUT", f"/orders/{order_id}/payment", json={"transaction_ref": transaction_ref}, auth=True))

    def list_addresses(self) -> List[SavedAddressOut]:
        return _address_list.validate_python(self._request("GET", "/orders/addresses", auth=True))

    def default_address(self) -> SavedAddressOut:
        return SavedAddressOut.model_validate(self._request("GET", "/orders/addresses/default", auth=True))

    def save_address(self, **address: Any) -> SavedAddressOut:
        return SavedAddressOut.model_validate(self._request("POST", "/orders/addresses", json=address, auth=True))

    def get_address(self, address_id: str) -> SavedAddressOut:
        return SavedAddressOut.model_validate(self._request("GET", f"/orders/addresses/{address_id}", auth=True))

    def update_address(self, address_id: str, **fields: Any) -> SavedAddressOut:
        return SavedAddressOut.model_validate(
            self._request("PUT", f"/orders/addresses/{address_id}", json=fields, auth=True))

    def delete_address(self, address_id: str) -> SavedAddressOut:
        return SavedAddressOut.model_validate(self._request("DELETE", f"/orders/addresses/{address_id}", auth=True))

    # Admin

    def admin_dashboard(self) -> DashboardStats:
        return DashboardStats.model_validate(self._request("GET", "/admin/dashboard", auth=True))

    def admin_users(self) -> List[UserProfile]:
        return _profile_list.validate_python(self._request("GET", "/admin/users", auth=True))

    def admin_user(self, user_id: str) -> UserProfile:
        return UserProfile.model_validate(self._request("GET", f"/admin/users/{user_id}", auth=True))

    def admin_update_user(self, user_id: str, **fields: Any) -> UserProfile:
        return UserProfile.model_validate(self._request("PUT", f"/admin/users/{user_id}", json=fields, auth=True))

    def admin_set_role(self, user_id: str, role: str) -> UserProfile:
        return UserProfile.model_validate(
            self._request("PUT", f"/admin/users/{user_id}/role", json={"role": role}, auth=True))

    def admin_delete_user(self, user_id: str) -> str:
        return self._request("DELETE", f"/admin/users/{user_id}", auth=True)["message"]

    def admin_artworks(self) -> List[ArtworkOut]:
        return _artwork_list.validate_python(self._request("GET", "/admin/artworks", auth=True))

    def admin_artwork(self, artwork_id: str) -> ArtworkOut:
        return ArtworkOut.model_validate(self._request("GET", f"/admin/artworks/{artwork_id}", auth=True))

    def admin_update_artwork(self, artwork_id: str, **fields: Any) -> ArtworkOut:
        return ArtworkOut.model_validate(
            self._request("PUT", f"/admin/artworks/{artwork_id}", json=fields, auth=True))

    def admin_delete_artwork(self, artwork_id: str) -> str:
        return self._request("DELETE", f"/admin/artworks/{artwork_id}", auth=True)["message"]

    def admin_orders(self) -> List[OrderOut]:
        return _order_list.validate_python(self._request("GET", "/admin/orders", auth=True))

    def admin_order(self, order_id: str) -> OrderOut:
        return OrderOut.model_validate(self._request("GET", f"/admin/orders/{order_id}", auth=True))

    def admin_set_order_status(self, order_id: str, status: str) -> OrderOut:
        return OrderOut.model_validate(
            self._request("PUT", f"/orders/{order_id}/status", json={"status": status}, auth=True))

    def admin_add_tracking(self, order_id: str, tracking_number: str) -> OrderOut:
        return OrderOut.model_validate(
            self._request("PUT", f"/orders/{order_id}/tracking", json={"tracking_number": tracking_number},
                          auth=True))

    def admin_sales_report(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> SalesReport:
        params = {k: v for k, v in (("start_date", start_date), ("end_date", end_date)) if v}
        return SalesReport.model_validate(self._request("GET", "/admin/reports/sales", params=params, auth=True))


class OptimisticCommand:
    """A local cart change that can be undone if the server rejects it."""

    def __init__(self, cart: "ClientCart", action: str, mutate: Callable[[List[CartLineOut]], List[CartLineOut]]):
        self.cart = cart
        self.action = action
        self._mutate = mutate
        self._snapshot: Optional[List[CartLineOut]] = None

    def apply(self):
        self._snapshot = [line.model_copy() for line in self.cart.items]
        self.cart.items = self._mutate([line.model_copy() for line in self.cart.items])

    def rollback_on(self, error: Exception):
        if self._snapshot is None:
            return
        self.cart.items = self._snapshot
        logger.warning("cart_rolled_back", action=self.action, error=str(error))


class ClientCart:
    def __init__(self, api: ApiClient):
        self.api = api
        self.items: List[CartLineOut] = []

    def sync(self):
        """Reload from the server when signed in, else from the local cache."""
        if not self.api.is_authenticated:
            self.items = self.api.cart_cache.load()
            return
        try:
            cart = self.api.get_cart()
        except ApiError as e:
            logger.warning("cart_sync_failed", error=e.message)
            self.items = self.api.cart_cache.load()
            return
        self.items = cart.items
        self.api.cart_cache.store(self.items)

    def _execute(self, command: OptimisticCommand, remote: Callable[[], Any]):
        command.apply()
        if not self.api.is_authenticated:
            self.api.cart_cache.store(self.items)
            return
        try:
            remote()
        except ApiError as e:
            command.rollback_on(e)
            raise
        # The server accepted the change; keep it as the fallback if the reload fails.
        self.api.cart_cache.store(self.items)
        self.sync()

    def add(self, artwork: ArtworkOut) -> bool:
        """Add one unit. Artworks that cannot be bought are ignored."""
        if not artwork.for_sale or artwork.sold or not artwork.price:
            return False

        def mutate(items):
            for line in items:
                if line.artwork.id == artwork.id:
                    line.quantity += 1
                    return items
            return items + [CartLineOut(artwork=artwork, quantity=1)]

        self._execute(OptimisticCommand(self, "add", mutate), lambda: self.api.add_to_cart(artwork.id, 1))
        return True

    def remove(self, artwork_id: str):
        def mutate(items):
            return [line for line in items if line.artwork.id != artwork_id]

        self._execute(OptimisticCommand(self, "remove", mutate), lambda: self.api.remove_from_cart(artwork_id))

    def update_quantity(self, artwork_id: str, quantity: int):
        if quantity <= 0:
            self.remove(artwork_id)
            return

        def mutate(items):
            for line in items:
                if line.artwork.id == artwork_id:
                    line.quantity = quantity
            return items

        self._execute(OptimisticCommand(self, "update", mutate),
                      lambda: self.api.update_cart_item(artwork_id, quantity))

    def clear(self):
        self._execute(OptimisticCommand(self, "clear", lambda items: []), self.api.clear_cart)

    def total_price(self) -> float:
        return round(sum((line.artwork.price or 0) * line.quantity for line in self.items), 2)

    def total_items(self) -> int:
        return sum(line.quantity for line in self.items)

    def contains(self, artwork_id: str) -> bool:
        return any(line.artwork.id == artwork_id for line in self.items)
