import io
import unittest

from fastapi.testclient import TestClient
from PIL import Image

from mobile_order.app import create_app
from mobile_order.db import InMemoryDbClient
from mobile_order.dependencies import (
    get_db_client,
    get_max_image_bytes,
    get_storage_client,
    get_token_verifier,
)
from mobile_order.auth import InMemoryTokenVerifier
from mobile_order.storage import InMemoryStorageClient


def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), "white").save(buffer, format="PNG")
    return buffer.getvalue()


PNG_BYTES = png_bytes()

SHOP_FORM = {
    "title": "Cafe Aozora",
    "prefecture": "東京都",
    "city": "渋谷区",
    "streetAddress": "1-2-3",
}


class UnavailableDbClient(InMemoryDbClient):
    def ping(self) -> bool:
        return False


class BrokenDbClient(InMemoryDbClient):
    def list_categories(self, owner_id):
        raise RuntimeError("connection reset")


class ApiTestCase(unittest.TestCase):
    db_class = InMemoryDbClient

    def setUp(self):
        self.app = create_app()
        self.db = self.db_class()
        self.storage = InMemoryStorageClient()
        self.verifier = InMemoryTokenVerifier()
        self.app.dependency_overrides[get_db_client] = lambda: self.db
        self.app.dependency_overrides[get_storage_client] = lambda: self.storage
        self.app.dependency_overrides[get_token_verifier] = lambda: self.verifier
        self.client = TestClient(self.app)
        self.auth = self.headers_for("owner-1")

    def headers_for(self, uid):
        return {"Authorization": f"Bearer {self.verifier.issue(uid)}"}

    def create_category(self, title="Drinks", headers=None):
        response = self.client.post(
            "/api/categories", json={"title": title}, headers=headers or self.auth
        )
        self.assertEqual(response.status_code, 201)
        return response.json()["id"]

    def create_product(self, category_id, title="Latte", price="480"):
        response = self.client.post(
            f"/api/products/category/{category_id}",
            data={"title": title, "price": price, "isVisible": "true"},
            files={"imageFile": (f"{title}.png", PNG_BYTES, "image/png")},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["id"]

    def shop_image_path(self, headers):
        response = self.client.post(
            "/api/shop",
            data=SHOP_FORM,
            files={"imageFile": ("front.png", PNG_BYTES, "image/png")},
            headers=headers,
        )
        self.assertEqual(response.status_code, 201, response.text)
        return self.client.get("/api/shop", headers=headers).json()["imagePath"]


class PublicRouteTests(ApiTestCase):
    def test_root_banner(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("running", response.json()["message"])

    def test_health_ok(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "database": True})

    def test_openapi_documents_error_body(self):
        schema = self.client.get("/openapi.json").json()
        self.assertIn("ErrorResponse", schema["components"]["schemas"])
        responses = schema["paths"]["/api/categories"]["get"]["responses"]
        self.assertIn("404", responses)


class UnavailableHealthTests(ApiTestCase):
    db_class = UnavailableDbClient

    def test_health_reports_database_down(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 503)
        self.assertFalse(response.json()["database"])


class AuthTests(ApiTestCase):
    def test_missing_token(self):
        response = self.client.get("/api/categories")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["message"], "No token provided")

    def test_invalid_token(self):
        response = self.client.get(
            "/api/categories", headers={"Authorization": "Bearer forged"}
        )
        self.assertEqual(response.status_code, 401)

    def test_non_bearer_scheme(self):
        response = self.client.get(
            "/api/categories", headers={"Authorization": "Basic dXNlcjpwYXNz"}
        )
        self.assertEqual(response.status_code, 401)


class CategoryApiTests(ApiTestCase):
    def test_category_lifecycle(self):
        drinks = self.create_category("Drinks")
        food = self.create_category("Food")

        listed = self.client.get("/api/categories", headers=self.auth).json()
        self.assertEqual([c["id"] for c in listed], [drinks, food])
        self.assertEqual(listed[0]["ownerId"], "owner-1")

        response = self.client.put(
            "/api/category-sequence",
            json={"categoryIds": [food, drinks]},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 200)
        sequence = self.client.get("/api/category-sequence", headers=self.auth).json()
        self.assertEqual(sequence, {"categoryIds": [food, drinks]})
        listed = self.client.get("/api/categories", headers=self.auth).json()
        self.assertEqual([c["id"] for c in listed], [food, drinks])

        response = self.client.put(
            f"/api/categories/{drinks}", json={"title": "Coffee"}, headers=self.auth
        )
        self.assertEqual(response.json(), {"id": drinks})
        fetched = self.client.get(f"/api/categories/{drinks}", headers=self.auth)
        self.assertEqual(fetched.json()["title"], "Coffee")

        response = self.client.delete(f"/api/categories/{drinks}", headers=self.auth)
        self.assertEqual(response.status_code, 200)
        sequence = self.client.get("/api/category-sequence", headers=self.auth).json()
        self.assertEqual(sequence["categoryIds"], [food])

    def test_blank_title_is_400(self):
        response = self.client.post(
            "/api/categories", json={"title": ""}, headers=self.auth
        )
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["message"], "Invalid request")
        self.assertTrue(body["details"])

    def test_sequence_must_be_list_of_strings(self):
        response = self.client.put(
            "/api/category-sequence",
            json={"categoryIds": "not-a-list"},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 400)

    def test_other_owner_sees_404(self):
        drinks = self.create_category("Drinks")
        intruder = self.headers_for("owner-2")
        self.assertEqual(
            self.client.get(f"/api/categories/{drinks}", headers=intruder).status_code,
            404,
        )
        self.assertEqual(
            self.client.delete(
                f"/api/categories/{drinks}", headers=intruder
            ).status_code,
            404,
        )
        self.assertEqual(self.client.get("/api/categories", headers=intruder).json(), [])

    def test_delete_missing_category(self):
        response = self.client.delete("/api/categories/missing", headers=self.auth)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["message"], "Category not found")


class ProductApiTests(ApiTestCase):
    def test_create_and_list_products(self):
        category = self.create_category()
        latte = self.create_product(category, "Latte")
        mocha = self.create_product(category, "Mocha")

        listed = self.client.get(
            f"/api/products/category/{category}", headers=self.auth
        ).json()
        self.assertEqual([p["id"] for p in listed], [latte, mocha])
        self.assertTrue(listed[0]["isVisible"])
        self.assertFalse(listed[0]["isOrderAccepting"])
        self.assertEqual(listed[0]["price"], 480)
        self.assertTrue(self.storage.exists(listed[0]["imagePath"]))

        response = self.client.put(
            "/api/product-sequences",
            json={"categoryId": category, "productIds": [mocha, latte]},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 200)
        sequence = self.client.get(
            f"/api/product-sequences/category/{category}", headers=self.auth
        ).json()
        self.assertEqual(sequence, {"productIds": [mocha, latte]})

    def test_product_sequence_defaults_to_empty(self):
        response = self.client.get(
            "/api/product-sequences/category/nothing", headers=self.auth
        )
        self.assertEqual(response.json(), {"productIds": []})

    def test_create_product_with_image_url(self):
        category = self.create_category()
        response = self.client.post(
            f"/api/products/category/{category}",
            data={
                "title": "Tea",
                "price": "300",
                "imageUrl": "https://cdn.example.test/tea.png",
                "imagePath": "products/owner-1/tea",
            },
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 201)
        product = self.client.get(
            f"/api/products/{response.json()['id']}", headers=self.auth
        ).json()
        self.assertEqual(product["imagePath"], "products/owner-1/tea")

    def test_create_product_validation(self):
        category = self.create_category()
        no_image = self.client.post(
            f"/api/products/category/{category}",
            data={"title": "Tea", "price": "300"},
            headers=self.auth,
        )
        self.assertEqual(no_image.status_code, 400)

        negative = self.client.post(
            f"/api/products/category/{category}",
            data={"title": "Tea", "price": "-1"},
            files={"imageFile": ("tea.png", PNG_BYTES, "image/png")},
            headers=self.auth,
        )
        self.assertEqual(negative.status_code, 400)

        not_image = self.client.post(
            f"/api/products/category/{category}",
            data={"title": "Tea", "price": "300"},
            files={"imageFile": ("tea.txt", b"hello", "text/plain")},
            headers=self.auth,
        )
        self.assertEqual(not_image.status_code, 400)

    def test_create_product_in_missing_category(self):
        response = self.client.post(
            "/api/products/category/missing",
            data={"title": "Tea", "price": "300"},
            files={"imageFile": ("tea.png", PNG_BYTES, "image/png")},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 404)

    def test_update_moves_product_between_categories(self):
        drinks = self.create_category("Drinks")
        food = self.create_category("Food")
        latte = self.create_product(drinks)

        response = self.client.put(
            f"/api/products/{latte}",
            data={"categoryId": food, "price": "520"},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["id"], latte)

        product = self.client.get(f"/api/products/{latte}", headers=self.auth).json()
        self.assertEqual(product["categoryId"], food)
        self.assertEqual(product["price"], 520)
        drinks_seq = self.client.get(
            f"/api/product-sequences/category/{drinks}", headers=self.auth
        ).json()
        food_seq = self.client.get(
            f"/api/product-sequences/category/{food}", headers=self.auth
        ).json()
        self.assertEqual(drinks_seq["productIds"], [])
        self.assertEqual(food_seq["productIds"], [latte])

    def test_update_replaces_image(self):
        category = self.create_category()
        latte = self.create_product(category)
        before = self.client.get(f"/api/products/{latte}", headers=self.auth).json()

        response = self.client.put(
            f"/api/products/{latte}",
            data={"title": "Iced Latte"},
            files={"imageFile": ("iced.png", PNG_BYTES, "image/png")},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 200)
        after = self.client.get(f"/api/products/{latte}", headers=self.auth).json()
        self.assertEqual(after["title"], "Iced Latte")
        self.assertNotEqual(after["imagePath"], before["imagePath"])
        self.assertFalse(self.storage.exists(before["imagePath"]))

    def test_delete_product(self):
        category = self.create_category()
        latte = self.create_product(category)
        response = self.client.delete(f"/api/products/{latte}", headers=self.auth)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            self.client.get(f"/api/products/{latte}", headers=self.auth).status_code,
            404,
        )
        self.assertEqual(
            self.client.delete(f"/api/products/{latte}", headers=self.auth).status_code,
            404,
        )

    def test_other_owner_sees_404(self):
        category = self.create_category()
        latte = self.create_product(category)
        intruder = self.headers_for("owner-2")

        self.assertEqual(
            self.client.get(f"/api/products/{latte}", headers=intruder).status_code,
            404,
        )
        response = self.client.put(
            f"/api/products/{latte}", data={"title": "Stolen"}, headers=intruder
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(
            self.client.delete(f"/api/products/{latte}", headers=intruder).status_code,
            404,
        )

        product = self.client.get(f"/api/products/{latte}", headers=self.auth).json()
        self.assertEqual(product["title"], "Latte")
        self.assertTrue(self.storage.exists(product["imagePath"]))

    def test_old_image_path_of_other_owner_is_kept(self):
        other_path = self.shop_image_path(self.headers_for("owner-2"))
        category = self.create_category()
        latte = self.create_product(category)
        before = self.client.get(f"/api/products/{latte}", headers=self.auth).json()

        response = self.client.put(
            f"/api/products/{latte}",
            data={"oldImagePath": other_path},
            files={"imageFile": ("iced.png", PNG_BYTES, "image/png")},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(self.storage.exists(other_path))
        self.assertFalse(self.storage.exists(before["imagePath"]))

    def test_image_path_of_other_owner_is_rejected(self):
        other_path = self.shop_image_path(self.headers_for("owner-2"))
        category = self.create_category()
        response = self.client.post(
            f"/api/products/category/{category}",
            data={
                "title": "Tea",
                "price": "300",
                "imageUrl": self.storage.public_url(other_path),
                "imagePath": other_path,
            },
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()["message"], "imagePath must point to one of your own images"
        )
        self.assertEqual(
            self.client.get(
                f"/api/products/category/{category}", headers=self.auth
            ).json(),
            [],
        )
        self.assertTrue(self.storage.exists(other_path))

    def test_update_to_image_path_of_other_owner_is_rejected(self):
        other_path = self.shop_image_path(self.headers_for("owner-2"))
        category = self.create_category()
        latte = self.create_product(category)
        response = self.client.put(
            f"/api/products/{latte}",
            data={
                "imageUrl": self.storage.public_url(other_path),
                "imagePath": other_path,
            },
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 400)

        self.client.delete(f"/api/products/{latte}", headers=self.auth)
        self.assertTrue(self.storage.exists(other_path))

    def test_oversized_image_is_400(self):
        self.app.dependency_overrides[get_max_image_bytes] = lambda: 16
        category = self.create_category()
        response = self.client.post(
            f"/api/products/category/{category}",
            data={"title": "Latte", "price": "480"},
            files={"imageFile": ("big.png", PNG_BYTES, "image/png")},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("too large", response.json()["message"])
        self.assertEqual(self.storage.stored_objects, {})


class ShopApiTests(ApiTestCase):
    def create_shop(self):
        return self.client.post(
            "/api/shop",
            data=SHOP_FORM,
            files={"imageFile": ("front.png", PNG_BYTES, "image/png")},
            headers=self.auth,
        )

    def test_shop_lifecycle(self):
        self.assertEqual(self.client.get("/api/shop", headers=self.auth).status_code, 404)

        response = self.create_shop()
        self.assertEqual(response.status_code, 201)
        shop_id = response.json()["id"]

        shop = self.client.get("/api/shop", headers=self.auth).json()
        self.assertEqual(shop["id"], shop_id)
        self.assertEqual(shop["streetAddress"], "1-2-3")
        self.assertFalse(shop["isOrderAccepting"])
        self.assertTrue(shop["imagePath"].startswith("shops/owner-1/"))

        response = self.client.put(
            "/api/shop",
            data={"isOrderAccepting": "true", "building": "Aoyama Bldg 2F"},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 200)
        shop = self.client.get("/api/shop", headers=self.auth).json()
        self.assertTrue(shop["isOrderAccepting"])
        self.assertEqual(shop["building"], "Aoyama Bldg 2F")

    def test_duplicate_shop_is_400(self):
        self.assertEqual(self.create_shop().status_code, 201)
        response = self.create_shop()
        self.assertEqual(response.status_code, 400)

    def test_unknown_prefecture_is_400(self):
        response = self.client.post(
            "/api/shop",
            data={**SHOP_FORM, "prefecture": "Atlantis"},
            files={"imageFile": ("front.png", PNG_BYTES, "image/png")},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 400)

    def test_prefecture_defaults_to_tokyo(self):
        form = {key: value for key, value in SHOP_FORM.items() if key != "prefecture"}
        response = self.client.post(
            "/api/shop",
            data=form,
            files={"imageFile": ("front.png", PNG_BYTES, "image/png")},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 201)
        shop = self.client.get("/api/shop", headers=self.auth).json()
        self.assertEqual(shop["prefecture"], "東京都")

    def test_old_image_path_of_other_owner_is_kept(self):
        other_path = self.shop_image_path(self.headers_for("owner-2"))
        own_path = self.shop_image_path(self.auth)

        response = self.client.put(
            "/api/shop",
            data={"oldImagePath": other_path},
            files={"imageFile": ("new.png", PNG_BYTES, "image/png")},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(self.storage.exists(other_path))
        self.assertFalse(self.storage.exists(own_path))

    def test_image_path_of_other_owner_is_rejected(self):
        other_path = self.shop_image_path(self.headers_for("owner-2"))
        response = self.client.post(
            "/api/shop",
            data={
                **SHOP_FORM,
                "imageUrl": self.storage.public_url(other_path),
                "imagePath": other_path,
            },
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get("/api/shop", headers=self.auth).status_code, 404)

    def test_update_without_shop_is_404(self):
        response = self.client.put(
            "/api/shop", data={"title": "Nothing"}, headers=self.auth
        )
        self.assertEqual(response.status_code, 404)


class OrderApiTests(ApiTestCase):
    def place_order(self, **overrides):
        body = {"items": {"p1": 2}, "total": 960}
        body.update(overrides)
        response = self.client.post("/api/orders", json=body, headers=self.auth)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["id"]

    def test_order_flow(self):
        category = self.create_category()
        latte = self.create_product(category)
        first = self.place_order(
            items={latte: 1}, orderDate="2024-05-01T09:00:00+00:00", total=480
        )
        second = self.place_order(orderDate="2024-05-01T10:00:00+00:00")

        new_orders = self.client.get("/api/orders/new", headers=self.auth).json()
        self.assertEqual([o["id"] for o in new_orders], [first, second])
        self.assertEqual(new_orders[0]["productTitles"], {latte: "Latte"})
        self.assertEqual(new_orders[1]["productTitles"], {"p1": "p1"})
        self.assertEqual(new_orders[0]["orderStatus"], "newOrder")

        response = self.client.put(
            f"/api/orders/{first}/status",
            json={"orderStatus": "served"},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 200)

        past = self.client.get("/api/orders/past", headers=self.auth).json()
        self.assertEqual([o["id"] for o in past], [first])
        new_orders = self.client.get("/api/orders/new", headers=self.auth).json()
        self.assertEqual([o["id"] for o in new_orders], [second])
        everything = self.client.get("/api/orders", headers=self.auth).json()
        self.assertEqual(len(everything), 2)

        order = self.client.get(f"/api/orders/{first}", headers=self.auth).json()
        self.assertEqual(order["orderStatus"], "served")
        self.assertEqual(order["userId"], "owner-1")

    def test_invalid_status_is_400(self):
        order_id = self.place_order()
        response = self.client.put(
            f"/api/orders/{order_id}/status",
            json={"orderStatus": "lost"},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 400)

    def test_missing_order_is_404(self):
        self.assertEqual(
            self.client.get("/api/orders/missing", headers=self.auth).status_code, 404
        )
        response = self.client.put(
            "/api/orders/missing/status",
            json={"orderStatus": "served"},
            headers=self.auth,
        )
        self.assertEqual(response.status_code, 404)

    def test_other_owner_sees_404(self):
        order_id = self.place_order()
        intruder = self.headers_for("owner-2")

        self.assertEqual(
            self.client.get(f"/api/orders/{order_id}", headers=intruder).status_code,
            404,
        )
        response = self.client.put(
            f"/api/orders/{order_id}/status",
            json={"orderStatus": "cancelled"},
            headers=intruder,
        )
        self.assertEqual(response.status_code, 404)

        order = self.client.get(f"/api/orders/{order_id}", headers=self.auth).json()
        self.assertEqual(order["orderStatus"], "newOrder")

    def test_order_requires_items(self):
        response = self.client.post(
            "/api/orders", json={"items": {}, "total": 0}, headers=self.auth
        )
        self.assertEqual(response.status_code, 400)

    def test_customer_sees_own_orders(self):
        customer = self.headers_for("customer-1")
        response = self.client.post(
            "/api/orders",
            json={"ownerId": "owner-1", "items": {"p1": 1}, "total": 480},
            headers=customer,
        )
        self.assertEqual(response.status_code, 201)
        mine = self.client.get("/api/orders/mine", headers=customer).json()
        self.assertEqual(len(mine), 1)
        self.assertEqual(mine[0]["ownerId"], "owner-1")
        shop_orders = self.client.get("/api/orders", headers=self.auth).json()
        self.assertEqual(len(shop_orders), 1)


class BrokenBackendTests(ApiTestCase):
    db_class = BrokenDbClient

    def test_unexpected_errors_are_500(self):
        client = TestClient(self.app, raise_server_exceptions=False)
        with self.assertLogs("mobile_order.app", level="ERROR"):
            response = client.get("/api/categories", headers=self.auth)
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["message"], "Internal server error")


if __name__ == "__main__":
    unittest.main()
