from locust import HttpUser, task, between
import random

PRODUCT_IDS = list(range(1, 11))


class ShopperUser(HttpUser):
    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Register and log in a shopper for this simulated client
        uname = f"user_{random.randint(1, 1_000_000)}"
        creds = {"username": uname, "password": "loadtest-pass"}
        self.client.post("/register", json=creds)
        r = self.client.post("/login", json=creds)
        self.headers = {"Authorization": f"Bearer {r.json()['token']}"} if r.status_code == 200 else None
        self.order_id = None

    @task(1)
    def create_order(self):
        if not self.headers:
            return
        r = self.client.post("/orders", json={"products": []}, headers=self.headers)
        if r.status_code == 201:
            self.order_id = r.json()["order_id"]

    @task(3)
    def add_product(self):
        # concurrent adds of the same product exercise the quantity upsert
        if not self.headers or not self.order_id:
            return
        item = {"product_id": random.choice(PRODUCT_IDS), "quantity": random.randint(1, 3)}
        self.client.post(f"/orders/{self.order_id}/products", json=item, headers=self.headers,
                         name="/orders/[id]/products")

    @task(2)
    def browse_products(self):
        if not self.headers:
            return
        self.client.get("/products", params={"limit": 20, "sort": "price"}, headers=self.headers)
