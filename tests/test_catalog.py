from catalog import Catalog, average_rating, filter_products
from database import StorageKeys
from schemas import ErrorCode, Review, SortOrder


def test_catalog_loads_persisted_products(store, make_product):
    store.set(StorageKeys.PRODUCTS, [make_product(name="Drone").model_dump(mode="json")])
    catalog = Catalog(store)
    assert [p.name for p in catalog.products] == ["Drone"]


def test_catalog_falls_back_to_empty_on_read_failure(store):
    store.fail_reads.add(StorageKeys.PRODUCTS)
    assert Catalog(store).products == []


def test_catalog_ignores_malformed_records(store):
    store.set(StorageKeys.PRODUCTS, [{"id": 1}])
    assert Catalog(store).products == []


def test_add_product_writes_through(store, make_product):
    catalog = Catalog(store)
    res = catalog.add_product(make_product(name="Speaker"))
    assert res.success
    assert [p["name"] for p in store.get(StorageKeys.PRODUCTS)] == ["Speaker"]


def test_add_product_storage_failure_leaves_catalog_unchanged(store, make_product):
    catalog = Catalog(store)
    store.fail_writes.add(StorageKeys.PRODUCTS)
    res = catalog.add_product(make_product())
    assert not res.success
    assert res.error == ErrorCode.CATALOG_STORAGE_ERROR
    assert catalog.products == []


def test_update_product_replaces_by_id(store, make_product):
    catalog = Catalog(store)
    p = make_product(stock=5)
    catalog.add_product(p)
    res = catalog.update_product(p.model_copy(update={"stock": 2}))
    assert res.success
    assert catalog.get(p.id).stock == 2
    assert store.get(StorageKeys.PRODUCTS)[0]["stock"] == 2


def test_update_unknown_product(store, make_product):
    res = Catalog(store).update_product(make_product())
    assert res.error == ErrorCode.PRODUCT_NOT_FOUND


def test_rating_is_rederived_after_every_review(store, make_product):
    catalog = Catalog(store)
    p = make_product()
    catalog.add_product(p)
    for rating in [5, 4, 4, 2, 5, 3]:
        catalog.add_review(p.id, Review(author="Sam", rating=rating, comment="ok"))
        current = catalog.get(p.id)
        ratings = [r.rating for r in current.reviews]
        assert current.rating == round(sum(ratings) / len(ratings), 1)
        assert current.reviews_count == len(current.reviews)
    persisted = store.get(StorageKeys.PRODUCTS)[0]
    assert persisted["reviews_count"] == 6
    assert persisted["rating"] == 3.8


def test_review_on_unknown_product(store):
    res = Catalog(store).add_review(1, Review(author="x", rating=3))
    assert res.error == ErrorCode.PRODUCT_NOT_FOUND


def test_average_rating_of_no_reviews():
    assert average_rating([]) == 0


def test_with_vendor_only_touches_owned_products(store, make_product):
    catalog = Catalog(store)
    catalog.add_product(make_product(seller_id="seller-1", vendor="Old"))
    catalog.add_product(make_product(seller_id="seller-2", vendor="Other"))
    renamed = catalog.with_vendor("seller-1", "New")
    assert [p.vendor for p in renamed] == ["New", "Other"]
    # nothing is written until persisted
    assert [p.vendor for p in catalog.products] == ["Old", "Other"]


def test_next_product_id_skips_taken_ids(store, make_product, monkeypatch):
    catalog = Catalog(store)
    catalog.add_product(make_product(id=5000))
    monkeypatch.setattr("catalog.time.time", lambda: 5.0)
    assert catalog.next_product_id() == 5001


def test_filter_products(make_product):
    products = [
        make_product(name="Smart Bulb", category="Smart Home", price=20, rating=4.5),
        make_product(name="Gaming Mouse", category="Gaming", price=60, rating=3.2),
        make_product(name="Smart Watch", category="Wearables", price=250, rating=4.8),
    ]
    assert [p.name for p in filter_products(products, search="smart")] == ["Smart Bulb", "Smart Watch"]
    assert [p.name for p in filter_products(products, category="Gaming")] == ["Gaming Mouse"]
    assert [p.name for p in filter_products(products, price_range="50-100")] == ["Gaming Mouse"]
    assert [p.name for p in filter_products(products, price_range="200+")] == ["Smart Watch"]
    assert [p.name for p in filter_products(products, min_rating=4)] == ["Smart Bulb", "Smart Watch"]
    assert [p.price for p in filter_products(products, sort=SortOrder.PRICE_DESC)] == [250, 60, 20]
    assert [p.price for p in filter_products(products, sort=SortOrder.PRICE_ASC)] == [20, 60, 250]
