import pytest

from accounts import Accounts, record_view, toggled, validate_email, validate_password
from catalog import Catalog
from database import StorageKeys
from schemas import ErrorCode

PASSWORD = "Secret#123"


@pytest.fixture
def accounts(store):
    return Accounts(store)


def _seller(accounts, email="shop@example.com", store_name="Volt Shop"):
    res = accounts.signup_seller(email, PASSWORD, PASSWORD, store_name)
    assert res.success, res.error
    return res.value


def _buyer(accounts, email="ada@example.com"):
    res = accounts.signup_buyer(email, PASSWORD, PASSWORD, "Ada Kamara", "+23276000000")
    assert res.success, res.error
    return res.value


@pytest.mark.parametrize("email,ok", [
    ("ada@example.com", True),
    ("first.last+tag@mail.co.uk", True),
    ("ada@example", False),
    ("ada.example.com", False),
    ("", False),
])
def test_validate_email(email, ok):
    assert validate_email(email) is ok


@pytest.mark.parametrize("password,ok", [
    ("Secret#123", True),
    ("short#1", False),
    ("NoDigits#here", False),
    ("NoSymbol123", False),
])
def test_validate_password(password, ok):
    assert validate_password(password) is ok


def test_signup_seller_stores_normalized_email(accounts, store):
    seller = _seller(accounts, email="  Shop@Example.COM ")
    assert seller.id.startswith("seller-")
    assert seller.email == "shop@example.com"
    assert store.get(StorageKeys.SELLERS)[0]["store_name"] == "Volt Shop"


def test_signup_buyer_accepts_padded_email(accounts):
    buyer = _buyer(accounts, email=" Ada@Example.com  ")
    assert buyer.email == "ada@example.com"
    assert accounts.login_buyer("ada@example.com", PASSWORD).success


def test_signup_validation_tokens(accounts):
    assert accounts.signup_seller("a@b.com", PASSWORD, PASSWORD, " ").error == ErrorCode.STORE_NAME_REQUIRED
    assert accounts.signup_seller("nope", PASSWORD, PASSWORD, "S").error == ErrorCode.INVALID_EMAIL
    assert accounts.signup_seller("a@b.com", "weak", "weak", "S").error == ErrorCode.PASSWORD_WEAK
    assert accounts.signup_seller("a@b.com", PASSWORD, "Other#123", "S").error == ErrorCode.PASSWORD_MISMATCH
    assert accounts.signup_buyer("a@b.com", PASSWORD, PASSWORD, "", "1").error == ErrorCode.FILL_ALL_FIELDS


def test_duplicate_email_differing_only_by_case(accounts):
    _seller(accounts, email="shop@example.com")
    res = accounts.signup_seller("SHOP@example.com", PASSWORD, PASSWORD, "Another")
    assert res.error == ErrorCode.EMAIL_EXISTS

    _buyer(accounts, email="ada@example.com")
    res = accounts.signup_buyer("Ada@Example.com", PASSWORD, PASSWORD, "Ada", "1")
    assert res.error == ErrorCode.EMAIL_EXISTS


def test_same_email_allowed_across_roles(accounts):
    _seller(accounts, email="both@example.com")
    _buyer(accounts, email="both@example.com")


def test_signup_ids_are_unique(accounts):
    first = _seller(accounts, email="one@example.com")
    second = _seller(accounts, email="two@example.com")
    assert first.id != second.id


def test_signup_storage_failure(accounts, store):
    store.fail_writes.add(StorageKeys.BUYERS)
    res = accounts.signup_buyer("ada@example.com", PASSWORD, PASSWORD, "Ada", "1")
    assert res.error == ErrorCode.AUTH_STORAGE_ERROR


def test_login(accounts):
    seller = _seller(accounts)
    res = accounts.login_seller("SHOP@example.com", PASSWORD)
    assert res.success
    assert res.value.id == seller.id
    assert accounts.login_seller("shop@example.com", "wrong").error == ErrorCode.LOGIN_ERROR
    assert accounts.login_buyer("shop@example.com", PASSWORD).error == ErrorCode.LOGIN_ERROR


def test_login_storage_failure(accounts, store):
    store.fail_reads.add(StorageKeys.SELLERS)
    assert accounts.login_seller("shop@example.com", PASSWORD).error == ErrorCode.AUTH_STORAGE_ERROR


def test_store_rename_cascades_to_products(accounts, store, make_product):
    seller = _seller(accounts)
    catalog = Catalog(store)
    catalog.add_product(make_product(seller_id=seller.id, vendor="Volt Shop"))
    catalog.add_product(make_product(seller_id=seller.id, vendor="Volt Shop"))
    catalog.add_product(make_product(seller_id="someone-else", vendor="Elsewhere"))

    res = accounts.update_seller_profile(seller, {"store_name": "Amp House"}, catalog)
    assert res.success
    assert res.value.store_name == "Amp House"
    assert [p.vendor for p in catalog.products] == ["Amp House", "Amp House", "Elsewhere"]
    assert [p["vendor"] for p in store.get(StorageKeys.PRODUCTS)] == ["Amp House", "Amp House", "Elsewhere"]
    assert accounts.find_seller(seller.id).store_name == "Amp House"


def test_store_rename_rolls_back_when_catalog_write_fails(accounts, store, make_product):
    seller = _seller(accounts)
    catalog = Catalog(store)
    catalog.add_product(make_product(seller_id=seller.id, vendor="Volt Shop"))
    store.fail_writes.add(StorageKeys.PRODUCTS)

    res = accounts.update_seller_profile(seller, {"store_name": "Amp House"}, catalog)
    assert res.error == ErrorCode.AUTH_STORAGE_ERROR
    assert accounts.find_seller(seller.id).store_name == "Volt Shop"
    assert catalog.products[0].vendor == "Volt Shop"


def test_profile_email_must_stay_unique(accounts, store):
    _seller(accounts, email="taken@example.com", store_name="First")
    seller = _seller(accounts, email="mine@example.com", store_name="Second")
    res = accounts.update_seller_profile(seller, {"email": "Taken@example.com"}, Catalog(store))
    assert res.error == ErrorCode.EMAIL_IN_USE


def test_profile_update_cannot_change_id(accounts):
    buyer = _buyer(accounts)
    res = accounts.update_buyer_profile(buyer, {"id": "buyer-hijack", "full_name": "Ada K."})
    assert res.success
    assert res.value.id == buyer.id
    assert accounts.find_buyer(buyer.id).full_name == "Ada K."


def test_profile_update_requires_login(accounts, store):
    assert accounts.update_buyer_profile(None, {}).error == ErrorCode.NOT_LOGGED_IN
    assert accounts.update_seller_profile(None, {}, Catalog(store)).error == ErrorCode.NOT_LOGGED_IN


def test_record_view_is_capped_and_deduplicated():
    history = []
    for pid in range(25):
        history = record_view(history, pid)
    history = record_view(history, 10)
    assert history[0] == 10
    assert len(history) == 20
    assert history.count(10) == 1


def test_toggled():
    assert toggled([1, 2], 1) == [2]
    assert toggled([2], 3) == [2, 3]
