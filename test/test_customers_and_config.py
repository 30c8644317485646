import json
import logging
from datetime import timedelta
from pathlib import Path

import pytest
from conftest import TODAY, open_store

from shoppos.config import PosSettings, get_app_paths, load_settings
from shoppos.domain.errors import NotFoundError, ValidationError
from shoppos.domain.models import Invoice
from shoppos.logging_config import setup_logging
from shoppos.repositories.contracts import CUSTOMERS
from shoppos.services.customer_service import CustomerService, derive_purchase_stats


def _invoice(days_ago: int, total: float) -> Invoice:
    return Invoice(
        id=f"i{days_ago}",
        invoice_code="HD",
        date=(TODAY - timedelta(days=days_ago)).isoformat(),
        time="10:00",
        items=(),
        subtotal=total,
        discount=0,
        total=total,
        payment_method="cash",
        customer_id="c1",
    )


def test_purchase_frequency_uses_thirty_day_minimum_window():
    recent = derive_purchase_stats([_invoice(2, 100.0), _invoice(0, 50.0)], TODAY)
    assert recent["purchase_count"] == 2
    assert recent["total_spent"] == 150.0
    assert recent["purchase_frequency"] == 2.0
    assert recent["last_purchase_date"] == TODAY.isoformat()

    spread = derive_purchase_stats([_invoice(89, 10.0), _invoice(44, 10.0), _invoice(0, 10.0)], TODAY)
    assert spread["purchase_frequency"] == 1.0

    assert derive_purchase_stats([], TODAY)["purchase_count"] == 0


def test_create_customer_omits_empty_optionals(tmp_path: Path):
    store = open_store(tmp_path)
    customers = CustomerService(store, today=lambda: TODAY)

    created = customers.create_customer("  Lan ", phone="", email=None, address="12 Le Loi")

    doc = store.get(CUSTOMERS, created.id)
    assert doc["name"] == "Lan"
    assert "phone" not in doc
    assert "email" not in doc
    assert "debt_amount" not in doc
    assert created.debt_amount is None
    assert doc["address"] == "12 Le Loi"

    with pytest.raises(ValidationError, match="name is required"):
        customers.create_customer("   ")


def test_settings_read_environment_overrides():
    settings = load_settings({"SHOPPOS_MAX_CARTS": "3", "SHOPPOS_INVOICE_PREFIX": "INV", "SHOPPOS_HTTP_TIMEOUT": "2.5"})
    assert settings.max_carts == 3
    assert settings.invoice_prefix == "INV"
    assert settings.http_timeout == 2.5
    assert settings.invoice_code_width == PosSettings().invoice_code_width


def test_app_paths_honour_home_override(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("SHOPPOS_HOME", str(tmp_path / "pos"))
    paths = get_app_paths()
    assert paths.db_path == tmp_path / "pos" / "shop.db"
    assert paths.carts_path == tmp_path / "pos" / "carts.json"
    assert paths.logs_dir.is_dir()


def test_checkout_channel_writes_json_lines(tmp_path: Path):
    root = logging.getLogger()
    saved = root.handlers[:]
    root.handlers = []
    channel = logging.getLogger("shoppos.checkout")
    try:
        setup_logging(tmp_path)
        channel.info("checkout_settled code=%s", "HD000001")
        for handler in root.handlers + channel.handlers:
            handler.flush()
        line = (tmp_path / "checkout.log").read_text(encoding="utf-8").strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["logger"] == "shoppos.checkout"
        assert payload["message"] == "checkout_settled code=HD000001"
    finally:
        for handler in root.handlers + channel.handlers:
            handler.close()
        root.handlers = saved
        channel.handlers = []


def test_update_customer_removes_emptied_fields_and_deactivates(tmp_path: Path):
    store = open_store(tmp_path)
    customers = CustomerService(store, today=lambda: TODAY)
    lan = customers.create_customer("Lan", phone="0901", email="lan@example.com")

    edited = customers.update_customer(lan.id, name=" Lan Anh ", phone="", notes="VIP")

    doc = store.get(CUSTOMERS, lan.id)
    assert doc["name"] == "Lan Anh"
    assert "phone" not in doc
    assert doc["email"] == "lan@example.com"
    assert edited.notes == "VIP"
    with pytest.raises(ValidationError, match="name is required"):
        customers.update_customer(lan.id, name="")

    customers.deactivate_customer(lan.id)
    assert customers.list_customers() == []
    assert [c.id for c in customers.list_customers(include_inactive=True)] == [lan.id]

    customers.delete_customer(lan.id)
    with pytest.raises(NotFoundError):
        customers.get_customer(lan.id)
