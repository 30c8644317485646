from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote, urlencode

import requests

from shoppos.config import PosSettings
from shoppos.domain.models import BankAccount, BankAccountSnapshot, money

log = logging.getLogger("shoppos.bank")


class BankQrService:
    """Transfer QR codes for invoices paid by bank transfer.

    The bank list is fetched once and cached in memory. Every failure ends in
    None so a missing QR never blocks a sale.
    """

    def __init__(self, settings: Optional[PosSettings] = None):
        self.settings = settings or PosSettings()
        self._banks: Optional[list[dict]] = None

    def _fetch_json(self, url: str) -> dict:
        r = requests.get(url, timeout=self.settings.http_timeout)
        r.raise_for_status()
        return r.json()

    def list_banks(self) -> list[dict]:
        if self._banks is not None:
            return self._banks
        try:
            data = self._fetch_json(self.settings.banks_url)
        except (requests.RequestException, ValueError) as e:
            log.warning("bank_list_failed url=%s error=%s", self.settings.banks_url, e)
            return []
        # common structure: {"data": [{"name": ..., "short_name": ..., "code": ...}, ...]}
        banks = data.get("data") if isinstance(data, dict) else data
        if not isinstance(banks, list):
            log.warning("bank_list_malformed url=%s", self.settings.banks_url)
            return []
        self._banks = [b for b in banks if isinstance(b, dict)]
        return self._banks

    def resolve_bank_code(self, bank_name: str) -> Optional[str]:
        wanted = (bank_name or "").strip().lower()
        if not wanted:
            return None
        banks = self.list_banks()

        def code_of(bank: dict) -> Optional[str]:
            return bank.get("code") or bank.get("bin") or bank.get("short_name")

        for key in ("name", "short_name", "shortName"):
            for bank in banks:
                if str(bank.get(key) or "").strip().lower() == wanted:
                    return code_of(bank)
        for bank in banks:
            names = (str(bank.get("name") or ""), str(bank.get("short_name") or bank.get("shortName") or ""))
            if any(wanted in n.lower() or (n and n.lower() in wanted) for n in names):
                return code_of(bank)
        return None

    @staticmethod
    def describe(invoice_code: str, shop_name: str) -> str:
        return f"Hóa đơn {invoice_code}: THANH TOAN HOA QUA {shop_name}".strip()

    def build_qr_url(self, account: BankAccount, amount: float, description: str) -> Optional[str]:
        try:
            bank_code = account.bank_code or self.resolve_bank_code(account.bank_name)
            if not bank_code or not account.account_number:
                log.warning("qr_unavailable account=%s bank=%s", account.id, account.bank_name)
                return None
            query = urlencode(
                {"acc": account.account_number, "bank": bank_code, "amount": int(round(money(amount)))},
            )
            return f"{self.settings.qr_base_url}?{query}&des={quote(description, safe='')}"
        except Exception as e:
            log.warning("qr_build_failed account=%s error=%s", account.id, e)
            return None

    def snapshot(self, account: BankAccount, description: str) -> BankAccountSnapshot:
        return BankAccountSnapshot(
            id=account.id,
            bank_name=account.bank_name,
            account_number=account.account_number,
            account_holder=account.account_holder,
            bank_code=account.bank_code or self.resolve_bank_code(account.bank_name) or "",
            qr_description=description,
        )
