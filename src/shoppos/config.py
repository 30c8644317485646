from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path
    carts_path: Path


@dataclass(frozen=True)
class PosSettings:
    max_carts: int = 5
    invoice_prefix: str = "HD"
    invoice_code_width: int = 6
    invoice_sequence: str = "invoice_counter"
    banks_url: str = "https://qr.sepay.vn/banks.json"
    qr_base_url: str = "https://qr.sepay.vn/img"
    http_timeout: float = 10.0


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "ShopPOS") -> AppPaths:
    override = os.environ.get("SHOPPOS_HOME", "").strip()
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "shop.db"
    carts = base / "carts.json"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs, carts_path=carts)


def load_settings(environ: dict[str, str] | None = None) -> PosSettings:
    env = os.environ if environ is None else environ
    defaults = PosSettings()

    def _get(name: str, default):
        raw = env.get(f"SHOPPOS_{name}", "").strip()
        if not raw:
            return default
        return type(default)(raw)

    return PosSettings(
        max_carts=_get("MAX_CARTS", defaults.max_carts),
        invoice_prefix=_get("INVOICE_PREFIX", defaults.invoice_prefix),
        invoice_code_width=_get("INVOICE_CODE_WIDTH", defaults.invoice_code_width),
        invoice_sequence=defaults.invoice_sequence,
        banks_url=_get("BANKS_URL", defaults.banks_url),
        qr_base_url=_get("QR_BASE_URL", defaults.qr_base_url),
        http_timeout=_get("HTTP_TIMEOUT", defaults.http_timeout),
    )
