from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shoppos.domain.models import Cart

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartState:
    carts: list[Cart]
    current_cart_id: str


class CartStateFile:
    """Durable local storage for the open carts of this terminal."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> Optional[CartState]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            carts = [Cart.from_dict(c) for c in data.get("carts") or []]
            current = str(data.get("current_cart_id") or "")
        except (OSError, ValueError, KeyError, TypeError) as exc:
            log.warning("cart_state_unreadable path=%s error=%s", self.path, exc)
            return None
        if not carts:
            return None
        return CartState(carts=carts, current_cart_id=current)

    def save(self, state: CartState) -> None:
        payload = {
            "current_cart_id": state.current_cart_id,
            "carts": [c.to_dict() for c in state.carts],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)
