from __future__ import annotations

import argparse
import logging
import sys

from shoppos.application.container import build_container
from shoppos.config import get_app_paths, load_settings
from shoppos.domain.errors import AppError
from shoppos.logging_config import setup_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shoppos", description="Shop point-of-sale engine.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("carts", help="List the open carts of this terminal.")

    debt = sub.add_parser("debt", help="Show a customer's debt balance and history.")
    debt.add_argument("customer_id")

    add = sub.add_parser("add-debt", help="Record new debt for a customer.")
    add.add_argument("customer_id")
    add.add_argument("amount", type=float)
    add.add_argument("--note", default=None)

    pay = sub.add_parser("pay-debt", help="Record a debt repayment.")
    pay.add_argument("customer_id")
    pay.add_argument("amount", type=float)
    pay.add_argument("--note", default=None)

    pay_inv = sub.add_parser("pay-invoices", help="Pay a customer's debt against specific invoices.")
    pay_inv.add_argument("customer_id")
    pay_inv.add_argument("invoice_ids", nargs="+")
    pay_inv.add_argument("--method", choices=("cash", "transfer"), default="cash")

    settle = sub.add_parser("settle", help="Settle one debt invoice.")
    settle.add_argument("invoice_id")
    settle.add_argument("--method", choices=("cash", "transfer"), default="cash")

    statement = sub.add_parser("statement", help="Export a customer's debt statement to .xlsx.")
    statement.add_argument("customer_id")
    statement.add_argument("path")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)
    container = build_container(paths.db_path, paths.carts_path, load_settings())

    try:
        if args.command == "carts":
            for cart in container.carts.carts:
                marker = "*" if cart.id == container.carts.current.id else " "
                print(f"{marker} {cart.id}  lines={len(cart.lines)}  subtotal={cart.subtotal:,.2f}  total={cart.total:,.2f}")
        elif args.command == "debt":
            customer = container.customers.get_customer(args.customer_id)
            print(f"{customer.name}: balance {customer.balance:,.2f}")
            for entry in customer.debt_history:
                print(f"  {entry.timestamp}  {entry.action:<4}  {entry.change_amount:+,.2f}  -> {entry.new_amount:,.2f}  {entry.note or ''}")
            for invoice in container.debt.outstanding_invoices(args.customer_id):
                print(f"  outstanding {invoice.invoice_code}  {invoice.total:,.2f}")
        elif args.command == "add-debt":
            movement = container.debt.add_debt(args.customer_id, args.amount, note=args.note)
            print(f"Balance: {movement.entry.new_amount:,.2f}")
        elif args.command == "pay-debt":
            movement = container.debt.pay_debt(args.customer_id, args.amount, note=args.note)
            print(f"Balance: {movement.entry.new_amount:,.2f}")
        elif args.command == "pay-invoices":
            movement = container.debt.pay_invoices(args.customer_id, args.invoice_ids, args.method)
            for warning in movement.warnings:
                print(f"warning: {warning}", file=sys.stderr)
            print(f"Balance: {movement.entry.new_amount:,.2f}")
        elif args.command == "settle":
            movement = container.debt.settle_invoice(args.invoice_id, args.method)
            for warning in movement.warnings:
                print(f"warning: {warning}", file=sys.stderr)
            print(f"Balance: {movement.entry.new_amount:,.2f}")
        elif args.command == "statement":
            container.statements.export_debt_statement(args.customer_id, args.path)
            print(f"Statement written to {args.path}")
    except AppError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        container.unsubscribe()
    return 0


if __name__ == "__main__":
    sys.exit(main())
