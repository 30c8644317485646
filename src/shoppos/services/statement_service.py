from __future__ import annotations

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from shoppos.services.customer_service import CustomerService
from shoppos.services.debt_service import DebtLedger


class StatementService:
    def __init__(self, ledger: DebtLedger, customers: CustomerService):
        self.ledger = ledger
        self.customers = customers

    def export_debt_statement(self, customer_id: str, path: str) -> None:
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, end_row: int, end_col: int):
            ref = f"A{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        customer = self.customers.get_customer(customer_id)
        outstanding = self.ledger.outstanding_invoices(customer_id)
        outstanding_total = sum(inv.total for inv in outstanding)

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Debt statement"
        ws["A1"].font = Font(bold=True, size=14)

        rows = [
            ("Customer", customer.name, "text"),
            ("Phone", customer.phone or "", "text"),
            ("Current balance", customer.balance, "money"),
            ("Outstanding invoices", len(outstanding), "int"),
            ("Outstanding total", float(outstanding_total), "money"),
            ("History entries", len(customer.debt_history), "int"),
        ]
        for i, (label, val, kind) in enumerate(rows):
            r = 3 + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if kind == "money":
                money(ws[f"B{r}"])
        set_widths(ws, {"A": 24, "B": 34})

        # -------- 2) History --------
        ws2 = wb.create_sheet("History")
        ws2.append(["Timestamp", "Action", "Previous", "Change", "New balance", "Invoices", "Note"])
        bold_row(ws2, 1)
        for r, entry in enumerate(customer.debt_history, start=2):
            ws2.append([
                entry.timestamp,
                entry.action,
                entry.previous_amount,
                float(entry.change_amount),
                float(entry.new_amount),
                ", ".join(entry.invoice_ids),
                entry.note or "",
            ])
            for col in ("C", "D", "E"):
                money(ws2[f"{col}{r}"])
        ws2.freeze_panes = "A2"
        set_widths(ws2, {"A": 22, "B": 8, "C": 16, "D": 16, "E": 16, "F": 30, "G": 34})
        if ws2.max_row >= 2:
            add_table(ws2, "DebtHistory", 1, ws2.max_row, 7)

        # -------- 3) Outstanding --------
        ws3 = wb.create_sheet("Outstanding")
        ws3.append(["Invoice", "Date", "Time", "Items", "Subtotal", "Discount", "Total"])
        bold_row(ws3, 1)
        for r, inv in enumerate(outstanding, start=2):
            ws3.append([
                inv.invoice_code,
                inv.date,
                inv.time,
                sum(int(it.quantity) for it in inv.items),
                float(inv.subtotal),
                float(inv.discount),
                float(inv.total),
            ])
            for col in ("E", "F", "G"):
                money(ws3[f"{col}{r}"])
        ws3.freeze_panes = "A2"
        set_widths(ws3, {"A": 12, "B": 12, "C": 8, "D": 8, "E": 16, "F": 16, "G": 16})
        if ws3.max_row >= 2:
            add_table(ws3, "OutstandingInvoices", 1, ws3.max_row, 7)

        wb.save(path)
