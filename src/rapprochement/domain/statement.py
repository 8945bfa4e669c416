"""Bank statement domain service."""

import csv
import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Union
from datetime import date
from decimal import Decimal

from rapprochement.database.base import Database
from rapprochement.domain.entities import Statement, TransactionLine
from rapprochement.domain.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
    statement_not_found,
    store_errors,
)
from rapprochement.utils.amount_parser import parse_amount
from rapprochement.utils.date_parser import parse_date

logger = logging.getLogger(__name__)


def split_amount(amount: Decimal) -> tuple[Decimal, Decimal]:
    """Turn a signed amount into (debit, credit)."""
    if amount < 0:
        return -amount, Decimal("0")
    return Decimal("0"), amount


def validate_debit_credit(debit: Decimal, credit: Decimal) -> tuple[Decimal, Decimal]:
    """Check that exactly one of debit and credit is set, both non-negative."""
    debit = Decimal(debit or 0)
    credit = Decimal(credit or 0)
    if debit < 0 or credit < 0:
        raise ValidationError("Debit and credit must be >= 0")
    if (debit > 0) == (credit > 0):
        raise ValidationError("A transaction line is either a debit or a credit (exactly one non-zero)")
    return debit, credit


class StatementService:
    """Service for managing bank statements and their transaction lines."""

    def __init__(self, db: Database, actor: str = "system"):
        """Initialize statement service.

        Args:
            db: Database instance
            actor: Name recorded as statement creator
        """
        self.db = db
        self.actor = actor

    def next_statement_number(self, reference_date: Optional[date] = None) -> str:
        """Next free number of the form RAP-YYMM-NN."""
        reference_date = reference_date or date.today()
        prefix = f"RAP-{reference_date:%y%m}-"
        sequence = self.db.count_statements_with_prefix(prefix) + 1
        number = f"{prefix}{sequence:02d}"
        while self.db.get_statement_by_number(number) is not None:
            sequence += 1
            number = f"{prefix}{sequence:02d}"
        return number

    def create_statement(
        self,
        number: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> int:
        """Create a statement.

        Args:
            number: Statement number; generated when omitted
            start_date: Optional first day covered
            end_date: Optional last day covered

        Returns:
            Statement ID

        Raises:
            ValidationError: If the date range is inverted
            ConflictError: If the number is already used
        """
        if start_date and end_date and start_date > end_date:
            raise ValidationError("Statement start date is after its end date")
        if number is None:
            number = self.next_statement_number(start_date)
        elif self.db.get_statement_by_number(number) is not None:
            raise ConflictError(f"Statement '{number}' already exists")

        statement_id = self.db.create_statement(
            number=number, created_by=self.actor, start_date=start_date, end_date=end_date
        )
        logger.info("Created statement %s", number)
        return statement_id

    def get_statement(self, statement_id: int) -> Optional[Statement]:
        return self.db.get_statement(statement_id)

    def resolve_statement(self, statement: Union[int, str]) -> Statement:
        """Find a statement by number or ID.

        Raises:
            NotFoundError: If no statement matches
        """
        found = self.db.get_statement_by_number(str(statement))
        if found is None and str(statement).isdigit():
            found = self.db.get_statement(int(statement))
        if found is None:
            raise NotFoundError(statement_not_found(statement))
        return found

    def list_statements(self) -> list[Statement]:
        return self.db.list_statements()

    def list_lines(self, statement_id: int) -> list[TransactionLine]:
        return self.db.list_transaction_lines(statement_id)

    def get_line(self, line_id: int) -> Optional[TransactionLine]:
        return self.db.get_transaction_line(line_id)

    def add_line(
        self,
        statement_id: int,
        date: date,
        label: str,
        debit: Decimal = Decimal("0"),
        credit: Decimal = Decimal("0"),
        amount: Optional[Decimal] = None,
        line_number: Optional[str] = None,
    ) -> int:
        """Append a transaction line to a statement.

        Either give debit/credit, or a signed amount (negative = debit).

        Returns:
            Line ID

        Raises:
            NotFoundError: If the statement does not exist
            ValidationError: If the debit/credit pair is invalid
            ConflictError: If the line number already exists in the statement
        """
        if self.db.get_statement(statement_id) is None:
            raise NotFoundError(statement_not_found(statement_id))
        if amount is not None:
            if debit or credit:
                raise ValidationError("Give either an amount or a debit/credit pair, not both")
            debit, credit = split_amount(Decimal(amount))
        debit, credit = validate_debit_credit(debit, credit)
        if label is None or not label.strip():
            raise ValidationError("Transaction label cannot be empty")

        if line_number is None:
            sequence = self.db.count_transaction_lines(statement_id) + 1
            line_number = f"RL-{date:%Y%m%d}-{sequence:05d}"
        if self.db.get_transaction_line_by_number(statement_id, line_number) is not None:
            raise ConflictError(f"Line '{line_number}' already exists in statement {statement_id}")

        with store_errors("add transaction line"):
            return self.db.create_transaction_line(
                statement_id=statement_id,
                line_number=line_number,
                date=date,
                label=label.strip(),
                debit=debit,
                credit=credit,
            )

    def add_lines(self, statement_id: int, rows: Iterable[dict[str, Any]]) -> dict[str, Any]:
        """Append pre-parsed rows to a statement.

        Each row holds ``date``, ``label`` and either ``amount`` or
        ``debit``/``credit``, plus an optional ``line_number``. Rows whose
        line number is already present are skipped, so re-importing the
        same export is harmless.

        Returns:
            Dict with import statistics:
            - imported: number of lines created
            - skipped: number of rows already present
            - errors: list of error messages
        """
        if self.db.get_statement(statement_id) is None:
            raise NotFoundError(statement_not_found(statement_id))

        imported = 0
        skipped = 0
        errors = []
        for index, row in enumerate(rows, start=1):
            row_num = row.get("row_num", index)
            line_number = row.get("line_number")
            if line_number and self.db.get_transaction_line_by_number(statement_id, line_number):
                skipped += 1
                continue
            try:
                self.add_line(
                    statement_id,
                    date=row["date"],
                    label=row.get("label", ""),
                    debit=row.get("debit") or Decimal("0"),
                    credit=row.get("credit") or Decimal("0"),
                    amount=row.get("amount"),
                    line_number=line_number,
                )
                imported += 1
            except KeyError as e:
                errors.append(f"Row {row_num}: Missing {e.args[0]}")
            except (ValidationError, ConflictError) as e:
                errors.append(f"Row {row_num}: {e}")

        logger.info(
            "Statement %s: %d lines imported, %d skipped, %d errors",
            statement_id,
            imported,
            skipped,
            len(errors),
        )
        return {"imported": imported, "skipped": skipped, "errors": errors}

    def import_csv(self, statement_id: int, csv_file_path: str) -> dict[str, Any]:
        """Append the lines of a bank export to a statement.

        The file needs ``date`` and ``label`` columns, plus either ``amount``
        (signed) or ``debit`` and ``credit``. An optional ``line_number``
        column makes re-imports skip lines already present.

        Raises:
            NotFoundError: If the statement does not exist
            FileNotFoundError: If the CSV file doesn't exist
            ValueError: If required columns are missing
        """
        csv_path = Path(csv_file_path)
        if not csv_path.exists():
            raise FileNotFoundError(f"CSV file not found: {csv_file_path}")

        rows = []
        errors = []
        with open(csv_path, "r", encoding="utf-8-sig") as f:
            # Try to detect delimiter
            sample = f.read(1024)
            f.seek(0)
            try:
                delimiter = csv.Sniffer().sniff(sample, delimiters=",;\t").delimiter
            except csv.Error:
                delimiter = ","
            reader = csv.DictReader(f, delimiter=delimiter)

            columns = {c.strip().lower() for c in reader.fieldnames or []}
            missing = {"date", "label"} - columns
            if "amount" not in columns and not {"debit", "credit"} <= columns:
                missing.add("amount (or debit and credit)")
            if missing:
                raise ValueError(f"CSV file missing required columns: {', '.join(sorted(missing))}")

            for row_num, raw in enumerate(reader, start=2):  # Header is row 1
                values = {
                    k.strip().lower(): (v.strip() if v else "") for k, v in raw.items() if k is not None
                }
                try:
                    row: dict[str, Any] = {
                        "row_num": row_num,
                        "date": parse_date(values["date"]),
                        "label": values["label"],
                        "line_number": values.get("line_number") or None,
                    }
                    if values.get("amount"):
                        row["amount"] = parse_amount(values["amount"])
                    else:
                        if values.get("debit"):
                            row["debit"] = parse_amount(values["debit"])
                        if values.get("credit"):
                            row["credit"] = parse_amount(values["credit"])
                except ValueError as e:
                    errors.append(f"Row {row_num}: {e}")
                    continue
                rows.append(row)

        result = self.add_lines(statement_id, rows)
        result["errors"] = errors + result["errors"]
        return result
