"""
expense_store.py

PostgreSQL persistence for expenses, receipts, categories and notifications.
Every query is scoped by user_id.
"""

import os
import sys
from decimal import Decimal
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2.extras import DictCursor, Json

from fluxpense.exception import CustomException, PersistenceFailed
from fluxpense.logger import get_logger
from fluxpense.models import Expense, Notification, OcrStatus, Receipt

logger = get_logger(__name__)

EXPENSE_COLUMNS = (
    "amount", "description", "category_id", "date", "merchant_name", "payment_method",
    "location", "tags", "receipt_url", "receipt_data",
)
RECEIPT_EXTRACTION_COLUMNS = (
    "ocr_data", "extracted_amount", "extracted_merchant", "extracted_date",
    "extracted_items", "confidence_score",
)
JSON_COLUMNS = {"receipt_data", "ocr_data", "extracted_items"}


def _adapt(column: str, value: Any) -> Any:
    if column in JSON_COLUMNS and value is not None:
        return Json(value)
    return value


class ExpenseStore:
    def __init__(self, conn_str: Optional[str] = None):
        try:
            self.conn_str = conn_str or os.getenv("FLUXPENSE_DB_URL")
            if not self.conn_str:
                raise CustomException("Database connection string (FLUXPENSE_DB_URL) not found.")

            self._init_db()
            logger.info("Initialized ExpenseStore (Postgres).")
        except Exception as e:
            raise CustomException(e, sys)

    def _init_db(self):
        """Creates the workflow tables if they do not exist."""
        try:
            with psycopg2.connect(self.conn_str) as conn:
                with conn.cursor() as cur:
                    cur.execute('''
                        CREATE TABLE IF NOT EXISTS categories (
                            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                            user_id TEXT NOT NULL,
                            name TEXT NOT NULL,
                            icon TEXT,
                            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                            UNIQUE (user_id, name)
                        )
                    ''')
                    cur.execute('''
                        CREATE TABLE IF NOT EXISTS expenses (
                            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                            user_id TEXT NOT NULL,
                            amount NUMERIC(12, 2) NOT NULL,
                            description TEXT NOT NULL,
                            category_id UUID REFERENCES categories(id),
                            date DATE NOT NULL DEFAULT CURRENT_DATE,
                            merchant_name TEXT,
                            payment_method TEXT,
                            location TEXT,
                            tags TEXT[],
                            receipt_url TEXT,
                            receipt_data JSONB,
                            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                        )
                    ''')
                    cur.execute('''
                        CREATE TABLE IF NOT EXISTS receipts (
                            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                            user_id TEXT NOT NULL,
                            image_url TEXT NOT NULL,
                            original_filename TEXT,
                            file_size INTEGER,
                            ocr_status TEXT DEFAULT 'pending',
                            ocr_data JSONB,
                            extracted_amount NUMERIC(12, 2),
                            extracted_merchant TEXT,
                            extracted_date DATE,
                            extracted_items JSONB,
                            confidence_score REAL,
                            expense_id UUID REFERENCES expenses(id) ON DELETE SET NULL,
                            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                        )
                    ''')
                    cur.execute('''
                        CREATE TABLE IF NOT EXISTS notifications (
                            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                            user_id TEXT NOT NULL,
                            title TEXT NOT NULL,
                            message TEXT NOT NULL,
                            type TEXT DEFAULT 'info',
                            is_read BOOLEAN DEFAULT FALSE,
                            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                        )
                    ''')
            logger.debug("Expense store schema verified.")
        except Exception as e:
            logger.error("Failed to initialize expense store schema.")
            raise CustomException(e, sys)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------
    def find_category_id(self, user_id: str, name: str) -> Optional[str]:
        """Category id by name, only among the user's own categories."""
        try:
            with psycopg2.connect(self.conn_str) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT id FROM categories WHERE user_id = %s AND name = %s LIMIT 1",
                        (user_id, name),
                    )
                    row = cur.fetchone()
            return str(row[0]) if row else None
        except Exception as e:
            logger.error(f"Failed to look up category '{name}' for {user_id}: {e}")
            raise PersistenceFailed(e, sys)

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------
    def insert_expense(self, user_id: str, fields: Dict[str, Any]) -> Expense:
        columns = ["user_id"] + [c for c in EXPENSE_COLUMNS if fields.get(c) is not None]
        values = [user_id] + [_adapt(c, fields[c]) for c in columns[1:]]
        placeholders = ", ".join(["%s"] * len(columns))

        try:
            with psycopg2.connect(self.conn_str) as conn:
                with conn.cursor(cursor_factory=DictCursor) as cur:
                    cur.execute(
                        f"INSERT INTO expenses ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
                        tuple(values),
                    )
                    row = cur.fetchone()
            expense = Expense.model_validate(_row_to_dict(row))
            logger.info(f"Inserted expense {expense.id} for user {user_id}")
            return expense
        except Exception as e:
            logger.error(f"Failed to insert expense for {user_id}: {e}")
            raise PersistenceFailed(e, sys)

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------
    def insert_receipt(
        self,
        user_id: str,
        image_url: str,
        ocr_status: OcrStatus = OcrStatus.PENDING,
        original_filename: Optional[str] = None,
        file_size: Optional[int] = None,
        extraction: Optional[Dict[str, Any]] = None,
    ) -> Receipt:
        fields: Dict[str, Any] = {
            "user_id": user_id,
            "image_url": image_url,
            "ocr_status": OcrStatus(ocr_status).value,
            "original_filename": original_filename,
            "file_size": file_size,
        }
        for column in RECEIPT_EXTRACTION_COLUMNS:
            if extraction and extraction.get(column) is not None:
                fields[column] = extraction[column]

        columns = [c for c, v in fields.items() if v is not None]
        placeholders = ", ".join(["%s"] * len(columns))
        try:
            with psycopg2.connect(self.conn_str) as conn:
                with conn.cursor(cursor_factory=DictCursor) as cur:
                    cur.execute(
                        f"INSERT INTO receipts ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
                        tuple(_adapt(c, fields[c]) for c in columns),
                    )
                    row = cur.fetchone()
            receipt = Receipt.model_validate(_row_to_dict(row))
            logger.info(f"Inserted receipt {receipt.id} ({receipt.ocr_status.value}) for user {user_id}")
            return receipt
        except Exception as e:
            logger.error(f"Failed to insert receipt for {user_id}: {e}")
            raise PersistenceFailed(e, sys)

    def update_receipt_extraction(
        self,
        user_id: str,
        receipt_id: str,
        ocr_status: OcrStatus,
        extraction: Optional[Dict[str, Any]] = None,
    ) -> Receipt:
        assignments = ["ocr_status = %s"]
        values: List[Any] = [OcrStatus(ocr_status).value]
        for column in RECEIPT_EXTRACTION_COLUMNS:
            if extraction and column in extraction:
                assignments.append(f"{column} = %s")
                values.append(_adapt(column, extraction[column]))

        try:
            with psycopg2.connect(self.conn_str) as conn:
                with conn.cursor(cursor_factory=DictCursor) as cur:
                    cur.execute(
                        f"UPDATE receipts SET {', '.join(assignments)} WHERE id = %s AND user_id = %s RETURNING *",
                        tuple(values) + (receipt_id, user_id),
                    )
                    row = cur.fetchone()
            if row is None:
                raise PersistenceFailed(f"Receipt {receipt_id} not found")
            logger.info(f"Receipt {receipt_id} marked '{OcrStatus(ocr_status).value}'")
            return Receipt.model_validate(_row_to_dict(row))
        except PersistenceFailed:
            raise
        except Exception as e:
            logger.error(f"Failed to update receipt {receipt_id}: {e}")
            raise PersistenceFailed(e, sys)

    def link_receipt_expense(self, user_id: str, receipt_id: str, expense_id: str):
        try:
            with psycopg2.connect(self.conn_str) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "UPDATE receipts SET expense_id = %s WHERE id = %s AND user_id = %s",
                        (expense_id, receipt_id, user_id),
                    )
            logger.debug(f"Linked receipt {receipt_id} -> expense {expense_id}")
        except Exception as e:
            logger.error(f"Failed to link receipt {receipt_id}: {e}")
            raise PersistenceFailed(e, sys)

    def get_receipt(self, user_id: str, receipt_id: str) -> Optional[Receipt]:
        try:
            with psycopg2.connect(self.conn_str) as conn:
                with conn.cursor(cursor_factory=DictCursor) as cur:
                    cur.execute(
                        "SELECT * FROM receipts WHERE id = %s AND user_id = %s",
                        (receipt_id, user_id),
                    )
                    row = cur.fetchone()
            return Receipt.model_validate(_row_to_dict(row)) if row else None
        except Exception as e:
            logger.error(f"Failed to fetch receipt {receipt_id}: {e}")
            raise PersistenceFailed(e, sys)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    def insert_notification(self, notification: Notification) -> Notification:
        try:
            with psycopg2.connect(self.conn_str) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "INSERT INTO notifications (user_id, title, message, type) VALUES (%s, %s, %s, %s) RETURNING id",
                        (notification.user_id, notification.title, notification.message, notification.type),
                    )
                    row = cur.fetchone()
            return notification.model_copy(update={"id": str(row[0]) if row else None})
        except Exception as e:
            logger.error(f"Failed to insert notification for {notification.user_id}: {e}")
            raise PersistenceFailed(e, sys)


def _row_to_dict(row) -> Dict[str, Any]:
    data = dict(row)
    for key, value in data.items():
        # NUMERIC columns come back as Decimal
        if isinstance(value, Decimal):
            data[key] = float(value)
    return data
