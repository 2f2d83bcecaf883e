"""
Migration script for dispute triage, deflection and early-signal tables.
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import create_engine, inspect, text

from autopilot.config import get_settings
from autopilot.models.merchant import MerchantEvidenceProfile
from autopilot.models.signals import DisputeAlert, DisputeInquiry

settings = get_settings()

DISPUTE_COLUMNS = {
    "deflected": "BOOLEAN DEFAULT FALSE",
    "deflection_reason": "TEXT",
    "deflected_at": "VARCHAR(64)",
    "workflow_status": "VARCHAR(50) DEFAULT 'new'",
    "owner": "VARCHAR(255)",
    "next_action_at": "VARCHAR(64)",
    "internal_notes": "TEXT",
    "submission_pending_since": "BIGINT",
    "deflection_pending_since": "BIGINT",
}

MERCHANT_COLUMNS = {
    "monthly_dispute_alert_threshold_pct": "FLOAT DEFAULT 0.75",
    "monthly_transaction_count": "INTEGER DEFAULT 0",
    "statement_descriptor": "VARCHAR(255) DEFAULT ''",
    "support_email": "VARCHAR(255) DEFAULT ''",
    "support_phone": "VARCHAR(64) DEFAULT ''",
}


def _add_missing_columns(conn, table: str, columns: dict) -> None:
    existing = {c["name"] for c in inspect(conn).get_columns(table)}
    for name, ddl in columns.items():
        if name in existing:
            continue
        print(f"Adding column {table}.{name}")
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}"))


def migrate_dispute_workflow_v1():
    engine = create_engine(settings.database_url_sync, echo=True)
    with engine.begin() as conn:
        _add_missing_columns(conn, "disputes", DISPUTE_COLUMNS)
        _add_missing_columns(conn, "merchants", MERCHANT_COLUMNS)
        conn.execute(text("UPDATE disputes SET workflow_status = 'new' WHERE workflow_status IS NULL"))
        conn.execute(text("UPDATE disputes SET deflected = FALSE WHERE deflected IS NULL"))

        tables = set(inspect(conn).get_table_names())
        if "merchant_evidence_profiles" not in tables:
            MerchantEvidenceProfile.__table__.create(bind=conn)
        else:
            _add_missing_columns(conn, "merchant_evidence_profiles", {"shipping_carrier": "VARCHAR(100) DEFAULT ''"})
        if "dispute_alerts" not in tables:
            DisputeAlert.__table__.create(bind=conn)
        if "dispute_inquiries" not in tables:
            DisputeInquiry.__table__.create(bind=conn)


if __name__ == "__main__":
    print("Starting dispute workflow migration...")
    migrate_dispute_workflow_v1()
    print("Migration complete")
