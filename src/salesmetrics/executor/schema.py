"""DuckDB DDL for the activity tables the default catalog expects.

production data lives elsewhere; this schema is what local databases, the
sample data generator and the tests run against. ids are strings everywhere
so they can be uuids or crm ids without conversion.
"""

ACQUISITION_COLUMNS = """
    utm_source VARCHAR,
    utm_medium VARCHAR,
    utm_campaign VARCHAR,
    utm_content VARCHAR,
    utm_term VARCHAR,
    utm_id VARCHAR,
    source_category VARCHAR,
    specific_source VARCHAR,
    session_source VARCHAR,
    referrer VARCHAR,
    fbclid VARCHAR,
    fbc VARCHAR,
    fbp VARCHAR,
    gclid VARCHAR"""

TABLES: dict[str, str] = {
    "team_members": """
        CREATE TABLE IF NOT EXISTS team_members (
            id VARCHAR NOT NULL,
            account_id VARCHAR NOT NULL,
            full_name VARCHAR,
            role VARCHAR  -- setter | rep | admin
        )""",
    "contacts": f"""
        CREATE TABLE IF NOT EXISTS contacts (
            id VARCHAR NOT NULL,
            account_id VARCHAR NOT NULL,
            name VARCHAR,
            created_at TIMESTAMP NOT NULL,{ACQUISITION_COLUMNS}
        )""",
    "appointments": """
        CREATE TABLE IF NOT EXISTS appointments (
            id VARCHAR NOT NULL,
            account_id VARCHAR NOT NULL,
            contact_id VARCHAR,
            setter_user_id VARCHAR,
            sales_rep_user_id VARCHAR,
            call_sid VARCHAR,
            booked_at TIMESTAMP NOT NULL,
            date_booked_for DATE,
            call_outcome VARCHAR,  -- show | no_show | cancelled
            show_outcome VARCHAR,  -- won | lost | follow_up
            cash_collected DECIMAL(12, 2) DEFAULT 0,
            total_sales_value DECIMAL(12, 2) DEFAULT 0
        )""",
    "discoveries": """
        CREATE TABLE IF NOT EXISTS discoveries (
            id VARCHAR NOT NULL,
            account_id VARCHAR NOT NULL,
            contact_id VARCHAR,
            setter_user_id VARCHAR,
            sales_rep_user_id VARCHAR,
            call_sid VARCHAR,
            booked_at TIMESTAMP NOT NULL,
            call_outcome VARCHAR
        )""",
    "dials": """
        CREATE TABLE IF NOT EXISTS dials (
            id VARCHAR NOT NULL,
            account_id VARCHAR NOT NULL,
            contact_id VARCHAR,
            setter_user_id VARCHAR,
            call_sid VARCHAR,
            ended_at TIMESTAMP NOT NULL,
            duration INTEGER DEFAULT 0,  -- seconds
            answered BOOLEAN DEFAULT FALSE,
            meaningful_conversation BOOLEAN DEFAULT FALSE,
            booked BOOLEAN DEFAULT FALSE
        )""",
    "deals": """
        CREATE TABLE IF NOT EXISTS deals (
            id VARCHAR NOT NULL,
            account_id VARCHAR NOT NULL,
            contact_id VARCHAR,
            setter_user_id VARCHAR,
            sales_rep_user_id VARCHAR,
            created_at TIMESTAMP,
            closed_at TIMESTAMP NOT NULL,
            status VARCHAR,  -- won | lost
            amount DECIMAL(12, 2) DEFAULT 0
        )""",
    "payments": """
        CREATE TABLE IF NOT EXISTS payments (
            id VARCHAR NOT NULL,
            account_id VARCHAR NOT NULL,
            contact_id VARCHAR,
            deal_id VARCHAR,
            setter_user_id VARCHAR,
            sales_rep_user_id VARCHAR,
            paid_at TIMESTAMP NOT NULL,
            amount DECIMAL(12, 2) DEFAULT 0
        )""",
}


def create_statements() -> list[str]:
    """DDL in dependency order (team members and contacts first)."""
    return list(TABLES.values())
