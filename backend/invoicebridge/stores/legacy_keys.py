# Overview: Meta keys and option names used by the legacy key-value representation of invoices.

INVOICE_RECORD_TYPE = "invoice"

# Invoice header
INVOICE_NUMBER = "_invoice_number"
BUYER_NAME = "_buyer_name"
BUYER_TAX_ID = "_buyer_tax_id"
BUYER_ADDRESS = "_buyer_address"
BUYER_PHONE = "_buyer_phone"
BUYER_EMAIL = "_buyer_email"
CUSTOMER_ID = "_customer_id"
INVOICE_KIND = "_invoice_status"  # standard | fictive | proforma (historical key name)
WORKFLOW_STATUS = "_lifecycle_status"
RS_UPLOADED = "_rs_uploaded"
GENERAL_NOTE = "_general_note"

# Totals (older records may not carry these)
SUBTOTAL = "_subtotal"
TAX_AMOUNT = "_tax_amount"
DISCOUNT_AMOUNT = "_discount_amount"
TOTAL_AMOUNT = "_total_amount"
PAID_AMOUNT = "_paid_amount"
BALANCE = "_balance"

# Collections, stored as lists of dicts
ITEMS = "_invoice_items"
PAYMENT_HISTORY = "_payment_history"

# Set once a fictive invoice first becomes standard
ACTIVATION_DATE = "_activation_date"

# Migration bookkeeping
MIGRATED_MARKER = "_migrated_to_tables"
MIGRATION_FAILED_MARKER = "_migration_failed"

# Options
SCHEMA_VERSION_OPTION = "invoicebridge_schema_version"
MIGRATION_STATUS_OPTION = "invoicebridge_migration_status"
MIGRATION_PROGRESS_OPTION = "invoicebridge_migration_progress"
MIGRATION_LOCK_OPTION = "invoicebridge_migration_lock"
