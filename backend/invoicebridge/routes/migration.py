# Overview: Flask API routes for the migration control surface; parses input and returns JSON responses.

# backend/invoicebridge/routes/migration.py
"""
Migration Control API Routes

Operator endpoints driving the host-store -> relational migration:
- POST /api/migration/batch          - Migrate the next batch of host records
- GET  /api/migration/progress       - Counts and percentage
- GET  /api/migration/status         - Status, progress, schema health, lock holder
- POST /api/migration/rollback       - Truncate relational tables and clear markers
- GET  /api/migration/verify         - Orphans plus sampled field comparison
- POST /api/migration/migrate-one    - Diagnostic single-entity migration
- POST /api/migration/retry-failed   - Clear failure markers so entities are retried
- POST /api/migration/schema/reconcile
- GET  /api/migration/schema/health

SECURITY:
- Every route requires the admin bearer token (when configured).
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin_token
from ..errors import MigrationLockedError, TransportError
from ..services.registry import get_migration_engine, get_reconciler


migration_bp = Blueprint("migration", __name__, url_prefix="/api/migration")


def _int_arg(data: dict, name: str):
    value = data.get(name)
    if value is None or value == "":
        return None
    return int(value)


@migration_bp.post("/batch")
@require_admin_token
def run_batch_route():
    """
    Request body (optional):
    {
        "batch_size": 50
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        batch_size = _int_arg(data, "batch_size") or current_app.config["MIGRATION_BATCH_SIZE"]
        result = get_migration_engine().run_batch(batch_size)
        status = 409 if result.locked else (200 if result.success else 503)
        return jsonify(result.to_dict()), status
    except (TypeError, ValueError):
        return jsonify({"error": "batch_size must be an integer"}), 400
    except TransportError as e:
        return jsonify({"error": str(e)}), 503
    except Exception:
        current_app.logger.exception("Migration batch failed")
        return jsonify({"error": "Internal server error"}), 500


@migration_bp.get("/progress")
@require_admin_token
def progress_route():
    try:
        return jsonify(get_migration_engine().get_progress()), 200
    except Exception:
        current_app.logger.exception("Failed to read migration progress")
        return jsonify({"error": "Internal server error"}), 500


@migration_bp.get("/status")
@require_admin_token
def status_route():
    try:
        return jsonify(get_migration_engine().get_status()), 200
    except Exception:
        current_app.logger.exception("Failed to read migration status")
        return jsonify({"error": "Internal server error"}), 500


@migration_bp.post("/rollback")
@require_admin_token
def rollback_route():
    """
    Destructive: empties invoices, invoice_items and payments.

    Request body:
    {
        "confirm": true
    }
    """
    data = request.get_json(silent=True) or {}
    if data.get("confirm") is not True:
        return jsonify({"error": "Rollback requires {\"confirm\": true}"}), 400
    try:
        ok = get_migration_engine().rollback()
        if not ok:
            return jsonify({"success": False, "error": "Rollback failed"}), 503
        return jsonify({"success": True}), 200
    except MigrationLockedError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Migration rollback failed")
        return jsonify({"error": "Internal server error"}), 500


@migration_bp.get("/verify")
@require_admin_token
def verify_route():
    try:
        return jsonify(get_migration_engine().verify_integrity()), 200
    except Exception:
        current_app.logger.exception("Integrity verification failed")
        return jsonify({"error": "Internal server error"}), 500


@migration_bp.post("/migrate-one")
@require_admin_token
def migrate_one_route():
    """
    Request body (optional):
    {
        "host_id": 42    (defaults to the first unmigrated host record)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        host_id = _int_arg(data, "host_id")
        result = get_migration_engine().migrate_one(host_id)
        return jsonify(result), 200
    except (TypeError, ValueError):
        return jsonify({"error": "host_id must be an integer"}), 400
    except MigrationLockedError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Single-entity migration failed")
        return jsonify({"error": "Internal server error"}), 500


@migration_bp.post("/retry-failed")
@require_admin_token
def retry_failed_route():
    try:
        cleared = get_migration_engine().retry_failed()
        return jsonify({"cleared": cleared}), 200
    except Exception:
        current_app.logger.exception("Failed to clear migration failure markers")
        return jsonify({"error": "Internal server error"}), 500


@migration_bp.post("/schema/reconcile")
@require_admin_token
def reconcile_route():
    try:
        report = get_reconciler().reconcile()
        return jsonify(report.to_dict()), (200 if report.ok else 503)
    except Exception:
        current_app.logger.exception("Schema reconciliation failed")
        return jsonify({"error": "Internal server error"}), 500


@migration_bp.get("/schema/health")
@require_admin_token
def schema_health_route():
    try:
        return jsonify(get_reconciler().health_status()), 200
    except Exception:
        current_app.logger.exception("Failed to read schema health")
        return jsonify({"error": "Internal server error"}), 500
