# Overview: Flask API routes for invoice operations; parses input and returns JSON responses.

# backend/invoicebridge/routes/invoices.py
"""
Invoice API Routes

- GET    /api/invoices/                  - Filtered, paged list
- GET    /api/invoices/statistics        - Totals and per-author aggregates
- GET    /api/invoices/next-number       - Next free invoice number
- GET    /api/invoices/<id>              - Invoice with items and payments
- GET    /api/invoices/by-host/<host_id> - Same, addressed by host record
- POST   /api/invoices/                  - Create
- PUT    /api/invoices/<id>              - Update (activation latch applies)
- POST   /api/invoices/<id>/status       - Change workflow status
- POST   /api/invoices/<id>/complete     - Shortcut for status=completed
- DELETE /api/invoices/<id>              - Administrative delete

Reads fall back to the host store while the relational tables are not
ready. Writes require the relational tables.
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin_token
from ..errors import NotFoundError, TransportError, ValidationError
from ..services.registry import get_invoice_service


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")

STATUS_BY_ERROR_KIND = {
    "validation": 400,
    "not_found": 404,
    "integrity": 409,
    "transport": 503,
    "unavailable": 503,
}

LIST_FILTER_ARGS = ("date_from", "date_to", "search", "kind", "workflow_status", "customer_id", "author_id")


def _criteria_from_args() -> dict:
    criteria = {}
    for name in LIST_FILTER_ARGS:
        values = request.args.getlist(name)
        if not values:
            continue
        if name in ("customer_id", "author_id"):
            values = [int(v) for v in values]
        criteria[name] = values if len(values) > 1 else values[0]
    return criteria


def _result_response(result, success_status: int = 200):
    if result.ok:
        return jsonify(result.to_dict()), success_status
    return jsonify(result.to_dict()), STATUS_BY_ERROR_KIND.get(result.error_kind, 500)


@invoices_bp.get("/")
@require_admin_token
def list_invoices_route():
    """
    Query params:
        page, page_size, order_by (effective_date|created_at|invoice_number|total_amount|balance|id),
        order (asc|desc), date_from, date_to, search, kind, workflow_status, customer_id, author_id
    """
    try:
        page = request.args.get("page", 1, type=int)
        page_size = request.args.get("page_size", 20, type=int)
        result = get_invoice_service().list_invoices(
            _criteria_from_args(),
            page,
            page_size,
            order_by=request.args.get("order_by"),
            order=request.args.get("order"),
        )
        return jsonify(result.to_dict()), 200
    except ValidationError as e:
        return jsonify({"error": str(e), "errors": e.errors}), 400
    except ValueError:
        return jsonify({"error": "customer_id and author_id must be integers"}), 400
    except TransportError as e:
        return jsonify({"error": str(e)}), 503
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/statistics")
@require_admin_token
def statistics_route():
    try:
        return jsonify(get_invoice_service().statistics(_criteria_from_args())), 200
    except ValidationError as e:
        return jsonify({"error": str(e), "errors": e.errors}), 400
    except ValueError:
        return jsonify({"error": "customer_id and author_id must be integers"}), 400
    except TransportError as e:
        return jsonify({"error": str(e)}), 503
    except Exception:
        current_app.logger.exception("Failed to compute invoice statistics")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/next-number")
@require_admin_token
def next_number_route():
    try:
        return jsonify({"invoice_number": get_invoice_service().generate_invoice_number()}), 200
    except TransportError as e:
        return jsonify({"error": str(e)}), 503
    except Exception:
        current_app.logger.exception("Failed to generate invoice number")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_admin_token
def get_invoice_route(invoice_id: int):
    try:
        return jsonify(get_invoice_service().get_invoice(invoice_id)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except TransportError as e:
        return jsonify({"error": str(e)}), 503
    except Exception:
        current_app.logger.exception("Failed to load invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/by-host/<int:host_id>")
@require_admin_token
def get_invoice_by_host_route(host_id: int):
    try:
        return jsonify(get_invoice_service().get_invoice_by_host_id(host_id)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except TransportError as e:
        return jsonify({"error": str(e)}), 503
    except Exception:
        current_app.logger.exception("Failed to load invoice by host record")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/")
@require_admin_token
def create_invoice_route():
    """
    Request body:
    {
        "invoice_number": "N25000001",   (optional, generated when omitted)
        "buyer": {"name": "...", "tax_id": "...", "phone": "...", "address": "...", "email": "..."},
        "items": [{"name": "Chair", "qty": 2, "price": 40}],
        "payments": [{"date": "2024-01-10", "amount": 80, "method": "cash"}],
        "general_note": "...",
        "kind": "proforma",              (optional; otherwise derived from payments)
        "author_id": 7                   (optional)
    }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "JSON object body required"}), 400
    try:
        author_id = data.get("author_id")
        result = get_invoice_service().create_invoice(data, user_id=int(author_id) if author_id else None)
        return _result_response(result, 201)
    except ValueError:
        return jsonify({"error": "author_id must be an integer"}), 400
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.put("/<int:invoice_id>")
@require_admin_token
def update_invoice_route(invoice_id: int):
    """
    Same body as create. Omitting "items" or "payments" keeps the stored
    rows; sending them replaces the stored rows.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "JSON object body required"}), 400
    try:
        return _result_response(get_invoice_service().update_invoice(invoice_id, data))
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/status")
@require_admin_token
def set_status_route(invoice_id: int):
    """
    Request body:
    {
        "status": "completed"
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        return _result_response(get_invoice_service().set_workflow_status(invoice_id, data.get("status")))
    except Exception:
        current_app.logger.exception("Failed to change invoice status")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/complete")
@require_admin_token
def complete_route(invoice_id: int):
    try:
        return _result_response(get_invoice_service().mark_completed(invoice_id))
    except Exception:
        current_app.logger.exception("Failed to complete invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>")
@require_admin_token
def delete_invoice_route(invoice_id: int):
    try:
        return _result_response(get_invoice_service().delete_invoice(invoice_id))
    except Exception:
        current_app.logger.exception("Failed to delete invoice")
        return jsonify({"error": "Internal server error"}), 500
