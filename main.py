from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from plan_engine import JobMonitor, OverdueStatusJob, PaymentProcessor
from plan_engine.config import Config
from plan_engine.errors import FatalJobFailure, NotFoundError, ValidationError
from plan_engine.output import OutputBuilder
from plan_engine.storage import SqlLedgerStore
import os
import logging

# Configure logging
logging.basicConfig(level=Config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Enable CORS for all routes
CORS(app)

# Initialize the store, processor and job (shared by all requests)
store = SqlLedgerStore.from_url(Config.DATABASE_URL, create_tables=Config.DATABASE_CREATE_TABLES)
processor = PaymentProcessor(store)
overdue_job = OverdueStatusJob(store)
job_monitor = JobMonitor(store)
output_builder = OutputBuilder()


def error_response(e, status_code):
    body = {"error": str(e), "status": "validation_failed" if status_code == 400 else "failed"}
    if isinstance(e, ValidationError):
        body["error"] = e.message
        body["field"] = e.field
    return jsonify(body), status_code


def tenant_id():
    agency_id = request.headers.get("X-Agency-Id")
    if not agency_id:
        raise ValidationError("X-Agency-Id", "header is required")
    return agency_id


@app.errorhandler(ValueError)
def handle_validation_error(e):
    # Validation errors from engine
    logger.error(f"Validation error: {str(e)}")
    return error_response(e, 400)


@app.errorhandler(NotFoundError)
def handle_not_found(e):
    logger.warning(f"Not found: {str(e)}")
    return error_response(e, 404)


@app.errorhandler(KeyError)
def handle_missing_field(e):
    logger.error(f"Missing field: {str(e)}")
    return error_response(ValueError(f"Missing field: {e.args[0]}"), 400)


@app.route("/api", methods=["GET"])
def api_info():
    """API information endpoint"""
    return jsonify({
        "status": "ok",
        "message": "Payment Plan & Commission API",
        "version": "1.0",
        "endpoints": {
            "create_plan": "/payment-plans [POST]",
            "record_payment": "/installments/<id>/record-payment [POST]",
            "cancel_installment": "/installments/<id>/cancel [POST]",
            "update_statuses": "/jobs/update-installment-statuses [POST]",
            "job_health": "/jobs/health [GET]",
            "job_metrics": "/jobs/metrics [GET]",
            "health": "/health [GET]"
        }
    }), 200


@app.route("/health", methods=["GET"])
def health():
    """Health check for monitoring"""
    return jsonify({"status": "healthy", "environment": Config.ENVIRONMENT}), 200


@app.route("/payment-plans", methods=["POST"])
def create_payment_plan():
    """Create a payment plan with its installment schedule"""
    agency_id = tenant_id()
    input_data = request.get_json(force=True, silent=True)
    if not input_data:
        return jsonify({"error": "No input data provided", "status": "failed"}), 400

    logger.info(f"Creating payment plan for agency {agency_id}")
    result = processor.create_plan_from_dict(agency_id, input_data)
    return jsonify(result), 201


@app.route("/installments/<installment_id>/record-payment", methods=["POST"])
def record_payment(installment_id):
    """Record a payment against an installment"""
    agency_id = tenant_id()
    input_data = request.get_json(force=True, silent=True)
    if not input_data:
        return jsonify({"error": "No input data provided", "status": "failed"}), 400

    logger.info(f"Recording payment on installment {installment_id} for agency {agency_id}")
    result = processor.record_payment_from_dict(agency_id, installment_id, input_data)
    return jsonify(result), 200


@app.route("/installments/<installment_id>/cancel", methods=["POST"])
def cancel_installment(installment_id):
    """Cancel an installment"""
    agency_id = tenant_id()
    result = processor.cancel_installment_to_dict(agency_id, installment_id)
    return jsonify(result), 200


@app.route("/jobs/update-installment-statuses", methods=["POST"])
def update_installment_statuses():
    """
    Run the overdue status sweep (manual trigger or external scheduler)
    """
    if not Config.JOB_API_KEY or request.headers.get("X-API-Key") != Config.JOB_API_KEY:
        logger.warning("Unauthorized job trigger attempt")
        return jsonify({"error": "Unauthorized", "status": "failed"}), 401

    input_data = request.get_json(force=True, silent=True) or {}
    try:
        summary = overdue_job.run(trigger="manual", force=bool(input_data.get("force", False)))
    except FatalJobFailure as e:
        logger.error(f"Job failed: {str(e)}", exc_info=True)
        return jsonify({"error": str(e), "status": "failed", "job_run_id": e.job_run_id}), 500

    return jsonify(output_builder.job_summary(summary)), 200


@app.route("/jobs/health", methods=["GET"])
def job_health():
    """Missed-execution check for the overdue status job"""
    result = job_monitor.check_health()
    return jsonify(result), 200 if result["ok"] else 503


@app.route("/jobs/metrics", methods=["GET"])
def job_metrics():
    """Execution statistics for the overdue status job"""
    days = request.args.get("days", 30, type=int)
    return jsonify(job_monitor.metrics(days=days)), 200


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return e

    # Unexpected errors - log details but return generic message
    logger.error(f"Processing error: {str(e)}", exc_info=True)
    return jsonify({
        "error": "An unexpected error occurred during processing",
        "status": "failed"
    }), 500


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=Config.DEBUG_MODE)
