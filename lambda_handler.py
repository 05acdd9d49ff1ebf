"""
AWS Lambda handler for the Payment Plan & Commission API.

This is the production entry point for AWS Lambda deployments, serving both
API Gateway requests and the EventBridge schedule that runs the overdue
status job. For local development, use main.py (Flask app) instead.
"""

import base64
import json
import logging
import re

from plan_engine import JobMonitor, OverdueStatusJob, PaymentProcessor
from plan_engine.config import Config
from plan_engine.errors import FatalJobFailure, NotFoundError, ValidationError
from plan_engine.output import OutputBuilder
from plan_engine.storage import SqlLedgerStore

# Configure logging
logger = logging.getLogger()
logger.setLevel(Config.LOG_LEVEL)

# Environment (dev, staging, prod)
ENVIRONMENT = Config.ENVIRONMENT

# Initialize store, processor and job (reused across warm invocations)
store = SqlLedgerStore.from_url(Config.DATABASE_URL, create_tables=Config.DATABASE_CREATE_TABLES)
processor = PaymentProcessor(store)
overdue_job = OverdueStatusJob(store)
job_monitor = JobMonitor(store)
output_builder = OutputBuilder()

# CORS headers for API Gateway
CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization,X-Agency-Id,X-API-Key",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
}

INSTALLMENT_ACTION_PATH = re.compile(r"^/installments/(?P<installment_id>[^/]+)/(?P<action>record-payment|cancel)$")


def lambda_handler(event, context):
    """
    Main Lambda entry point.

    Handles EventBridge scheduled events (overdue status job) and API Gateway
    events for:
    - GET /health, GET /api
    - POST /payment-plans
    - POST /installments/{id}/record-payment
    - POST /installments/{id}/cancel
    - POST /jobs/update-installment-statuses
    - GET /jobs/health, GET /jobs/metrics
    - OPTIONS (CORS preflight)
    """
    # Scheduled trigger (EventBridge rule)
    if event.get("source") == "aws.events":
        return handle_scheduled_job(event)

    # Handle CORS preflight
    http_method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method", "")
    if http_method == "OPTIONS":
        return {"statusCode": 200, "headers": CORS_HEADERS, "body": ""}

    # Get path (supports both REST API and HTTP API formats)
    path = event.get("path") or event.get("rawPath", "")

    # Route to appropriate handler
    if path == "/health" and http_method == "GET":
        return handle_health()
    elif path == "/api" and http_method == "GET":
        return handle_api_info()
    elif path == "/payment-plans" and http_method == "POST":
        return handle_create_plan(event)
    elif path == "/jobs/update-installment-statuses" and http_method == "POST":
        return handle_trigger_job(event)
    elif path == "/jobs/health" and http_method == "GET":
        return handle_job_health()
    elif path == "/jobs/metrics" and http_method == "GET":
        return handle_job_metrics(event)

    match = INSTALLMENT_ACTION_PATH.match(path)
    if match and http_method == "POST":
        return handle_installment_action(event, match.group("installment_id"), match.group("action"))

    return response(404, {"error": "Not found", "path": path})


def response(status_code, body):
    return {"statusCode": status_code, "headers": CORS_HEADERS, "body": json.dumps(body)}


def get_header(event, name):
    """Case-insensitive header lookup (API Gateway may lowercase names)."""
    headers = event.get("headers") or {}
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None


def parse_body(event):
    """Decode the request body to a dict. Returns None when empty."""
    body = event.get("body", "")
    if not isinstance(body, str):
        return body
    if not body:
        return None
    # Handle base64 encoded body (API Gateway)
    if event.get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")
    return json.loads(body)


def handle_health():
    """Health check endpoint."""
    return response(200, {"status": "healthy", "environment": ENVIRONMENT})


def handle_api_info():
    """API information endpoint."""
    return response(
        200,
        {
            "status": "ok",
            "message": "Payment Plan & Commission API",
            "version": "1.0",
            "environment": ENVIRONMENT,
            "runtime": "AWS Lambda",
            "endpoints": {
                "create_plan": "/payment-plans [POST]",
                "record_payment": "/installments/{id}/record-payment [POST]",
                "cancel_installment": "/installments/{id}/cancel [POST]",
                "update_statuses": "/jobs/update-installment-statuses [POST]",
                "job_health": "/jobs/health [GET]",
                "job_metrics": "/jobs/metrics [GET]",
                "health": "/health [GET]",
            },
        },
    )


def handle_create_plan(event):
    """Create a payment plan with its installment schedule."""

    def create(agency_id):
        input_data = parse_body(event)
        if not input_data:
            return response(400, {"error": "No input data provided", "status": "failed"})
        logger.info(f"Creating payment plan for agency {agency_id}")
        return response(201, processor.create_plan_from_dict(agency_id, input_data))

    return run_request(event, create)


def handle_installment_action(event, installment_id, action):
    """Record a payment on, or cancel, one installment."""

    def record(agency_id):
        input_data = parse_body(event)
        if not input_data:
            return response(400, {"error": "No input data provided", "status": "failed"})
        logger.info(f"Recording payment on installment {installment_id} for agency {agency_id}")
        return response(200, processor.record_payment_from_dict(agency_id, installment_id, input_data))

    def cancel(agency_id):
        logger.info(f"Cancelling installment {installment_id} for agency {agency_id}")
        return response(200, processor.cancel_installment_to_dict(agency_id, installment_id))

    return run_request(event, record if action == "record-payment" else cancel)


def run_request(event, handler):
    """Resolve the tenant and run a payment API handler with the error ladder."""
    try:
        agency_id = get_header(event, "X-Agency-Id")
        if not agency_id:
            raise ValidationError("X-Agency-Id", "header is required")
        return handler(agency_id)

    except json.JSONDecodeError as e:
        logger.error(f"JSON parse error: {str(e)}")
        return response(400, {"error": f"Invalid JSON: {str(e)}", "status": "failed"})

    except ValidationError as e:
        logger.error(f"Validation error: {str(e)}")
        return response(400, {"error": e.message, "field": e.field, "status": "validation_failed"})

    except NotFoundError as e:
        logger.warning(f"Not found: {str(e)}")
        return response(404, {"error": str(e), "status": "failed"})

    except (ValueError, KeyError, TypeError) as e:
        # Validation errors from engine (missing fields, invalid types, etc.)
        logger.error(f"Validation error: {str(e)}")
        return response(400, {"error": f"Validation error: {str(e)}", "status": "validation_failed"})

    except Exception as e:
        # Unexpected errors - log details but return generic message to avoid information disclosure
        logger.error(f"Unexpected processing error: {str(e)}", exc_info=True)
        return response(500, {"error": "An unexpected error occurred during processing", "status": "failed"})


def handle_trigger_job(event):
    """Manual (or external scheduler) trigger for the overdue status job."""
    if not Config.JOB_API_KEY or get_header(event, "X-API-Key") != Config.JOB_API_KEY:
        logger.warning("Unauthorized job trigger attempt")
        return response(401, {"error": "Unauthorized", "status": "failed"})

    try:
        input_data = parse_body(event) or {}
    except json.JSONDecodeError as e:
        logger.error(f"JSON parse error: {str(e)}")
        return response(400, {"error": f"Invalid JSON: {str(e)}", "status": "failed"})

    return run_job(trigger="manual", force=bool(input_data.get("force", False)))


def handle_scheduled_job(event):
    """EventBridge daily schedule."""
    logger.info(f"Scheduled trigger received: {event.get('detail-type', 'Scheduled Event')}")
    return run_job(trigger="scheduled")


def run_job(trigger, force=False):
    try:
        summary = overdue_job.run(trigger=trigger, force=force)
        return response(200, output_builder.job_summary(summary))

    except FatalJobFailure as e:
        logger.error(f"Job failed: {str(e)}", exc_info=True)
        return response(500, {"error": str(e), "status": "failed", "job_run_id": e.job_run_id})

    except Exception as e:
        logger.error(f"Unexpected job error: {str(e)}", exc_info=True)
        return response(500, {"error": "An unexpected error occurred during processing", "status": "failed"})


def handle_job_health():
    """Missed-execution check for the overdue status job."""
    try:
        result = job_monitor.check_health()
    except Exception as e:
        logger.error(f"Job health check failed: {str(e)}", exc_info=True)
        return response(500, {"error": "Health check failed", "status": "failed"})
    return response(200 if result["ok"] else 503, result)


def handle_job_metrics(event):
    """Execution statistics for the overdue status job."""
    params = event.get("queryStringParameters") or {}
    try:
        days = int(params.get("days", 30))
    except ValueError:
        return response(400, {"error": "days must be an integer", "status": "validation_failed"})

    try:
        return response(200, job_monitor.metrics(days=days))
    except Exception as e:
        logger.error(f"Job metrics failed: {str(e)}", exc_info=True)
        return response(500, {"error": "Metrics unavailable", "status": "failed"})
