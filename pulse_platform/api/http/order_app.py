#!/usr/bin/env python3
"""
ORDER INGRESS HTTP SERVICE
==========================

Responsibilities:
- Parent order submission (idempotent on order_unique_key)
- Read-only order / slice / history views
- Health of the worker services running in this process

STRICT RULES:
- NO broker access
- NO state mutation outside OrderIngressService
- Workers never depend on this service being up
"""

from typing import Optional

from flask import Flask, jsonify, request
from pydantic import ValidationError as SchemaValidationError

from pulse_platform.api.http.schemas import CreateOrderRequest, OrderResponse
from pulse_platform.execution.errors import DuplicateKeyConflict, ValidationError
from pulse_platform.execution.ingress import OrderIngressService
from pulse_platform.persistence.models import OrderStatus, SplitConfig
from pulse_platform.persistence.repository import OrderSliceRepository, ParentOrderRepository
from pulse_platform.services.service_manager import ServiceManager
from pulse_platform.utils.utils import (
    create_error_body,
    log_exception,
    parse_json_safely,
    utc_now,
)


class OrderApp:
    """
    Order ingress Flask application.
    """

    def __init__(
        self,
        ingress: Optional[OrderIngressService] = None,
        order_repo: Optional[ParentOrderRepository] = None,
        slice_repo: Optional[OrderSliceRepository] = None,
        service_manager: Optional[ServiceManager] = None,
    ):
        self.order_repo = order_repo or ParentOrderRepository()
        self.slice_repo = slice_repo or OrderSliceRepository()
        self.ingress = ingress or OrderIngressService(order_repo=self.order_repo)
        self.service_manager = service_manager
        self.app = Flask(__name__)

        self._register_routes()

    # ------------------------------------------------------------------
    # ROUTES
    # ------------------------------------------------------------------

    def _register_routes(self):

        # -------------------------------
        # Order submission
        # -------------------------------
        @self.app.route("/orders", methods=["POST"])
        def create_order():
            try:
                payload = request.get_data(as_text=True)
                data, parse_error = parse_json_safely(payload)
                if parse_error:
                    return jsonify(create_error_body("VALIDATION_ERROR", parse_error)), 400

                try:
                    body = CreateOrderRequest.model_validate(data)
                except SchemaValidationError as e:
                    errors = [
                        {
                            "field": ".".join(str(part) for part in err["loc"]),
                            "message": err["msg"],
                        }
                        for err in e.errors()
                    ]
                    return jsonify(
                        create_error_body("VALIDATION_ERROR", "Invalid order request", {"errors": errors})
                    ), 400

                order = self.ingress.create_order(
                    order_unique_key=body.order_unique_key,
                    instrument=body.instrument,
                    side=body.side,
                    total_quantity=body.total_quantity,
                    split_config=SplitConfig(
                        num_splits=body.split_config.num_splits,
                        duration_minutes=body.split_config.duration_minutes,
                        randomize=body.split_config.randomize,
                    ),
                )

                response = OrderResponse(order_id=order.order_id, order_unique_key=order.order_unique_key)
                return jsonify(response.model_dump()), 202

            except ValidationError as e:
                return jsonify(
                    create_error_body(e.code, e.message, {"field": e.field} if e.field else None)
                ), 400

            except DuplicateKeyConflict as e:
                return jsonify(
                    create_error_body(
                        e.code,
                        str(e),
                        {"existing_order_id": e.existing_order_id},
                    )
                ), 409

            except Exception as e:
                log_exception("create_order", e)
                return jsonify(create_error_body("INTERNAL_ERROR", "Internal ingress error")), 500

        # -------------------------------
        # Order list (latest first, optional ?status=&limit=)
        # -------------------------------
        @self.app.route("/orders", methods=["GET"])
        def list_orders():
            try:
                status_arg = request.args.get("status")
                try:
                    status = OrderStatus(status_arg.upper()) if status_arg else None
                    limit = int(request.args.get("limit", 200))
                except ValueError:
                    return jsonify(
                        create_error_body(
                            "VALIDATION_ERROR",
                            "status must be one of PENDING, IN_PROGRESS, DONE, SKIPPED and limit an integer",
                        )
                    ), 400

                limit = max(1, min(limit, 1000))
                orders = self.order_repo.list_orders(status=status, limit=limit)
                return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 200

            except Exception as e:
                log_exception("list_orders", e)
                return jsonify(create_error_body("INTERNAL_ERROR", "Internal ingress error")), 500

        # -------------------------------
        # Order detail (order + aggregate + slices)
        # -------------------------------
        @self.app.route("/orders/<order_id>", methods=["GET"])
        def get_order(order_id):
            try:
                order = self.order_repo.get_by_id(order_id)
                if order is None:
                    return jsonify(create_error_body("NOT_FOUND", f"Order {order_id} not found")), 404

                return jsonify({
                    "order": order.to_dict(),
                    "aggregate": self.slice_repo.aggregate_for_parent(order_id).to_dict(),
                    "slices": [s.to_dict() for s in self.slice_repo.get_for_parent(order_id)],
                }), 200

            except Exception as e:
                log_exception("get_order", e)
                return jsonify(create_error_body("INTERNAL_ERROR", "Internal ingress error")), 500

        # -------------------------------
        # Status history
        # -------------------------------
        @self.app.route("/orders/<order_id>/history", methods=["GET"])
        def get_order_history(order_id):
            try:
                if self.order_repo.get_by_id(order_id) is None:
                    return jsonify(create_error_body("NOT_FOUND", f"Order {order_id} not found")), 404

                return jsonify({
                    "order_id": order_id,
                    "history": self.order_repo.get_history(order_id),
                }), 200

            except Exception as e:
                log_exception("get_order_history", e)
                return jsonify(create_error_body("INTERNAL_ERROR", "Internal ingress error")), 500

        # -------------------------------
        # Health Check
        # -------------------------------
        @self.app.route("/health", methods=["GET"])
        def health():
            try:
                services = self.service_manager.get_status_summary() if self.service_manager else {}
                healthy = self.service_manager.all_running() if self.service_manager else True

                return jsonify(
                    {
                        "status": "healthy" if healthy else "degraded",
                        "services": services,
                        "orders": self.order_repo.count_by_status(),
                        "timestamp": utc_now().isoformat(),
                    }
                ), 200 if healthy else 503

            except Exception as e:
                log_exception("health", e)
                return jsonify({"status": "unhealthy", "error": str(e)}), 503

    def get_app(self):
        return self.app
