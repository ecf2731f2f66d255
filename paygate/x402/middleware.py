# paygate/x402/middleware.py
"""
Starlette/FastAPI middleware adapter for the payment gate.

Usage:
    app.add_middleware(X402Middleware, gate=PaymentGate(routes, facilitator, pay_to))

All protocol logic lives in PaymentGate; this class only plugs it into
the host's middleware stack.
"""
import logging
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from paygate.x402.gatekeeper import PaymentGate

logger = logging.getLogger(__name__)


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment verification middleware for FastAPI.

    Requests to routes in the gate's table must carry a valid X-PAYMENT
    header; everything else passes through unchanged.
    """

    def __init__(self, app, gate: PaymentGate):
        super().__init__(app)
        self.gate = gate
        logger.info(f"x402: Middleware initialized with {len(gate.routes)} protected route(s)")

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        return await self.gate.handle(request, call_next)
