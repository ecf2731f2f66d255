# paygate/main.py
from fastapi import FastAPI
from paygate.core.config import Settings, settings
from paygate.core.version import VERSION
from paygate.x402.audit import AuditLog
from paygate.x402.facilitator import FacilitatorClient, FacilitatorConfig
from paygate.x402.gatekeeper import PaymentGate
from paygate.x402.middleware import X402Middleware
from paygate.x402.routes import RouteTable
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PLACEHOLDER_PAY_TO = "0x0000000000000000000000000000000000000000"
MAX_FACILITATOR_RETRIES = 1


def build_payment_gate(config: Settings) -> PaymentGate:
    """
    Turn process settings into a PaymentGate.

    Route and facilitator settings are validated here, so a bad price,
    network or URL stops the process before it serves traffic.
    """
    pay_to = config.X402_PAY_TO_ADDRESS
    if not pay_to:
        logger.warning("X402_PAY_TO_ADDRESS not configured - using placeholder")
        pay_to = PLACEHOLDER_PAY_TO

    max_retries = config.X402_FACILITATOR_MAX_RETRIES
    if max_retries > MAX_FACILITATOR_RETRIES:
        logger.warning(
            f"X402_FACILITATOR_MAX_RETRIES={max_retries} exceeds {MAX_FACILITATOR_RETRIES}, clamping"
        )
        max_retries = MAX_FACILITATOR_RETRIES

    facilitator = FacilitatorClient(
        FacilitatorConfig(
            url=str(config.X402_FACILITATOR_URL),
            timeout_seconds=config.X402_FACILITATOR_TIMEOUT_SECONDS,
            max_retries=max_retries,
            max_in_flight=config.X402_FACILITATOR_MAX_IN_FLIGHT,
        )
    )
    return PaymentGate(
        routes=RouteTable.from_mapping(config.X402_ROUTES),
        facilitator=facilitator,
        pay_to=pay_to,
        max_timeout_seconds=config.X402_MAX_TIMEOUT_SECONDS,
        audit=AuditLog(config.X402_AUDIT_LOG_PATH),
        enabled=config.X402_ENABLED,
    )


def create_app(config: Settings = settings, gate: PaymentGate = None) -> FastAPI:
    app = FastAPI(title=config.PROJECT_NAME, version=VERSION)
    app.add_middleware(X402Middleware, gate=gate or build_payment_gate(config))

    @app.get("/", summary="Health Check", tags=["default"])
    def read_root():
        """ Basic health check endpoint. """
        logger.info("Root endpoint '/' accessed.")
        return {"status": "ok", "message": f"Welcome to {config.PROJECT_NAME}"}

    @app.get("/api/protected/weather", summary="Weather (paid)", tags=["protected"])
    def get_weather():
        """ Sample paid resource, gated by the default route table. """
        return {"temp": 72}

    return app


app = create_app()
