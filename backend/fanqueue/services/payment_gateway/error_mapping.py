import logging
from functools import wraps

import stripe

from fanqueue.exceptions import (
    APIError,
    PaymentConfigurationError,
    PaymentGatewayError,
    PaymentNotRefundableError,
)

logger = logging.getLogger(__name__)

# Mapping of stripe exceptions to our application exceptions
STRIPE_ERROR_MAP = {
    stripe.AuthenticationError: PaymentConfigurationError,
    stripe.PermissionError: PaymentConfigurationError,
    stripe.CardError: PaymentGatewayError,
    stripe.RateLimitError: PaymentGatewayError,
    stripe.APIConnectionError: PaymentGatewayError,
}


def map_gateway_errors(func):
    """
    Decorator to catch stripe exceptions and re-raise them as APIError subclasses.
    Provider details are logged, never returned to the caller.
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except APIError:
            raise
        except stripe.InvalidRequestError as e:
            logger.warning(f"Payment provider rejected request in {func.__name__}: {e}")
            if e.code == "charge_already_refunded":
                raise PaymentNotRefundableError("This payment has already been refunded.") from e
            raise PaymentGatewayError() from e
        except stripe.StripeError as e:
            logger.error(f"Payment provider error in {func.__name__}: {e}")
            for stripe_exception, app_exception in STRIPE_ERROR_MAP.items():
                if isinstance(e, stripe_exception):
                    raise app_exception() from e
            raise PaymentGatewayError() from e
        except Exception as e:
            logger.error(f"Unexpected error talking to payment provider in {func.__name__}: {e}")
            raise PaymentGatewayError() from e
    return wrapper
