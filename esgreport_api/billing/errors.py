from fastapi import status


class WebhookError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, event_type: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.event_type = event_type


class SignatureVerificationError(WebhookError):
    def __init__(self) -> None:
        super().__init__("Webhook signature verification failed")


class WebhookConfigurationError(WebhookError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class MalformedEventError(WebhookError):
    pass


class BillingAccountNotFoundError(WebhookError):
    """The organization an event refers to does not exist (yet); Stripe will retry."""

    def __init__(self, lookup_column: str, lookup_value: str, *, event_type: str | None = None) -> None:
        super().__init__(
            f"No organization found for {lookup_column}={lookup_value}",
            event_type=event_type,
        )
        self.lookup_column = lookup_column
        self.lookup_value = lookup_value


class WebhookHandlingError(WebhookError):
    """A verified event could not be applied; Stripe will retry."""
