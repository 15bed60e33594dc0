from app.models.billing import (  # noqa: F401
    PAYABLE_INVOICE_STATUSES,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentMethod,
)
from app.models.notification import Notification, NotificationType  # noqa: F401
from app.models.user import User  # noqa: F401
