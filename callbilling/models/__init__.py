# callbilling/models/__init__.py
from callbilling.models.base import Base  # noqa: F401

from callbilling.models.agent import Agent, AgentStatus  # noqa: F401
from callbilling.models.user_agent import UserAgent  # noqa: F401
from callbilling.models.user_credit import UserCredit  # noqa: F401
from callbilling.models.credit_transaction import CreditTransaction, TransactionType  # noqa: F401
from callbilling.models.call import Call, CallStatus  # noqa: F401
from callbilling.models.webhook_log import WebhookLog, WebhookError  # noqa: F401
