from .schemas import (
    BatchItemFailure,
    BatchResponse,
    MessageAttribute,
    QueueEvent,
    QueueRecord,
    SubscribeFrame,
    SubscriptionRecord,
)
