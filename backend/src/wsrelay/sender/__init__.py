from .dispatcher import DispatchBatch, Dispatcher, MessageEnvelope, Outcome, UnaddressablePolicy
from .handler import build_dispatcher, handle, lambda_handler
from .push import HttpPushChannel, PushChannel
