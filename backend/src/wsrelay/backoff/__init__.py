from .backoff import Backoff, BackoffState, advance, delay_for
