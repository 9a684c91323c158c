"""Dispatcher dependency."""
from campaign_engine.services.sequencing.dispatcher import SequenceDispatcher, get_dispatcher


def get_sequence_dispatcher() -> SequenceDispatcher:
    """Process-wide dispatcher; overridden in tests."""
    return get_dispatcher()
