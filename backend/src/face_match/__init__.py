"""
face_match: event photo face indexing and selfie search on AWS Rekognition.
"""

__version__ = "0.1.0"


def setup_event(*args, **kwargs):
    """Provision an event's collection and index its pending photos.

    See face_match._operations.setup_event for full docs.
    """
    from ._operations import setup_event as _setup

    return _setup(*args, **kwargs)


def check_event_ready(*args, **kwargs):
    """Check whether an event exists, is active and has photos.

    See face_match._operations.check_event_ready for full docs.
    """
    from ._operations import check_event_ready as _check

    return _check(*args, **kwargs)
