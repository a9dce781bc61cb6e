"""Database models — re-exports all models.

Import from here:  from secondlook.models import Source, Snapshot, ...
Or from submodules: from secondlook.models.sources import Source
"""

from .base import Base  # noqa: F401

# Sources & normalized activity rows
from .sources import (  # noqa: F401
    ClientNormalized,
    EstimateNormalized,
    InvoiceNormalized,
    JobNormalized,
    PaymentNormalized,
    Source,
)

# Aggregates
from .buckets import EstimateBucket, InvoiceBucket  # noqa: F401

# Snapshot jobs
from .snapshots import Snapshot  # noqa: F401

# Third-party connections
from .connections import ConnectionEvent, OAuthConnection  # noqa: F401
