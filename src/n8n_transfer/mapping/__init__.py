"""Id mapping and cross-workflow reference rewriting."""

from n8n_transfer.mapping.id_mapper import IdMapper
from n8n_transfer.mapping.reference_updater import MAX_DEPTH, ReferenceUpdater

__all__ = [
    "IdMapper",
    "ReferenceUpdater",
    "MAX_DEPTH",
]
