"""Transfer orchestration: workflow selection and the TransferManager."""

from n8n_transfer.transfer.filters import apply_filters
from n8n_transfer.transfer.manager import TransferManager, build_create_payload

__all__ = [
    "TransferManager",
    "apply_filters",
    "build_create_payload",
]
