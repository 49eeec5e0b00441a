from __future__ import annotations

from .guards import (
    guard_transfer_approver,
    guard_transfer_rejection_reason,
    guard_transfer_reservation_covered,
)

WORKFLOWS = {
    "inter_store_transfer": {
        "transitions": {
            "PENDING": {
                "APPROVED": [guard_transfer_approver, guard_transfer_reservation_covered],
                "REJECTED": [guard_transfer_approver, guard_transfer_rejection_reason],
                "CANCELLED": [],
            },
            "APPROVED": {
                "IN_TRANSIT": [],
                "CANCELLED": [],
                "COMPLETED": [guard_transfer_reservation_covered],
            },
            "IN_TRANSIT": {
                "COMPLETED": [guard_transfer_reservation_covered],
            },
            "REJECTED": {},
            "COMPLETED": {},
            "CANCELLED": {},
        }
    },
}
