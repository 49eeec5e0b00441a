from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from storedb.apps.audit import services as audit_services

from .registry import WORKFLOWS


@dataclass
class TransitionError(Exception):
    code: str
    detail: List[Dict[str, str]]


def _invalid(field: str, reason: str) -> TransitionError:
    return TransitionError(code="invalid_transition", detail=[{"field": field, "reason": reason}])


def _extract_store_id(before_obj: Any, after_obj: Any) -> Optional[str]:
    for obj in (after_obj, before_obj):
        if isinstance(obj, dict):
            store_id = obj.get("store_id") or obj.get("source_store_id")
        else:
            store_id = getattr(obj, "store_id", None) or getattr(obj, "source_store_id", None)
        if store_id:
            return store_id
    return None


def _state_payload(state: str, obj: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"status": state}
    if isinstance(obj, dict):
        payload.update({key: value for key, value in obj.items() if key != "store_id"})
    return payload


def allowed_targets(entity_type: str, from_state: str) -> List[str]:
    workflow = WORKFLOWS.get(entity_type) or {}
    return list(workflow.get("transitions", {}).get(from_state, {}).keys())


def _guards_for(entity_type: str, from_state: str, to_state: str) -> list:
    workflow = WORKFLOWS.get(entity_type)
    if not workflow:
        raise _invalid("entity_type", f"No workflow registered for {entity_type}")
    guards = workflow.get("transitions", {}).get(from_state, {}).get(to_state)
    if guards is None:
        raise _invalid("status", f"Cannot transition from {from_state} to {to_state}")
    return guards


def apply_transition(
    db: Session,
    *,
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    from_state: str,
    to_state: str,
    before_obj: Any,
    after_obj: Any,
    actor_type: Optional[str] = None,
    correlation_id: Optional[str] = None,
    critical: bool = True,
) -> None:
    """
    Validate a status change against the registered workflow and audit it.

    Every guard runs and all of their failures are reported together as
    `missing_requirements`. The caller mutates the entity; this only checks
    and records the move.
    """
    failures: List[Dict[str, str]] = []
    for guard in _guards_for(entity_type, from_state, to_state):
        failures.extend(
            guard(db, before_obj=before_obj, after_obj=after_obj, from_state=from_state, to_state=to_state)
        )
    if failures:
        raise TransitionError(code="missing_requirements", detail=failures)

    store_id = _extract_store_id(before_obj, after_obj)
    if not store_id:
        raise _invalid("store_id", "Unable to resolve store for transition")

    audit_services.log_event(
        db,
        store_id=store_id,
        actor_type=actor_type,
        actor_id=actor_user_id,
        auditable_type=entity_type,
        auditable_id=entity_id,
        action="transition",
        message=f"{entity_type} {entity_id}: {from_state} -> {to_state}",
        details={
            "workflow": entity_type,
            "before": _state_payload(from_state, before_obj),
            "after": _state_payload(to_state, after_obj),
        },
        correlation_id=correlation_id,
        critical=critical,
    )
