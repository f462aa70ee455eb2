# Overview: Workflow engine; validates and loads the stage graph, answers permission questions.

"""
Workflow Engine

WHY: Purchase-order stages, their allowed actions and the transitions
between them are data, not code. The declarative table in
workflow_definition.py is validated and upserted here; everything at
runtime reads the database rows.

DESIGN NOTES:
- Loading is idempotent: stages upsert by code, transitions by
  (from_stage, to_stage, action). Transitions missing from the definition
  are deactivated, never deleted, so history rows keep their references.
- A stage's effective permissions for a user are the user's global
  permissions plus any stage-scoped grants (user or role) that are
  active and unexpired. Per-user DENY overrides win over stage grants.
- can_perform() is a pure yes/no check. Ordering of the error kinds
  raised for a failed transition lives in purchase_order_service.
"""

from __future__ import annotations

from collections import defaultdict, deque

from ..errors import NotFound, WorkflowConfigurationError
from ..extensions import db
from ..models import PurchaseOrder, UserPermissionOverride, WorkflowStage, WorkflowTransition
from ..permissions import validate_permission_code
from ..workflow_definition import (
    BACKWARD_ACTIONS,
    NON_TRANSITION_ACTIONS,
    PURCHASE_ORDER_WORKFLOW,
    WorkflowDefinition,
)
from .permission_service import PROTECTED_PERMISSIONS, get_user_permissions, get_user_role_ids
from .stage_permission_service import active_stage_permission_codes


# ---------------------------------------------------------------------------
# Definition validation and loading
# ---------------------------------------------------------------------------

def validate_definition(definition: WorkflowDefinition) -> list[str]:
    """
    Check a workflow definition for structural problems.

    Returns a list of human-readable problems (empty when valid).
    """
    problems: list[str] = []

    codes = [s.code for s in definition.stages]
    stages_by_code = {s.code: s for s in definition.stages}

    seen: set[str] = set()
    for code in codes:
        if code in seen:
            problems.append(f"Duplicate stage code {code}")
        seen.add(code)

    sequences: dict[int, str] = {}
    for stage in definition.stages:
        if stage.sequence in sequences:
            problems.append(
                f"Stage {stage.code} reuses sequence {stage.sequence} of {sequences[stage.sequence]}"
            )
        sequences.setdefault(stage.sequence, stage.code)

        for code in stage.required_permissions:
            if not validate_permission_code(code):
                problems.append(f"Stage {stage.code} requires unknown permission {code}")

        if stage.is_terminal and stage.allowed_actions:
            problems.append(f"Terminal stage {stage.code} must not allow actions")

    if definition.initial_stage not in stages_by_code:
        problems.append(f"Initial stage {definition.initial_stage} is not defined")

    targets: dict[tuple[str, str], str] = {}
    edges: dict[str, set[str]] = defaultdict(set)
    actions_with_transition: set[tuple[str, str]] = set()

    for t in definition.transitions:
        label = f"{t.from_stage} --{t.action}--> {t.to_stage}"
        if t.from_stage not in stages_by_code:
            problems.append(f"Transition {label} starts at unknown stage")
            continue
        if t.to_stage not in stages_by_code:
            problems.append(f"Transition {label} ends at unknown stage")
            continue

        if t.action not in stages_by_code[t.from_stage].allowed_actions:
            problems.append(f"Transition {label} uses an action not allowed in {t.from_stage}")

        key = (t.from_stage, t.action)
        if key in targets and targets[key] != t.to_stage:
            problems.append(
                f"Action {t.action} from {t.from_stage} leads to both {targets[key]} and {t.to_stage}"
            )
        elif key in targets:
            problems.append(f"Transition {label} is defined twice")
        targets[key] = t.to_stage
        actions_with_transition.add(key)

        edges[t.from_stage].add(t.to_stage)

    for stage in definition.stages:
        for action in stage.allowed_actions:
            if action in NON_TRANSITION_ACTIONS:
                continue
            if (stage.code, action) not in actions_with_transition:
                problems.append(f"Action {action} allowed in {stage.code} has no transition")

    # Reachability from the initial stage (all edges count)
    if definition.initial_stage in stages_by_code:
        reached = {definition.initial_stage}
        queue = deque([definition.initial_stage])
        while queue:
            current = queue.popleft()
            for nxt in edges.get(current, ()):
                if nxt not in reached:
                    reached.add(nxt)
                    queue.append(nxt)
        for code in codes:
            if code not in reached:
                problems.append(f"Stage {code} is unreachable from {definition.initial_stage}")

    # Forward edges must be acyclic; self-loops and backward actions are exempt
    forward: dict[str, set[str]] = defaultdict(set)
    for t in definition.transitions:
        if t.action in BACKWARD_ACTIONS or t.from_stage == t.to_stage:
            continue
        if t.from_stage in stages_by_code and t.to_stage in stages_by_code:
            forward[t.from_stage].add(t.to_stage)

    in_degree = {code: 0 for code in stages_by_code}
    for src, dsts in forward.items():
        for dst in dsts:
            in_degree[dst] += 1
    ready = deque(code for code, deg in in_degree.items() if deg == 0)
    visited = 0
    while ready:
        current = ready.popleft()
        visited += 1
        for dst in forward.get(current, ()):
            in_degree[dst] -= 1
            if in_degree[dst] == 0:
                ready.append(dst)
    if visited < len(in_degree):
        cyclic = sorted(code for code, deg in in_degree.items() if deg > 0)
        problems.append("Forward transitions form a cycle through " + ", ".join(cyclic))

    return problems


def load_workflow_definition(definition: WorkflowDefinition = PURCHASE_ORDER_WORKFLOW) -> dict:
    """
    Validate and upsert a workflow definition.

    Raises WorkflowConfigurationError without touching the database when the
    definition is invalid. Commits on success and returns counts.
    """
    problems = validate_definition(definition)
    if problems:
        raise WorkflowConfigurationError(problems)

    existing = {s.code: s for s in db.session.query(WorkflowStage).all()}

    # Park current sequences out of the way so reordered stages never
    # collide with the unique constraint mid-upsert.
    for stage in existing.values():
        stage.sequence = -stage.id
    db.session.flush()

    stats = {"stages_created": 0, "stages_updated": 0, "stages_deactivated": 0,
             "transitions_created": 0, "transitions_updated": 0, "transitions_deactivated": 0}

    defined_codes = set()
    for stage_def in definition.stages:
        defined_codes.add(stage_def.code)
        stage = existing.get(stage_def.code)
        if stage is None:
            stage = WorkflowStage(code=stage_def.code)
            db.session.add(stage)
            existing[stage_def.code] = stage
            stats["stages_created"] += 1
        else:
            stats["stages_updated"] += 1

        stage.name = stage_def.name
        stage.description = stage_def.description
        stage.sequence = stage_def.sequence
        stage.allowed_actions = list(stage_def.allowed_actions)
        stage.required_permissions = list(stage_def.required_permissions)
        stage.is_initial = stage_def.code == definition.initial_stage
        stage.is_terminal = stage_def.is_terminal
        stage.is_active = True
        stage.definition_version = definition.version

    # Stages dropped from the definition keep a unique, out-of-range sequence
    max_sequence = max(s.sequence for s in definition.stages)
    for code, stage in existing.items():
        if code not in defined_codes:
            max_sequence += 1
            stage.sequence = max_sequence
            if stage.is_active:
                stats["stages_deactivated"] += 1
            stage.is_active = False
            stage.is_initial = False

    db.session.flush()

    transitions = {
        (t.from_stage_id, t.to_stage_id, t.action): t
        for t in db.session.query(WorkflowTransition).all()
    }

    defined_keys = set()
    for t_def in definition.transitions:
        key = (existing[t_def.from_stage].id, existing[t_def.to_stage].id, t_def.action)
        defined_keys.add(key)
        transition = transitions.get(key)
        if transition is None:
            transition = WorkflowTransition(
                from_stage_id=key[0],
                to_stage_id=key[1],
                action=t_def.action,
            )
            db.session.add(transition)
            stats["transitions_created"] += 1
        else:
            stats["transitions_updated"] += 1
        transition.required_fields = list(t_def.required_fields)
        transition.is_active = True
        transition.definition_version = definition.version

    for key, transition in transitions.items():
        if key not in defined_keys and transition.is_active:
            transition.is_active = False
            stats["transitions_deactivated"] += 1

    db.session.commit()
    return stats


# ---------------------------------------------------------------------------
# Runtime lookups
# ---------------------------------------------------------------------------

def get_stage_by_code(code: str) -> WorkflowStage:
    stage = db.session.query(WorkflowStage).filter_by(code=code).first()
    if not stage:
        raise NotFound(f"Workflow stage {code} not found")
    return stage


def get_initial_stage() -> WorkflowStage:
    stage = db.session.query(WorkflowStage).filter_by(is_initial=True, is_active=True).first()
    if not stage:
        raise WorkflowConfigurationError(["No active initial stage; run `flask workflow setup`"])
    return stage


def list_stages(include_inactive: bool = False) -> list[WorkflowStage]:
    query = db.session.query(WorkflowStage)
    if not include_inactive:
        query = query.filter(WorkflowStage.is_active.is_(True))
    return query.order_by(WorkflowStage.sequence).all()


def list_transitions(include_inactive: bool = False) -> list[WorkflowTransition]:
    query = db.session.query(WorkflowTransition)
    if not include_inactive:
        query = query.filter(WorkflowTransition.is_active.is_(True))
    return query.order_by(WorkflowTransition.from_stage_id, WorkflowTransition.action).all()


def find_transition(stage_id: int, action: str) -> WorkflowTransition | None:
    """Active transition for (stage, action), or None."""
    matches = (
        db.session.query(WorkflowTransition)
        .filter_by(from_stage_id=stage_id, action=action, is_active=True)
        .all()
    )
    if len(matches) > 1:
        raise WorkflowConfigurationError(
            [f"Action {action} has {len(matches)} active transitions from stage {stage_id}"]
        )
    return matches[0] if matches else None


# ---------------------------------------------------------------------------
# Permission checks
# ---------------------------------------------------------------------------

def _denied_codes(user_id: int) -> set[str]:
    rows = (
        db.session.query(UserPermissionOverride.permission_code)
        .filter_by(user_id=user_id, override_type="DENY", is_active=True)
        .all()
    )
    return {code for (code,) in rows if code not in PROTECTED_PERMISSIONS}


def effective_permissions(user_id: int, stage: WorkflowStage) -> set[str]:
    """Global permissions plus active stage-scoped grants, minus DENY overrides."""
    held = set(get_user_permissions(user_id))
    held |= active_stage_permission_codes(user_id, stage.id, get_user_role_ids(user_id))
    return held - _denied_codes(user_id)


def stage_permission_gap(user_id: int, stage: WorkflowStage) -> list[str]:
    """Required permissions of the stage that the user does not hold."""
    held = effective_permissions(user_id, stage)
    return [code for code in (stage.required_permissions or []) if code not in held]


def can_perform(user, po: PurchaseOrder, action: str) -> bool:
    """
    True when `user` may perform `action` on `po` in its current stage.

    The action must be listed on the stage, the stage must be active, and
    every required permission of the stage must be held.
    """
    if user is None or not getattr(user, "is_active", False):
        return False

    stage = po.current_stage or db.session.get(WorkflowStage, po.current_stage_id)
    if stage is None or not stage.is_active:
        return False
    if action not in (stage.allowed_actions or []):
        return False

    return not stage_permission_gap(user.id, stage)


def allowed_actions_for(user, po: PurchaseOrder) -> list[str]:
    """Actions the user could attempt right now (for UI buttons)."""
    stage = po.current_stage or db.session.get(WorkflowStage, po.current_stage_id)
    if stage is None or not stage.is_active or user is None:
        return []
    if stage_permission_gap(user.id, stage):
        return []
    return list(stage.allowed_actions or [])


# ---------------------------------------------------------------------------
# Visualization and statistics
# ---------------------------------------------------------------------------

def visualize() -> dict:
    """Nodes, edges and a Mermaid flowchart of the active workflow."""
    stages = list_stages()
    transitions = list_transitions()
    by_id = {s.id: s for s in stages}

    nodes = [
        {
            "code": s.code,
            "name": s.name,
            "sequence": s.sequence,
            "is_initial": s.is_initial,
            "is_terminal": s.is_terminal,
            "allowed_actions": list(s.allowed_actions or []),
        }
        for s in stages
    ]

    edges = []
    lines = ["graph TD"]
    for s in stages:
        lines.append(f'    {s.code}["{s.name}"]')
    for t in transitions:
        src = by_id.get(t.from_stage_id)
        dst = by_id.get(t.to_stage_id)
        if src is None or dst is None:
            continue
        edges.append({
            "from": src.code,
            "to": dst.code,
            "action": t.action,
            "required_fields": list(t.required_fields or []),
            "backward": t.action in BACKWARD_ACTIONS,
        })
        arrow = "-.->" if t.action in BACKWARD_ACTIONS else "-->"
        lines.append(f"    {src.code} {arrow}|{t.action}| {dst.code}")

    return {"nodes": nodes, "edges": edges, "mermaid": "\n".join(lines)}


def stage_statistics() -> list[dict]:
    """Number of purchase orders currently sitting in each stage."""
    counts = dict(
        db.session.query(PurchaseOrder.current_stage_id, db.func.count(PurchaseOrder.id))
        .group_by(PurchaseOrder.current_stage_id)
        .all()
    )
    return [
        {"stage": s.code, "name": s.name, "sequence": s.sequence, "count": counts.get(s.id, 0)}
        for s in list_stages()
    ]
