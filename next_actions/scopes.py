from typing import Optional, Tuple

from next_actions.errors import UnknownScopeError

COMMAND_CENTER = "command_center"
FOUNDER_GROWTH = "founder_growth"

SCOPES = (COMMAND_CENTER, FOUNDER_GROWTH)
DEFAULT_SCOPE = COMMAND_CENTER


def parse_scope(entity_type: Optional[str], entity_id: Optional[str] = None) -> Tuple[str, str]:
    """
    Resolves the (scope, entity_id) pair from request parameters.
    Missing values fall back to the command center; the entity id defaults
    to the scope name, which is how scope-wide actions are keyed.
    """
    scope = (entity_type or "").strip() or DEFAULT_SCOPE
    if scope not in SCOPES:
        raise UnknownScopeError(f"Unknown scope '{scope}'. Expected one of: {', '.join(SCOPES)}")

    resolved_id = (entity_id or "").strip() or scope
    return scope, resolved_id
