from enum import Enum


class KeyPattern(str, Enum):
    local_key = "LOCAL_KEY"
    recycled_key = "RECYCLED_KEY"
    natural_key = "NATURAL_KEY"
    mirror_key = "MIRROR_KEY"
    aggregate_key = "AGGREGATE_KEY"
    callers_key = "CALLERS_KEY"
    stable_key = "STABLE_KEY"
    migrated_identifier = "MIGRATED_IDENTIFIER"
    other = "OTHER"


class PermittedSynchronization(str, Enum):
    both_directions = "BOTH_DIRECTIONS"
    to_third_party = "TO_THIRD_PARTY"
    from_third_party = "FROM_THIRD_PARTY"
    other = "OTHER"


class CorrelationState(str, Enum):
    unscoped = "unscoped"
    scoped = "scoped"
    synchronized = "synchronized"
    removed = "removed"


class ElementStatus(str, Enum):
    active = "active"
    deleted = "deleted"


class ErrorKind(str, Enum):
    validation = "validation"
    not_found = "not_found"
    conflict = "conflict"
    store_unavailable = "store_unavailable"
