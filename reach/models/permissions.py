"""
REACH Content Board
Permission tables — role × stage access levels and role-wide capabilities.

Contents:
    - Role, StageName, PermissionLevel, PermissionAction: closed enumerations
    - LEVEL_ACTIONS: which actions each PermissionLevel implies
    - STAGE_PERMISSION_MATRIX: role → stage → PermissionLevel
    - GLOBAL_CAPABILITIES: role → stage-independent capabilities
    - PermissionMatrix: immutable lookup value built once in ``create_app``

The tables are compiled-in data. Nothing mutates them at runtime; the app
factory wraps them in a frozen ``PermissionMatrix`` and hands that object
to the evaluator / policy layer by reference.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class Role(str, Enum):
    ADMIN = "admin"
    STRATEGIST = "strategist"
    SCRIPTWRITER = "scriptwriter"
    EDITOR = "editor"
    COORDINATOR = "coordinator"
    MEMBER = "member"
    CLIENT = "client"


class StageName(str, Enum):
    """The five REACH workflow columns, in board order."""

    RESEARCH = "research"
    ENVISION = "envision"
    ASSEMBLE = "assemble"
    CONNECT = "connect"
    HONE = "hone"


class PermissionLevel(str, Enum):
    FULL = "full"
    COMMENT_APPROVE = "comment_approve"
    READ_ONLY = "read_only"
    NONE = "none"


class PermissionAction(str, Enum):
    READ = "read"
    WRITE = "write"
    COMMENT = "comment"
    APPROVE = "approve"
    ASSIGN = "assign"
    DELETE = "delete"


# Strict capability ordering: full ⊃ comment_approve ⊃ read_only ⊃ none
LEVEL_ACTIONS: Mapping[PermissionLevel, frozenset] = MappingProxyType({
    PermissionLevel.FULL: frozenset(PermissionAction),
    PermissionLevel.COMMENT_APPROVE: frozenset({
        PermissionAction.READ, PermissionAction.COMMENT, PermissionAction.APPROVE,
    }),
    PermissionLevel.READ_ONLY: frozenset({PermissionAction.READ}),
    PermissionLevel.NONE: frozenset(),
})

_F = PermissionLevel.FULL
_CA = PermissionLevel.COMMENT_APPROVE
_RO = PermissionLevel.READ_ONLY
_NO = PermissionLevel.NONE

# Column order: research, envision, assemble, connect, hone
STAGE_PERMISSION_MATRIX = {
    Role.ADMIN:        dict(zip(StageName, (_F, _F, _F, _F, _F))),
    Role.STRATEGIST:   dict(zip(StageName, (_CA, _CA, _CA, _CA, _CA))),
    Role.SCRIPTWRITER: dict(zip(StageName, (_F, _F, _RO, _RO, _RO))),
    Role.EDITOR:       dict(zip(StageName, (_RO, _RO, _F, _F, _RO))),
    Role.COORDINATOR:  dict(zip(StageName, (_RO, _RO, _RO, _F, _F))),
    Role.MEMBER:       dict(zip(StageName, (_F, _F, _F, _CA, _RO))),
    Role.CLIENT:       dict(zip(StageName, (_NO, _NO, _NO, _CA, _RO))),
}

GLOBAL_CAPABILITIES = {
    Role.ADMIN: {"user_management", "team_management", "global_reassign", "global_delete", "view_all"},
    Role.STRATEGIST: {"global_reassign", "global_comment", "view_all"},
    Role.SCRIPTWRITER: {"limited_reassign", "comment_only"},
    Role.EDITOR: {"limited_reassign", "comment_only"},
    Role.COORDINATOR: {"global_reassign", "timeline_management", "global_view", "publishing"},
    Role.MEMBER: {"basic_operations"},
    Role.CLIENT: {"view_assigned"},
}


def coerce_enum(enum_cls, value):
    """Return ``enum_cls(value)`` or None when *value* is not a member.

    Accepts enum members and their string values (case-insensitive).
    """
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        return None
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        return None


@dataclass(frozen=True)
class PermissionMatrix:
    """Read-only Role × Stage → PermissionLevel table plus capability sets.

    Lookups never raise: any role/stage outside the table resolves to
    ``PermissionLevel.NONE`` and an empty capability set.
    """

    levels: Mapping = field(default_factory=dict)
    capabilities: Mapping = field(default_factory=dict)

    @classmethod
    def from_tables(cls, levels, capabilities) -> "PermissionMatrix":
        flat = {}
        for role, per_stage in levels.items():
            for stage, level in per_stage.items():
                flat[(Role(role), StageName(stage))] = PermissionLevel(level)
        caps = {Role(role): frozenset(names) for role, names in capabilities.items()}
        return cls(levels=MappingProxyType(flat), capabilities=MappingProxyType(caps))

    @classmethod
    def default(cls) -> "PermissionMatrix":
        return cls.from_tables(STAGE_PERMISSION_MATRIX, GLOBAL_CAPABILITIES)

    def level_for(self, role, stage) -> PermissionLevel:
        role_key = coerce_enum(Role, role)
        stage_key = coerce_enum(StageName, stage)
        if role_key is None or stage_key is None:
            return PermissionLevel.NONE
        return self.levels.get((role_key, stage_key), PermissionLevel.NONE)

    def capabilities_for(self, role) -> frozenset:
        role_key = coerce_enum(Role, role)
        if role_key is None:
            return frozenset()
        return self.capabilities.get(role_key, frozenset())


def normalize_stage(stage_or_name):
    """Map a stage row or display name ("Research", " hone ") to its StageName.

    Returns None for names outside the five workflow stages.
    """
    if isinstance(stage_or_name, StageName):
        return stage_or_name
    name = getattr(stage_or_name, "name", stage_or_name)
    return coerce_enum(StageName, name)
