"""Core modules: package universe, dependency cache and the state engine."""

from .config import Policy, load_policy
from .depcache import BaseState, DepCache, Mode
from .errors import (
    ConfigError,
    ErrorChannel,
    InvalidTarget,
    JournalParseError,
    JournalWriteError,
    LockError,
    PermissionDenied,
    SelfRemovalRefused,
    StateError,
)
from .extstate import ExtendedState, RemoveReason, SelectionState, UserTagRegistry
from .statecache import StateCache
from .states import Choice
from .undo import UndoGroup
from .universe import CurrentState, DepType, Package, Priority, Universe, Version

__all__ = [
    'Policy', 'load_policy',
    'BaseState', 'DepCache', 'Mode',
    'ConfigError', 'ErrorChannel', 'InvalidTarget', 'JournalParseError',
    'JournalWriteError', 'LockError', 'PermissionDenied', 'SelfRemovalRefused',
    'StateError',
    'ExtendedState', 'RemoveReason', 'SelectionState', 'UserTagRegistry',
    'StateCache',
    'Choice',
    'UndoGroup',
    'CurrentState', 'DepType', 'Package', 'Priority', 'Universe', 'Version',
]
