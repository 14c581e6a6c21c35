"""State engine mixins for StateCache.

Each mixin provides a group of related operations:
- TransactionMixin: Action groups, change detection, snapshots
- MarkingMixin: Install/delete/keep and other mutations
- CascadeMixin: Removal of dependencies that became unused
- SweepMixin: Orphan reclamation at commit time
- ConflictsMixin: Conflicts/Breaks detection
- TagsMixin: User tags
- PersistenceMixin: Journal load/save and the write lock
"""

from .transactions import ActionGroup, StateSnapshot, TransactionMixin
from .marking import Choice, MarkingMixin
from .cascade import CascadeMixin
from .sweep import SweepMixin
from .conflicts import ConflictsMixin
from .tags import TagsMixin
from .persistence import PersistenceMixin

__all__ = [
    'ActionGroup',
    'StateSnapshot',
    'TransactionMixin',
    'Choice',
    'MarkingMixin',
    'CascadeMixin',
    'SweepMixin',
    'ConflictsMixin',
    'TagsMixin',
    'PersistenceMixin',
]
