"""
Package universe: packages, versions and dependency clauses.

This is the data the dependency cache works on. The state engine never
creates or destroys packages, it only annotates them by id.

Dependencies are given in Debian relation syntax:
    "libc6 (>= 2.36), mail-transport-agent | exim4, python3:any"
Each comma-separated entry is one DependencyClause; '|' separates the
alternatives of an OR-group.
"""

import re
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, Iterator, List, Optional, Tuple

from .versions import OPERATORS, check_dep


class DepType(Enum):
    """Type of a dependency edge."""
    DEPENDS = "Depends"
    PRE_DEPENDS = "Pre-Depends"
    RECOMMENDS = "Recommends"
    SUGGESTS = "Suggests"
    CONFLICTS = "Conflicts"
    BREAKS = "Breaks"
    REPLACES = "Replaces"
    OBSOLETES = "Obsoletes"

    @property
    def is_critical(self) -> bool:
        return self in CRITICAL_DEP_TYPES

    @property
    def is_negative(self) -> bool:
        return self in (DepType.CONFLICTS, DepType.BREAKS)


CRITICAL_DEP_TYPES = frozenset({
    DepType.DEPENDS, DepType.PRE_DEPENDS, DepType.CONFLICTS, DepType.BREAKS,
})

# Dependencies that pull their target in
REQUIRING_DEP_TYPES = frozenset({DepType.DEPENDS, DepType.PRE_DEPENDS})


class CurrentState(IntEnum):
    """Installation status as recorded by dpkg."""
    NOT_INSTALLED = 0
    UNPACKED = 1
    HALF_CONFIGURED = 2
    HALF_INSTALLED = 4
    CONFIG_FILES = 5
    INSTALLED = 6
    TRIGGERS_AWAITED = 7
    TRIGGERS_PENDING = 8


class SelectedState(IntEnum):
    """Selection (intent) values shared with the dselect database."""
    UNKNOWN = 0
    INSTALL = 1
    HOLD = 2
    DEINSTALL = 3
    PURGE = 4


class Priority(IntEnum):
    """Debian package priorities."""
    REQUIRED = 1
    IMPORTANT = 2
    STANDARD = 3
    OPTIONAL = 4
    EXTRA = 5


# Regex for one relation: "name[:arch] [(op version)]"
RELATION_REGEX = re.compile(
    r'^\s*([a-zA-Z0-9][a-zA-Z0-9+.\-]*)(?::([a-zA-Z0-9\-]+))?'
    r'\s*(?:\(\s*(<<|<=|>=|>>|!=|=|<|>)\s*([^)\s]+)\s*\))?\s*$'
)


def parse_relation(text: str) -> Tuple[str, Optional[str], Optional[str], Optional[str]]:
    """Parse a single relation.

    Args:
        text: String like "libfoo (>= 1.0)" or "python3:any" or just "bar"

    Returns:
        Tuple of (name, arch qualifier, operator, version)

    Raises:
        ValueError: If the relation is malformed
    """
    match = RELATION_REGEX.match(text)
    if not match:
        raise ValueError(f"Malformed relation: {text!r}")
    name, arch, op, version = match.groups()
    if op is not None and op not in OPERATORS:
        raise ValueError(f"Unknown operator in relation: {text!r}")
    return name, arch, op, version


def parse_depends(text: str) -> List[List[Tuple[str, Optional[str], Optional[str], Optional[str]]]]:
    """Parse a relation field into OR-groups.

    Returns:
        One list of parsed relations per clause, in field order
    """
    clauses = []
    for entry in text.split(','):
        if not entry.strip():
            continue
        clauses.append([parse_relation(alt) for alt in entry.split('|')])
    return clauses


@dataclass(eq=False)
class Provide:
    """A (possibly versioned) virtual name provided by a version."""
    owner: "Version"
    target: "Package"
    version: Optional[str] = None

    def satisfies(self, op: Optional[str], target_ver: Optional[str]) -> bool:
        if not op:
            return True
        return check_dep(self.version, op, target_ver)


@dataclass(eq=False)
class Dependency:
    """One edge of a dependency clause."""
    parent: "Version"
    target: "Package"
    dep_type: DepType
    op: Optional[str] = None
    target_ver: Optional[str] = None
    clause: Optional["DependencyClause"] = None

    @property
    def parent_package(self) -> "Package":
        return self.parent.package

    def satisfied_by(self, version: Optional["Version"]) -> bool:
        """True if the given version of the target package matches."""
        if version is None or version.package is not self.target:
            return False
        return check_dep(version.ver_str, self.op, self.target_ver)

    def __str__(self):
        if self.op:
            return f"{self.target.name} ({self.op} {self.target_ver})"
        return self.target.name


@dataclass(eq=False)
class DependencyClause:
    """An ordered OR-group of dependency edges of the same type."""
    parent: "Version"
    dep_type: DepType
    alternatives: List[Dependency] = field(default_factory=list)
    id: int = -1

    @property
    def is_critical(self) -> bool:
        return self.dep_type.is_critical

    def __str__(self):
        return f"{self.dep_type.value}: " + " | ".join(str(d) for d in self.alternatives)


@dataclass(eq=False)
class Version:
    """One version of a package."""
    package: "Package"
    ver_str: str
    arch: str
    multi_arch: str = "no"
    size: int = 0
    downloadable: bool = True
    priority: Priority = Priority.OPTIONAL
    clauses: List[DependencyClause] = field(default_factory=list)
    provides: List[Provide] = field(default_factory=list)

    @property
    def depends(self) -> Iterator[Dependency]:
        """All dependency edges, flattened in clause order."""
        for clause in self.clauses:
            yield from clause.alternatives

    def __str__(self):
        return f"{self.package.full_name} {self.ver_str}"


@dataclass(eq=False)
class Package:
    """A package identity: (name, architecture)."""
    id: int
    name: str
    arch: str
    versions: List[Version] = field(default_factory=list)
    current_version: Optional[Version] = None
    current_state: CurrentState = CurrentState.NOT_INSTALLED
    selected_state: SelectedState = SelectedState.UNKNOWN
    essential: bool = False
    important: bool = False
    # Edges whose target is this package
    rev_depends: List[Dependency] = field(default_factory=list)
    # Versions providing this package as a virtual name
    provided_by: List[Provide] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.name}:{self.arch}"

    @property
    def is_virtual(self) -> bool:
        return not self.versions

    @property
    def is_installed(self) -> bool:
        """Has a current version that is actually on the system."""
        return (self.current_version is not None and
                self.current_state not in (CurrentState.NOT_INSTALLED,
                                           CurrentState.CONFIG_FILES))

    def find_version(self, ver_str: str) -> Optional[Version]:
        for ver in self.versions:
            if ver.ver_str == ver_str:
                return ver
        return None

    def __repr__(self):
        return f"<Package {self.full_name} #{self.id}>"


class Universe:
    """Ordered table of packages with stable integer ids.

    Usage:
        u = Universe(arch="amd64")
        a = u.add_package("a")
        u.add_version(a, "1.0", depends="b (>= 1.0) | c")
        u.set_installed(a, "1.0")
        u.finalize()
    """

    def __init__(self, arch: str = "amd64"):
        self.arch = arch
        self.packages: List[Package] = []
        self._by_name: Dict[Tuple[str, str], Package] = {}
        self.clause_count = 0
        # Raw relation fields, resolved by finalize()
        self._pending: List[Tuple[Version, DepType, str]] = []
        self._pending_provides: List[Tuple[Version, str]] = []

    def __iter__(self) -> Iterator[Package]:
        return iter(self.packages)

    def __len__(self) -> int:
        return len(self.packages)

    def __getitem__(self, pkg_id: int) -> Package:
        return self.packages[pkg_id]

    def add_package(self, name: str, arch: Optional[str] = None,
                    essential: bool = False, important: bool = False) -> Package:
        """Add (or return the existing) package name:arch."""
        arch = arch or self.arch
        pkg = self._by_name.get((name, arch))
        if pkg is None:
            pkg = Package(id=len(self.packages), name=name, arch=arch)
            self.packages.append(pkg)
            self._by_name[(name, arch)] = pkg
        pkg.essential = pkg.essential or essential
        pkg.important = pkg.important or important
        return pkg

    def find(self, name: str, arch: Optional[str] = None) -> Optional[Package]:
        """Look up a package; without arch, prefer the native architecture."""
        if arch:
            return self._by_name.get((name, arch))
        pkg = self._by_name.get((name, self.arch))
        if pkg is not None:
            return pkg
        for (pkg_name, _), candidate in self._by_name.items():
            if pkg_name == name:
                return candidate
        return None

    def add_version(self, pkg: Package, ver_str: str, arch: Optional[str] = None,
                    downloadable: bool = True, priority: Priority = Priority.OPTIONAL,
                    multi_arch: str = "no", size: int = 0,
                    **relations: str) -> Version:
        """Add a version with its relation fields.

        Relation fields are keyword arguments named after DepType members
        (depends, pre_depends, recommends, suggests, conflicts, breaks,
        replaces, obsoletes) plus provides.
        """
        ver = Version(package=pkg, ver_str=ver_str, arch=arch or pkg.arch,
                      downloadable=downloadable, priority=priority,
                      multi_arch=multi_arch, size=size)
        pkg.versions.append(ver)

        provides = relations.pop('provides', None)
        if provides:
            self._pending_provides.append((ver, provides))
        for key, text in relations.items():
            try:
                dep_type = DepType[key.upper()]
            except KeyError:
                raise ValueError(f"Unknown relation field: {key}") from None
            if text:
                self._pending.append((ver, dep_type, text))
        return ver

    def set_installed(self, pkg: Package, ver_str: Optional[str],
                      current_state: CurrentState = CurrentState.INSTALLED,
                      selected_state: Optional[SelectedState] = None):
        """Record what dpkg says is on the system for this package."""
        if ver_str is None:
            pkg.current_version = None
            pkg.current_state = current_state if current_state == CurrentState.CONFIG_FILES \
                else CurrentState.NOT_INSTALLED
        else:
            ver = pkg.find_version(ver_str)
            if ver is None:
                raise ValueError(f"{pkg.full_name} has no version {ver_str}")
            pkg.current_version = ver
            pkg.current_state = current_state
        if selected_state is not None:
            pkg.selected_state = selected_state
        elif pkg.is_installed:
            pkg.selected_state = SelectedState.INSTALL

    def finalize(self):
        """Resolve relation fields into clauses, rev-depends and provides."""
        for ver, text in self._pending_provides:
            for name, arch, op, version in (alt for clause in parse_depends(text)
                                            for alt in clause):
                target = self.add_package(name, arch if arch not in (None, 'any') else ver.arch)
                prv = Provide(owner=ver, target=target,
                              version=version if op == '=' else None)
                ver.provides.append(prv)
                target.provided_by.append(prv)
        self._pending_provides = []

        for ver, dep_type, text in self._pending:
            for alternatives in parse_depends(text):
                clause = DependencyClause(parent=ver, dep_type=dep_type,
                                          id=self.clause_count)
                self.clause_count += 1
                for name, arch, op, version in alternatives:
                    target_arch = ver.package.arch if arch in (None, 'any') else arch
                    target = self.add_package(name, target_arch)
                    dep = Dependency(parent=ver, target=target, dep_type=dep_type,
                                     op=op, target_ver=version, clause=clause)
                    clause.alternatives.append(dep)
                    target.rev_depends.append(dep)
                ver.clauses.append(clause)
        self._pending = []
