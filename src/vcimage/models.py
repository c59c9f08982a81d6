"""Domain model for vCloud catalogs and machine images.

Catalogs and images are read-only projections of remote documents. They are
rebuilt on every cache refresh and only ever receive derived tags (owner,
catalog item id) right after construction.

Public API:
    ProviderContext: Account/region scope for a session
    Catalog: A vCloud catalog (public or private)
    MachineImage: A vApp template projected as a machine image
    NetworkDefaults: Default network names of a template's primary NIC
    ImageFilter: Predicate applied while listing images
    Architecture, Platform, MachineImageState, MachineImageFormat,
    ImageClass, MachineImageType: Enumerations
"""

import re
from dataclasses import dataclass, field
from enum import StrEnum

from vcimage.errors import FilterError

__all__ = [
    "PUBLIC_OWNER",
    "Architecture",
    "Catalog",
    "ImageClass",
    "ImageFilter",
    "MachineImage",
    "MachineImageFormat",
    "MachineImageState",
    "MachineImageType",
    "NetworkDefaults",
    "Platform",
    "ProviderContext",
]

# Owner reported for catalogs without a resolvable organization link
PUBLIC_OWNER = "--public--"


class Architecture(StrEnum):
    """CPU architecture of an image."""

    I32 = "i32"
    I64 = "i64"


class MachineImageState(StrEnum):
    """Lifecycle state of an image."""

    PENDING = "pending"
    ACTIVE = "active"
    DELETED = "deleted"


class MachineImageFormat(StrEnum):
    """Disk formats an image can be exported in."""

    VMDK = "vmdk"


class ImageClass(StrEnum):
    """Kind of image (machine, kernel or ramdisk)."""

    MACHINE = "machine"
    KERNEL = "kernel"
    RAMDISK = "ramdisk"


class MachineImageType(StrEnum):
    """How an image is stored."""

    VOLUME = "volume"
    STORAGE = "storage"


class Platform(StrEnum):
    """Operating system platform of an image."""

    UNKNOWN = "unknown"
    WINDOWS = "windows"
    UBUNTU = "ubuntu"
    DEBIAN = "debian"
    CENT_OS = "centos"
    RHEL = "rhel"
    FEDORA = "fedora"
    SUSE = "suse"
    FREE_BSD = "freebsd"
    SOLARIS = "solaris"
    COREOS = "coreos"
    UNIX = "unix"

    @classmethod
    def guess(cls, text: str | None) -> "Platform":
        """Guess a platform from free text such as an OS description.

        Args:
            text: Product name, OS description or image name

        Returns:
            Best matching Platform, UNKNOWN when nothing matches

        Example:
            >>> Platform.guess("Microsoft Windows Server 2008 R2 (64-bit)")
            <Platform.WINDOWS: 'windows'>
        """
        if not text:
            return cls.UNKNOWN
        lowered = text.lower()
        for platform, keywords in _PLATFORM_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return platform
        return cls.UNKNOWN


# Order matters: "red hat" must win over the generic "linux" match
_PLATFORM_KEYWORDS: list[tuple[Platform, tuple[str, ...]]] = [
    (Platform.WINDOWS, ("windows", "win2k", "win20")),
    (Platform.UBUNTU, ("ubuntu",)),
    (Platform.DEBIAN, ("debian",)),
    (Platform.CENT_OS, ("centos", "cent os")),
    (Platform.RHEL, ("red hat", "redhat", "rhel")),
    (Platform.FEDORA, ("fedora",)),
    (Platform.SUSE, ("suse", "sles")),
    (Platform.FREE_BSD, ("freebsd", "free bsd")),
    (Platform.SOLARIS, ("solaris",)),
    (Platform.COREOS, ("coreos",)),
    (Platform.UNIX, ("linux", "unix", "bsd")),
]


@dataclass(frozen=True)
class ProviderContext:
    """Account and region a session operates in.

    In vCloud the region is the organization id.
    """

    account_number: str
    region_id: str

    @property
    def scope_key(self) -> str:
        """Cache scope key in the format "account:region"."""
        return f"{self.account_number}:{self.region_id}"


@dataclass(frozen=True)
class Catalog:
    """A vCloud catalog."""

    catalog_id: str
    name: str | None
    published: bool
    owner: str


def _non_empty(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class NetworkDefaults:
    """Default network names derived from a template's primary connection.

    Attributes:
        dhcp_network: Network of the primary connection when it uses DHCP
        static_network: Network of the primary connection otherwise
    """

    dhcp_network: str | None = None
    static_network: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "dhcp_network", _non_empty(self.dhcp_network))
        object.__setattr__(self, "static_network", _non_empty(self.static_network))


@dataclass
class MachineImage:
    """A vApp template as a machine image.

    Attributes:
        image_id: vApp template id
        owner_id: Owning account (org name, or PUBLIC_OWNER)
        region_id: Organization id the image was found in
        name: Display name
        description: Description (falls back to the name)
        architecture: I32 or I64
        platform: Guessed operating system platform
        state: Always ACTIVE for loaded templates
        created_at: Creation time in epoch milliseconds, 0 when unknown
        child_vm_ids: Sorted, de-duplicated ids of the template's VMs
        tags: String-valued auxiliary attributes
    """

    image_id: str
    owner_id: str
    region_id: str
    name: str
    description: str
    architecture: Architecture = Architecture.I64
    platform: Platform = Platform.UNKNOWN
    state: MachineImageState = MachineImageState.ACTIVE
    created_at: int = 0
    child_vm_ids: tuple[str, ...] = ()
    tags: dict[str, str] = field(default_factory=dict)

    def set_tag(self, key: str, value: str | None) -> None:
        """Set a tag, ignoring None values."""
        if value is not None:
            self.tags[key] = value

    def get_tag(self, key: str) -> str | None:
        """Get a tag value or None."""
        return self.tags.get(key)


@dataclass
class ImageFilter:
    """Filter applied to images while listing or searching.

    All set criteria must match; an empty filter matches everything.
    """

    name_pattern: str | None = None
    platform: Platform | None = None
    architecture: Architecture | None = None
    owner_id: str | None = None
    _name_re: re.Pattern | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.name_pattern:
            try:
                self._name_re = re.compile(self.name_pattern, re.IGNORECASE)
            except re.error as e:
                raise FilterError(f"Invalid name pattern {self.name_pattern!r}: {e}") from e

    def matches(self, image: MachineImage) -> bool:
        """Check whether an image satisfies every set criterion."""
        if self._name_re is not None and not self._name_re.search(image.name):
            return False
        if self.platform is not None and image.platform != self.platform:
            return False
        if self.architecture is not None and image.architecture != self.architecture:
            return False
        return self.owner_id is None or image.owner_id == self.owner_id
