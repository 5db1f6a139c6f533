# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Catalog Data Models

Defines the status taxonomy shared by catalogs and installs, and the typed
views of catalog metadata documents. Documents are decoded once, at parse
time; unrecognised scalar keys are kept in `extras`.
"""

from typing import ClassVar, List, Dict, Optional
from pydantic import BaseModel, Field
from enum import Enum

from package_catalog.props import PropertyNode


class StatusCode(str, Enum):
    """Outcome of a catalog refresh or package install"""
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    REFRESHED = "refreshed"
    USER_DISABLED = "user_disabled"
    USER_CANCELLED = "user_cancelled"
    FAIL_NOT_FOUND = "fail_not_found"
    FAIL_DOWNLOAD = "fail_download"
    FAIL_EXTRACT = "fail_extract"
    FAIL_CHECKSUM = "fail_checksum"
    FAIL_VALIDATION = "fail_validation"
    FAIL_VERSION = "fail_version"
    FAIL_FILESYSTEM = "fail_filesystem"
    FAIL_UNKNOWN = "fail_unknown"

    @property
    def is_failure(self) -> bool:
        return self.value.startswith("fail_")


# Localised strings live under a child named after the locale:
#   <name>Plane</name> <de><name>Flugzeug</name></de>
LOCALIZABLE_KEYS = ("name", "description")


def _localized_strings(node: PropertyNode, known_keys) -> Dict[str, Dict[str, str]]:
    localized = {}
    for child in node.children:
        if child.name in known_keys or child.is_leaf:
            continue
        strings = {
            key: child.get_string(key)
            for key in LOCALIZABLE_KEYS
            if child.has_child(key)
        }
        if strings:
            localized[child.name] = strings
    return localized


def _extras(node: PropertyNode, known_keys) -> Dict[str, str]:
    return {
        child.name: child.value or ""
        for child in node.children
        if child.is_leaf and child.name not in known_keys
    }


class PackageDependency(BaseModel):
    """Declared dependency: package id plus minimum revision"""
    id: str
    revision: int = 0


class VariantMetadata(BaseModel):
    """Alternate identity sharing its package's directory"""
    id: str
    name: str = ""
    description: str = ""
    localized: Dict[str, Dict[str, str]] = Field(default_factory=dict)

    @classmethod
    def from_properties(cls, node: PropertyNode) -> "VariantMetadata":
        known = {"id", "name", "description"}
        return cls(
            id=node.get_string("id"),
            name=node.get_string("name"),
            description=node.get_string("description"),
            localized=_localized_strings(node, known),
        )


class PackageMetadata(BaseModel):
    """One <package> entry of a catalog document"""
    id: str = ""
    name: str = ""
    description: str = ""
    localized: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    revision: int = 0
    md5: str = ""
    urls: List[str] = Field(default_factory=list)
    dir: str = ""
    archive_path: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    ratings: Dict[str, float] = Field(default_factory=dict)
    variants: List[VariantMetadata] = Field(default_factory=list)
    depends: List[PackageDependency] = Field(default_factory=list)
    extras: Dict[str, str] = Field(default_factory=dict)

    KNOWN_KEYS: ClassVar[frozenset] = frozenset({
        "id", "name", "description", "revision", "md5", "url", "dir",
        "archive-path", "tag", "rating", "variant", "depends",
    })

    @classmethod
    def from_properties(cls, node: PropertyNode) -> "PackageMetadata":
        """
        Decode a <package> node.

        Raises:
            ValueError: If revision, a rating or a dependency revision is not numeric
        """
        ratings = {}
        rating_node = node.get_child("rating")
        if rating_node is not None:
            for rating in rating_node.children:
                ratings[rating.name] = float(rating.value or 0)

        archive_path = node.get_string("archive-path") or None

        return cls(
            id=node.get_string("id"),
            name=node.get_string("name"),
            description=node.get_string("description"),
            localized=_localized_strings(node, cls.KNOWN_KEYS),
            revision=node.get_int("revision"),
            md5=node.get_string("md5").strip().lower(),
            urls=[u.value for u in node.get_children("url") if u.value],
            dir=node.get_string("dir"),
            archive_path=archive_path,
            tags=[t.value.lower() for t in node.get_children("tag") if t.value],
            ratings=ratings,
            variants=[VariantMetadata.from_properties(v) for v in node.get_children("variant")],
            depends=[
                PackageDependency(id=d.get_string("id"), revision=d.get_int("revision"))
                for d in node.get_children("depends")
            ],
            extras=_extras(node, cls.KNOWN_KEYS),
        )


class VersionAlternate(BaseModel):
    """
    <alternate-version> entry: where compatible data lives for other
    application versions. An id different from the catalog's own id names a
    separate catalog.
    """
    id: Optional[str] = None
    url: str = ""
    versions: List[str] = Field(default_factory=list)

    @classmethod
    def from_properties(cls, node: PropertyNode) -> "VersionAlternate":
        return cls(
            id=node.get_string("id") or None,
            url=node.get_string("url"),
            versions=[v.value for v in node.get_children("version") if v.value],
        )


class CatalogMetadata(BaseModel):
    """Typed view of a catalog document"""
    id: str = ""
    url: str = ""
    description: str = ""
    localized: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    max_age_sec: Optional[int] = None
    versions: List[str] = Field(default_factory=list)
    alternates: List[VersionAlternate] = Field(default_factory=list)
    packages: List[PackageMetadata] = Field(default_factory=list)
    extras: Dict[str, str] = Field(default_factory=dict)

    KNOWN_KEYS: ClassVar[frozenset] = frozenset({
        "id", "url", "description", "max-age-sec", "version",
        "alternate-version", "package",
    })

    @classmethod
    def from_properties(cls, root: PropertyNode) -> "CatalogMetadata":
        """
        Decode a whole catalog document.

        Raises:
            ValueError: If an integer-valued key holds something else
        """
        max_age = root.get_int("max-age-sec") if root.has_child("max-age-sec") else None

        return cls(
            id=root.get_string("id"),
            url=root.get_string("url"),
            description=root.get_string("description"),
            localized=_localized_strings(root, cls.KNOWN_KEYS),
            max_age_sec=max_age,
            versions=[v.value for v in root.get_children("version") if v.value],
            alternates=[VersionAlternate.from_properties(a) for a in root.get_children("alternate-version")],
            packages=[PackageMetadata.from_properties(p) for p in root.get_children("package")],
            extras=_extras(root, cls.KNOWN_KEYS),
        )


def localized_string(plain: str, localized: Dict[str, Dict[str, str]], locale: str, key: str) -> str:
    """Locale-specific value of `key` if present, otherwise the plain value"""
    if locale and locale in localized and key in localized[locale]:
        return localized[locale][key]
    return plain
