"""Validation of operator input before it reaches an external tool.

Every value that ends up in an argument vector (labels, mount options,
mount points, file paths) is checked here first. Argument vectors already
rule out shell injection; these checks reject input the tools would
misinterpret and keep log output readable.
"""

from __future__ import annotations

import re

from usb_toolkit.storage.exceptions import (
    SourceDestinationSameError,
    ValidationError,
)


MOUNT_OPTIONS_RE = re.compile(r"^[a-zA-Z0-9,=_]+$")
LABEL_RE = re.compile(r"^[a-zA-Z0-9 _.-]+$")
FAT32_LABEL_MAX = 11
PATH_METACHARACTERS = set(";|&$`(){}<> \\!#?*[")


def validate_mount_options(options: str) -> str:
    if not options or not MOUNT_OPTIONS_RE.match(options):
        raise ValidationError(
            "mount options", options, "only letters, digits, ',', '=' and '_' are allowed"
        )
    return options


def validate_label(label: str, filesystem: str) -> str:
    """Return the label to use, or ``""`` for none.

    Raises ValidationError for invalid characters or a FAT32 label longer
    than 11 characters.
    """
    if not label:
        return ""
    if not LABEL_RE.match(label):
        raise ValidationError(
            "label", label, "only letters, digits, spaces, '_', '.' and '-' are allowed"
        )
    if filesystem == "fat32" and len(label) > FAT32_LABEL_MAX:
        raise ValidationError(
            "label", label, f"FAT32 labels are limited to {FAT32_LABEL_MAX} characters"
        )
    return label


def validate_path(path: str, field: str = "path") -> str:
    if not path:
        raise ValidationError(field, path, "must not be empty")
    bad = sorted(set(path) & PATH_METACHARACTERS)
    if bad or "\n" in path or "\r" in path:
        raise ValidationError(field, path, f"contains invalid characters {''.join(bad)!r}")
    return path


def validate_file_path(path: str, field: str = "file path") -> str:
    """File paths may contain spaces but no shell metacharacters or newlines."""
    if not path:
        raise ValidationError(field, path, "must not be empty")
    bad = sorted(set(path) & (PATH_METACHARACTERS - {" "}))
    if bad or "\n" in path or "\r" in path:
        raise ValidationError(field, path, f"contains invalid characters {''.join(bad)!r}")
    return path


def validate_devices_different(source_name: str, destination_name: str) -> None:
    if source_name == destination_name:
        raise SourceDestinationSameError(source_name, destination_name)
