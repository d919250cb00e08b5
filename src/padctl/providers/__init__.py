"""Provider interfaces for padctl."""
from __future__ import annotations

from .ansible import DATA_DISK_TAG, AnsibleRunner
from .aws import AWSCloudClient, classify_client_error, credentials_problem
from .base import CloudClient, ConfigurationRunner, StorageClassMapping

__all__ = [
    "AWSCloudClient",
    "AnsibleRunner",
    "CloudClient",
    "ConfigurationRunner",
    "DATA_DISK_TAG",
    "StorageClassMapping",
    "classify_client_error",
    "credentials_problem",
]
