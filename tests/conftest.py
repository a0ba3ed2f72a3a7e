"""Shared fixtures."""

import pytest
from unittest.mock import AsyncMock

from cloudstamp.models.config import StampConfig


@pytest.fixture
def stamp_config(tmp_path):
    """Configuration pointing every path into tmp_path."""
    return StampConfig(
        general={"export_dir": str(tmp_path / "exports")},
        storage={
            "preferred_pool": "local-lvm",
            "default_pool": "fallback-pool",
            "snippet_storage": "local",
            "image_cache_dir": str(tmp_path / "cache"),
        },
    )


@pytest.fixture
def hypervisor(tmp_path):
    """Hypervisor double with a healthy default cluster."""
    hv = AsyncMock()
    hv.next_free_id.return_value = 9000
    hv.list_storage.return_value = [
        {"storage": "local", "content": "iso,vztmpl,snippets", "type": "dir"},
        {"storage": "local-lvm", "content": "images,rootdir", "type": "lvmthin"},
    ]
    hv.storage_path.return_value = tmp_path / "local"
    hv.exists.return_value = True
    hv.agent_ping.return_value = True
    return hv
