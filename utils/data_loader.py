"""
utils/data_loader.py
────────────────────
Loads and caches the candidate group catalog (a JSON array of groups) used
when a request does not carry its own candidate list.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import TypeAdapter

from config.settings import get_settings
from models.entities import CandidateGroup
from utils.logger import logger

_CATALOG_ADAPTER = TypeAdapter(list[CandidateGroup])


@lru_cache(maxsize=8)
def load_catalog(path: str | None = None) -> tuple[CandidateGroup, ...]:
    """
    Read and validate the group catalog at ``path`` (default: settings.catalog_file).
    Results are cached so each file is only parsed once per process.
    """
    catalog_path = Path(path) if path else get_settings().catalog_file

    if not catalog_path.exists():
        raise FileNotFoundError(
            f"Group catalog not found at {catalog_path}. "
            "Set CATALOG_FILE or send candidate_groups with the request."
        )

    logger.info(f"Loading group catalog from {catalog_path}")
    groups = _CATALOG_ADAPTER.validate_json(catalog_path.read_bytes())
    members = sum(len(g.members) for g in groups)
    logger.info(f"Catalog: {len(groups)} groups, {members} members")
    return tuple(groups)


def get_group(group_id: str, path: str | None = None) -> CandidateGroup:
    for group in load_catalog(path):
        if group.id == group_id:
            return group
    raise KeyError(group_id)
