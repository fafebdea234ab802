"""Metadata comparison endpoint."""

from typing import Any, Dict
from fastapi import APIRouter, Depends

from ...extractors.base import MetadataFetcher
from ...models.config import EngineConfig
from ...services.org_compare import OrgComparer
from ..dependencies import get_config, get_fetcher
from ..models import CompareRequest

router = APIRouter()


@router.post("")
async def compare_environments(
    data: CompareRequest,
    fetcher: MetadataFetcher = Depends(get_fetcher),
    config: EngineConfig = Depends(get_config)
) -> Dict[str, Any]:
    """Compare metadata types between two environments."""
    comparer = OrgComparer(fetcher, config)
    report = await comparer.compare(
        data.source.to_handle(),
        data.target.to_handle(),
        [t.value for t in data.metadata_types],
        data.options.to_options(),
    )

    result = report.to_dict()
    result["summary_stats"] = report.summary_stats()
    return result
