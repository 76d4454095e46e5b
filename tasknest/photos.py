import logging

from fastapi import HTTPException

from .config import get_settings
from .imaging import (
    CompressionResult,
    ImageAsset,
    ImageProcessingError,
    InvalidAssetError,
    format_file_size,
    process_image,
)

logger = logging.getLogger(__name__)


async def intake_photo(asset: ImageAsset) -> CompressionResult:
    """Run a photo through the intake pipeline with the configured byte budget."""
    budget = get_settings().max_photo_bytes
    try:
        result = await process_image(asset, budget)
    except InvalidAssetError as exc:
        raise HTTPException(status_code=400, detail="Invalid profile photo format") from exc
    except ImageProcessingError as exc:
        logger.warning("Profile photo rejected: %s", exc)
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    if not result.budget_met:
        logger.warning(
            "Stored profile photo at %s, over the %s budget",
            format_file_size(result.size),
            format_file_size(budget),
        )
    return result


async def intake_data_uri(payload: str) -> bytes:
    try:
        asset = ImageAsset.from_data_uri(payload)
    except InvalidAssetError as exc:
        raise HTTPException(status_code=400, detail="Invalid profile photo format") from exc

    result = await intake_photo(asset)
    return result.to_bytes()
