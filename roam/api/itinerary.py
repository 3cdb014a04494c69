from fastapi import APIRouter, HTTPException

from roam.core import errors
from roam.core.config import settings
from roam.services.allocator import generate_full_itinerary
from roam.services.route_optimizer import (
    apply_optimized_order,
    get_optimization_comparison,
    is_optimization_worthwhile,
)
from roam.services.transformers import (
    transform_legs,
    transform_route_activity,
    validate_generate_payload,
    validate_optimize_payload,
)
from roam.utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["itinerary"])


# API Endpoints


@router.post("/itinerary/generate")
def generate_itinerary(payload: dict):
    """
    Generate a day-by-day itinerary for a multi-leg trip.

    Flow:
    1. Validate payload shape
    2. Transform frontend legs → TripLeg models
    3. Allocate calendar days and schedule each day
    4. Return the itinerary (camelCase)

    Args:
        payload: {"legs": TripLeg[]}

    Returns:
        {
            "success": true,
            "itinerary": {"days": [...], "totalDays": int, "summary": str, "stats": {...}}
        }

    Raises:
        HTTPException: 400 for invalid payload, 500 for processing errors
    """
    try:
        is_valid, error_msg = validate_generate_payload(payload, settings.MAX_LEGS)
        if not is_valid:
            raise HTTPException(status_code=400, detail=error_msg)

        legs = transform_legs(payload["legs"])
        logger.info(f"Generating itinerary for {len(legs)} legs")

        itinerary = generate_full_itinerary(legs)

        return {
            "success": True,
            "itinerary": itinerary.model_dump(mode="json", by_alias=True),
        }

    except HTTPException:
        raise
    except errors.RoamError as e:
        logger.warning(f"Rejected itinerary request: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Failed to generate itinerary")
        raise HTTPException(
            status_code=500, detail=f"Failed to generate itinerary: {str(e)}"
        )


@router.post("/itinerary/optimize")
def optimize_route(payload: dict):
    """
    Compare one day's activity order with an optimized open path.

    Args:
        payload: {"activities": [{"id", "lat"/"lng" | "coordinates" | ...}]}

    Returns:
        {
            "comparison": OptimizationComparison | null,
            "worthwhile": bool,
            "optimizedSequence": [activity ids]
        }
    """
    try:
        is_valid, error_msg = validate_optimize_payload(payload)
        if not is_valid:
            raise HTTPException(status_code=400, detail=error_msg)

        activities = [transform_route_activity(a) for a in payload["activities"]]
        comparison = get_optimization_comparison(activities)
        worthwhile = comparison is not None and is_optimization_worthwhile(comparison)
        sequence = apply_optimized_order(activities, comparison if worthwhile else None)

        return {
            "comparison": (
                comparison.model_dump(mode="json", by_alias=True) if comparison else None
            ),
            "worthwhile": worthwhile,
            "optimizedSequence": [a.id for a in sequence],
        }

    except HTTPException:
        raise
    except errors.RoamError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Failed to optimize route")
        raise HTTPException(status_code=500, detail=f"Failed to optimize route: {str(e)}")
