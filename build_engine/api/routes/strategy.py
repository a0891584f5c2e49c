from dataclasses import asdict

from fastapi import APIRouter, Depends

from build_engine.api.container import get_container

router = APIRouter(prefix="/strategy", tags=["strategy"])


@router.get("/configuration")
def get_configuration(container=Depends(get_container)):
    return container.selector.get_configuration()


@router.get("/statistics")
def get_statistics(container=Depends(get_container)):
    selector = container.selector
    stats = selector.get_strategy_statistics(container.tenants.all_profiles())
    report = selector.recommend_quota_adjustments(stats)
    return {
        "statistics": asdict(stats),
        "quota": report.to_dict(),
    }
