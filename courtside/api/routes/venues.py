from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from courtside.core.dependencies import get_db
from courtside.services.ranking import DEFAULT_POLICY, RANKING_POLICIES, popular_venues

router = APIRouter(prefix="/venues", tags=["Venues"])


@router.get("/popular")
def popular(
    order: str = Query(DEFAULT_POLICY),
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_db),
):
    if order not in RANKING_POLICIES:
        raise HTTPException(
            status_code=422,
            detail=f"order must be one of: {', '.join(sorted(RANKING_POLICIES))}",
        )
    return [v.to_dict() for v in popular_venues(db, order, limit)]
