"""Institution listing endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.helpers import get_aggregation_core
from database import get_db
from models import Institution
from schemas import InstitutionResponse

router = APIRouter(
    prefix="/api/open-finance/institutions",
    tags=["open-finance"],
    dependencies=[Depends(get_aggregation_core)],
)


@router.get("", response_model=list[InstitutionResponse])
def list_institutions(db: Session = Depends(get_db)):
    """List institutions users can connect to."""
    return (
        db.query(Institution)
        .filter(Institution.is_active.is_(True))
        .order_by(Institution.name)
        .all()
    )
